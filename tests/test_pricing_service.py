"""
Tests for PricingService.

Discount selection, rounding, base prices and discount rule administration.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from conftest import (
    TRADER_KEY,
    create_mock_discount,
    create_mock_pricing,
    create_mock_trader,
    make_result,
)
from hotspot_ledger.db.models import TraderDiscount, TraderPricing
from hotspot_ledger.exceptions import DiscountNotFoundError, ValidationError
from hotspot_ledger.models.api import (
    CreateDiscountRequest,
    DiscountType,
    PricingCategory,
    UpdateDiscountRequest,
)
from hotspot_ledger.services.pricing import (
    PricingService,
    discount_to_domain,
    parse_category,
    select_discount,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def fixed_clock() -> datetime:
    return NOW


class StaticUsage:
    """Qualification policy returning a fixed usage figure."""

    def __init__(self, usage: str) -> None:
        self.usage = Decimal(usage)
        self.calls = 0

    async def qualifying_usage(self, trader_key: str, category: PricingCategory) -> Decimal:
        self.calls += 1
        return self.usage


class TestPriceFor:
    """Tests for PricingService.price_for."""

    async def test_twenty_percent_off_day(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(
            many=[create_mock_discount(trader_key="t1", discount_value="20")]
        )
        service = PricingService(db_session, clock=fixed_clock)

        quote = await service.price_for("t1", "day", 10.0)

        assert quote.final_price == Decimal("8.00")
        assert quote.discount_applied == Decimal("2.00")
        assert quote.base_price == Decimal("10.00")

    async def test_invalid_category(self, db_session: AsyncMock) -> None:
        service = PricingService(db_session, clock=fixed_clock)

        with pytest.raises(ValidationError):
            await service.price_for("t1", "year", 10.0)

        db_session.execute.assert_not_awaited()

    @pytest.mark.parametrize("base_price", [-1, Decimal("NaN"), float("inf"), "ten"])
    async def test_invalid_base_price(self, db_session: AsyncMock, base_price) -> None:
        service = PricingService(db_session, clock=fixed_clock)

        with pytest.raises(ValidationError):
            await service.price_for(TRADER_KEY, "day", base_price)

    async def test_identical_inputs_identical_results(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(many=[create_mock_discount()])
        service = PricingService(db_session, clock=fixed_clock)

        first = await service.price_for(TRADER_KEY, PricingCategory.DAY, Decimal("9.99"))
        second = await service.price_for(TRADER_KEY, PricingCategory.DAY, Decimal("9.99"))

        assert first == second
        assert str(first.final_price) == str(second.final_price)

    async def test_no_rules_is_base_price(self, db_session: AsyncMock) -> None:
        service = PricingService(db_session, clock=fixed_clock)

        quote = await service.price_for(TRADER_KEY, "hour", Decimal("1.50"))

        assert quote.final_price == Decimal("1.50")
        assert quote.discount_applied == Decimal("0")
        assert quote.discount is None

    async def test_rounds_half_up(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(
            many=[create_mock_discount(discount_value="15")]
        )
        service = PricingService(db_session, clock=fixed_clock)

        # 0.15 * 0.85 = 0.1275 -> 0.13
        quote = await service.price_for(TRADER_KEY, "day", Decimal("0.15"))

        assert quote.final_price == Decimal("0.13")

    async def test_highest_qualifying_threshold_wins(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(
            many=[
                create_mock_discount(discount_value="10", threshold="0"),
                create_mock_discount(discount_value="25", threshold="200"),
                create_mock_discount(discount_value="50", threshold="1000"),
            ]
        )
        policy = StaticUsage("500")
        service = PricingService(db_session, qualification_policy=policy, clock=fixed_clock)

        quote = await service.price_for(TRADER_KEY, "day", Decimal("100"))

        assert quote.final_price == Decimal("75.00")
        assert policy.calls == 1

    async def test_policy_not_consulted_without_thresholds(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(many=[create_mock_discount()])
        policy = StaticUsage("0")
        service = PricingService(db_session, qualification_policy=policy, clock=fixed_clock)

        await service.price_for(TRADER_KEY, "day", Decimal("10"))

        assert policy.calls == 0

    async def test_default_policy_reads_ledger_spend(self, db_session: AsyncMock) -> None:
        db_session.execute.side_effect = [
            make_result(many=[create_mock_discount(discount_value="50", threshold="100")]),
            make_result(total=Decimal("300")),
        ]
        service = PricingService(db_session, clock=fixed_clock)

        quote = await service.price_for(TRADER_KEY, "day", Decimal("10"))

        assert quote.final_price == Decimal("5.00")
        db_session.add.assert_not_called()
        db_session.commit.assert_not_awaited()

    async def test_expired_rule_ignored(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(
            many=[create_mock_discount(ends_at=NOW - timedelta(days=1))]
        )
        service = PricingService(db_session, clock=fixed_clock)

        quote = await service.price_for(TRADER_KEY, "day", Decimal("10"))

        assert quote.final_price == Decimal("10.00")

    async def test_explicit_time_overrides_clock(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(
            many=[create_mock_discount(starts_at=NOW + timedelta(days=1))]
        )
        service = PricingService(db_session, clock=fixed_clock)

        later = await service.price_for(
            TRADER_KEY, "day", Decimal("10"), at=NOW + timedelta(days=2)
        )

        assert later.final_price == Decimal("8.00")

    async def test_fixed_discount_floors_at_zero(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(
            many=[
                create_mock_discount(
                    discount_type=DiscountType.FIXED_AMOUNT, discount_value="5.00"
                )
            ]
        )
        service = PricingService(db_session, clock=fixed_clock)

        quote = await service.price_for(TRADER_KEY, "day", Decimal("3"))

        assert quote.final_price == Decimal("0.00")
        assert quote.discount_applied == Decimal("3.00")


class TestSelectDiscount:
    """Tests for the pure rule selection."""

    def test_tie_goes_to_larger_saving(self) -> None:
        small = discount_to_domain(create_mock_discount(discount_value="10"))
        large = discount_to_domain(
            create_mock_discount(discount_type=DiscountType.FIXED_AMOUNT, discount_value="3")
        )

        chosen = select_discount([small, large], PricingCategory.DAY, Decimal("10"), Decimal("0"), NOW)

        assert chosen == large

    def test_inactive_and_other_category_ignored(self) -> None:
        inactive = discount_to_domain(create_mock_discount(is_active=False))
        weekly = discount_to_domain(create_mock_discount(category=PricingCategory.WEEK))

        assert (
            select_discount([inactive, weekly], PricingCategory.DAY, Decimal("10"), Decimal("0"), NOW)
            is None
        )

    def test_parse_category(self) -> None:
        assert parse_category("month") == PricingCategory.MONTH
        with pytest.raises(ValidationError):
            parse_category("DAY")


class TestQuote:
    """Tests for PricingService.quote."""

    async def test_quantity_multiplies_discounted_unit(self, db_session: AsyncMock) -> None:
        db_session.execute.side_effect = [
            make_result(one=create_mock_trader()),
            make_result(many=[create_mock_discount(discount_value="20")]),
        ]
        db_session.get.return_value = create_mock_pricing(day="10.00")
        service = PricingService(db_session, clock=fixed_clock)

        quote = await service.quote(TRADER_KEY, "day", 3)

        assert quote.unit.final_price == Decimal("8.00")
        assert quote.total == Decimal("24.00")

    async def test_missing_pricing_is_free(self, db_session: AsyncMock) -> None:
        db_session.execute.side_effect = [make_result(one=create_mock_trader()), make_result()]
        service = PricingService(db_session, clock=fixed_clock)

        quote = await service.quote(TRADER_KEY, "week")

        assert quote.total == Decimal("0.00")

    @pytest.mark.parametrize("quantity", [0, -1, True, 1.5])
    async def test_invalid_quantity(self, db_session: AsyncMock, quantity) -> None:
        with pytest.raises(ValidationError):
            await PricingService(db_session).quote(TRADER_KEY, "day", quantity)


class TestBasePrices:
    """Tests for get_pricing / set_pricing."""

    async def test_set_pricing_creates_row(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())

        pricing = await PricingService(db_session).set_pricing(TRADER_KEY, 1, 10, "50", 150.5)

        added = db_session.add.call_args[0][0]
        assert isinstance(added, TraderPricing)
        assert pricing.month == Decimal("150.50")
        db_session.commit.assert_awaited_once()

    async def test_set_pricing_updates_row(self, db_session: AsyncMock) -> None:
        row = create_mock_pricing()
        db_session.execute.return_value = make_result(one=create_mock_trader())
        db_session.get.return_value = row

        await PricingService(db_session).set_pricing(TRADER_KEY, 2, 20, 60, 200)

        assert row.day_price == Decimal("20.00")
        db_session.add.assert_not_called()

    async def test_negative_price_rejected(self, db_session: AsyncMock) -> None:
        with pytest.raises(ValidationError):
            await PricingService(db_session).set_pricing(TRADER_KEY, 1, -10, 50, 150)

        db_session.commit.assert_not_awaited()


class TestDiscountRules:
    """Tests for discount rule administration."""

    async def test_create_discount(self, db_session: AsyncMock) -> None:
        db_session.execute.return_value = make_result(one=create_mock_trader())
        db_session.get.return_value = create_mock_discount(name="Weekend")
        request = CreateDiscountRequest(
            name="Weekend",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("20"),
            category=PricingCategory.DAY,
        )

        discount = await PricingService(db_session).create_discount(TRADER_KEY, request)

        assert isinstance(db_session.add.call_args[0][0], TraderDiscount)
        assert discount.name == "Weekend"

    def test_request_rejects_percentage_over_100(self) -> None:
        with pytest.raises(ValueError):
            CreateDiscountRequest(
                name="Too much",
                discount_type=DiscountType.PERCENTAGE,
                discount_value=Decimal("150"),
                category=PricingCategory.DAY,
            )

    async def test_update_revalidates_merged_rule(self, db_session: AsyncMock) -> None:
        db_session.get.return_value = create_mock_discount()

        with pytest.raises(ValidationError):
            await PricingService(db_session).update_discount(
                TRADER_KEY, uuid4(), UpdateDiscountRequest(discount_value=Decimal("150"))
            )

        db_session.commit.assert_not_awaited()

    async def test_update_reversed_window(self, db_session: AsyncMock) -> None:
        db_session.get.return_value = create_mock_discount(starts_at=NOW)

        with pytest.raises(ValidationError):
            await PricingService(db_session).update_discount(
                TRADER_KEY, uuid4(), UpdateDiscountRequest(ends_at=NOW - timedelta(days=1))
            )

    def test_request_rejects_naive_window_bound(self) -> None:
        naive = datetime(2026, 6, 1, 12, 0)

        with pytest.raises(ValueError, match="timezone"):
            CreateDiscountRequest(
                name="Mixed",
                discount_type=DiscountType.PERCENTAGE,
                discount_value=Decimal("10"),
                category=PricingCategory.DAY,
                starts_at=naive,
                ends_at=NOW + timedelta(days=1),
            )
        with pytest.raises(ValueError, match="timezone"):
            UpdateDiscountRequest(starts_at=naive)

    async def test_update_rejects_naive_bound_against_stored_window(
        self, db_session: AsyncMock
    ) -> None:
        db_session.get.return_value = create_mock_discount(ends_at=NOW + timedelta(days=1))
        request = UpdateDiscountRequest.model_construct(starts_at=datetime(2026, 6, 1))

        with pytest.raises(ValidationError, match="timezone"):
            await PricingService(db_session).update_discount(TRADER_KEY, uuid4(), request)

        db_session.commit.assert_not_awaited()

    async def test_update_applies_fields(self, db_session: AsyncMock) -> None:
        row = create_mock_discount()
        db_session.get.return_value = row

        discount = await PricingService(db_session).update_discount(
            TRADER_KEY, row.id, UpdateDiscountRequest(name="Renamed", is_active=False)
        )

        assert discount.name == "Renamed"
        assert discount.is_active is False

    async def test_other_traders_discount_not_found(self, db_session: AsyncMock) -> None:
        db_session.get.return_value = create_mock_discount(trader_key="+254799999999")

        with pytest.raises(DiscountNotFoundError):
            await PricingService(db_session).get_discount(TRADER_KEY, uuid4())

    async def test_delete_discount(self, db_session: AsyncMock) -> None:
        row = create_mock_discount()
        db_session.get.return_value = row

        await PricingService(db_session).delete_discount(TRADER_KEY, row.id)

        db_session.delete.assert_awaited_once_with(row)
        db_session.commit.assert_awaited_once()
