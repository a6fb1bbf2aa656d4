"""
Pricing Service - Category base prices and trader discount schedules.

NO DICTIONARIES - All operations use strongly typed domain models.
PURE QUOTES - price_for reads configuration and usage, and writes nothing.
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hotspot_ledger.db.models import TraderDiscount, TraderPricing
from hotspot_ledger.exceptions import (
    DiscountNotFoundError,
    PersistenceError,
    ValidationError,
    WriteVerificationError,
)
from hotspot_ledger.models.api import (
    CreateDiscountRequest,
    DiscountType,
    PricingCategory,
    UpdateDiscountRequest,
)
from hotspot_ledger.models.domain import DiscountData, PriceQuote, PricingData, VoucherQuote
from hotspot_ledger.money import ZERO, to_money
from hotspot_ledger.observability.logging import get_logger
from hotspot_ledger.observability.metrics import metrics
from hotspot_ledger.services.ledger import LedgerService, require_trader

logger = get_logger(__name__)

HUNDRED = Decimal("100")


def _utc_now() -> datetime:
    return datetime.now(UTC)


class QualificationPolicy(Protocol):
    """Supplies the usage figure compared against discount thresholds."""

    async def qualifying_usage(self, trader_key: str, category: PricingCategory) -> Decimal:
        ...


class LedgerSpendPolicy:
    """Usage is the trader's cumulative voucher spend, read from the ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self.ledger = LedgerService(session)

    async def qualifying_usage(self, trader_key: str, category: PricingCategory) -> Decimal:
        return await self.ledger.total_spent(trader_key)


def parse_category(category: PricingCategory | str) -> PricingCategory:
    """
    Raises:
        ValidationError: not one of hour, day, week, month
    """
    try:
        return PricingCategory(category)
    except ValueError as e:
        raise ValidationError(
            f"Invalid category {category!r}; expected one of hour, day, week, month"
        ) from e


def parse_price(value: Decimal | int | float | str, name: str = "base_price") -> Decimal:
    """
    Raises:
        ValidationError: not a finite amount >= 0
    """
    try:
        amount = to_money(value)
    except ValueError as e:
        raise ValidationError(f"{name}: {e}") from e
    if amount < 0:
        raise ValidationError(f"{name} cannot be negative: {amount}")
    return amount


def discount_savings(discount: DiscountData, base_price: Decimal) -> Decimal:
    """Money taken off `base_price` by one rule, never more than the price."""
    if discount.discount_type == DiscountType.PERCENTAGE:
        return base_price - to_money(base_price * (1 - discount.discount_value / HUNDRED))
    return min(to_money(discount.discount_value), base_price)


def select_discount(
    discounts: Iterable[DiscountData],
    category: PricingCategory,
    base_price: Decimal,
    usage: Decimal,
    at: datetime,
) -> DiscountData | None:
    """
    Pick the rule to apply.

    Eligible rules are active, for the category, in their window and have a
    threshold at or below `usage`. The highest threshold wins; ties go to the
    larger saving, then to the earliest created rule.
    """
    eligible = [
        d
        for d in discounts
        if d.is_active and d.category == category and d.in_window(at) and d.threshold <= usage
    ]
    if not eligible:
        return None
    return min(
        eligible,
        key=lambda d: (
            -d.threshold,
            -discount_savings(d, base_price),
            d.created_at,
            str(d.discount_id),
        ),
    )


def apply_discount(base_price: Decimal, discount: DiscountData | None) -> PriceQuote:
    """final = base x (1 - fraction), rounded half-up; fixed amounts floor at zero."""
    if discount is None:
        return PriceQuote(base_price=base_price, discount_applied=ZERO, final_price=base_price)

    if discount.discount_type == DiscountType.PERCENTAGE:
        final = to_money(base_price * (1 - discount.discount_value / HUNDRED))
    else:
        final = max(ZERO, to_money(base_price - discount.discount_value))

    return PriceQuote(
        base_price=base_price,
        discount_applied=base_price - final,
        final_price=final,
        discount=discount,
    )


def discount_to_domain(row: TraderDiscount) -> DiscountData:
    """Convert ORM discount to domain model."""
    return DiscountData(
        discount_id=row.id,
        trader_key=row.trader_key,
        name=row.name,
        description=row.description,
        discount_type=DiscountType(row.discount_type),
        discount_value=to_money(row.discount_value),
        category=PricingCategory(row.category),
        threshold=to_money(row.threshold),
        starts_at=row.starts_at,
        ends_at=row.ends_at,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def pricing_to_domain(trader_key: str, row: TraderPricing | None) -> PricingData:
    """Convert ORM pricing to domain model; a missing row prices everything at zero."""
    if row is None:
        return PricingData(trader_key=trader_key, hour=ZERO, day=ZERO, week=ZERO, month=ZERO)
    return PricingData(
        trader_key=trader_key,
        hour=to_money(row.hour_price),
        day=to_money(row.day_price),
        week=to_money(row.week_price),
        month=to_money(row.month_price),
    )


def _validate_rule(
    discount_type: DiscountType,
    discount_value: Decimal,
    threshold: Decimal,
    starts_at: datetime | None,
    ends_at: datetime | None,
) -> None:
    if discount_value < 0:
        raise ValidationError("Discount value cannot be negative")
    if discount_type == DiscountType.PERCENTAGE and discount_value > HUNDRED:
        raise ValidationError("Percentage discount must be between 0 and 100")
    if threshold < 0:
        raise ValidationError("Discount threshold cannot be negative")
    for bound in (starts_at, ends_at):
        if bound is not None and bound.utcoffset() is None:
            raise ValidationError("Discount window bounds must carry a timezone")
    if starts_at is not None and ends_at is not None and starts_at >= ends_at:
        raise ValidationError("Discount start must be before its end")


class PricingService:
    """
    Pricing engine.

    Quotes are a function of the inputs, the trader's discount rules and the
    usage figure from the qualification policy.
    """

    def __init__(
        self,
        session: AsyncSession,
        qualification_policy: QualificationPolicy | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.session = session
        self.policy = qualification_policy or LedgerSpendPolicy(session)
        self.clock = clock

    # ========================================================================
    # Quotes
    # ========================================================================

    async def price_for(
        self,
        trader_key: str,
        category: PricingCategory | str,
        base_price: Decimal | int | float | str,
        at: datetime | None = None,
    ) -> PriceQuote:
        """
        Apply the trader's best qualifying discount to `base_price`.

        Raises:
            ValidationError: unknown category or base price not finite and >= 0
        """
        parsed_category = parse_category(category)
        price = parse_price(base_price)

        discounts = await self._active_discounts(trader_key, parsed_category)
        usage = ZERO
        if any(d.threshold > 0 for d in discounts):
            usage = await self.policy.qualifying_usage(trader_key, parsed_category)

        chosen = select_discount(discounts, parsed_category, price, usage, at or self.clock())
        quote = apply_discount(price, chosen)

        metrics.record_price_quote(parsed_category.value, discounted=chosen is not None)
        logger.debug(
            "price_computed",
            trader_key=trader_key,
            category=parsed_category.value,
            base_price=str(price),
            final_price=str(quote.final_price),
            discount_id=str(chosen.discount_id) if chosen else None,
        )
        return quote

    async def quote(
        self,
        trader_key: str,
        category: PricingCategory | str,
        quantity: int = 1,
        at: datetime | None = None,
    ) -> VoucherQuote:
        """
        Price `quantity` vouchers at the trader's configured base price.

        Raises:
            TraderNotFoundError: no trader with this key
            ValidationError: unknown category or quantity below 1
        """
        parsed_category = parse_category(category)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")

        pricing = await self.get_pricing(trader_key)
        unit = await self.price_for(
            trader_key, parsed_category, pricing.base_price(parsed_category), at=at
        )
        return VoucherQuote(
            category=parsed_category,
            quantity=quantity,
            unit=unit,
            total=to_money(unit.final_price * quantity),
        )

    # ========================================================================
    # Base prices
    # ========================================================================

    async def get_pricing(self, trader_key: str) -> PricingData:
        """
        Raises:
            TraderNotFoundError: no trader with this key
        """
        await require_trader(self.session, trader_key)
        row = await self.session.get(TraderPricing, trader_key)
        return pricing_to_domain(trader_key, row)

    async def set_pricing(
        self,
        trader_key: str,
        hour: Decimal | int | float | str,
        day: Decimal | int | float | str,
        week: Decimal | int | float | str,
        month: Decimal | int | float | str,
    ) -> PricingData:
        """
        Replace all four base prices.

        Raises:
            TraderNotFoundError: no trader with this key
            ValidationError: any price not finite and >= 0
        """
        prices = {
            "hour_price": parse_price(hour, "hour"),
            "day_price": parse_price(day, "day"),
            "week_price": parse_price(week, "week"),
            "month_price": parse_price(month, "month"),
        }
        await require_trader(self.session, trader_key)

        row = await self.session.get(TraderPricing, trader_key)
        if row is None:
            row = TraderPricing(trader_key=trader_key, **prices)
            self.session.add(row)
        else:
            for column, value in prices.items():
                setattr(row, column, value)

        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to save pricing: {type(e).__name__}") from e

        logger.info("pricing_updated", trader_key=trader_key)
        return pricing_to_domain(trader_key, row)

    # ========================================================================
    # Discount rules
    # ========================================================================

    async def list_discounts(self, trader_key: str) -> list[DiscountData]:
        await require_trader(self.session, trader_key)
        stmt = (
            select(TraderDiscount)
            .where(TraderDiscount.trader_key == trader_key)
            .order_by(TraderDiscount.created_at.asc(), TraderDiscount.id.asc())
        )
        result = await self.session.execute(stmt)
        return [discount_to_domain(d) for d in result.scalars().all()]

    async def get_discount(self, trader_key: str, discount_id: UUID) -> DiscountData:
        """
        Raises:
            DiscountNotFoundError: unknown id or owned by another trader
        """
        return discount_to_domain(await self._owned_discount(trader_key, discount_id))

    async def create_discount(
        self, trader_key: str, request: CreateDiscountRequest
    ) -> DiscountData:
        """
        Raises:
            TraderNotFoundError: no trader with this key
            ValidationError: rule out of range or window reversed
        """
        value = parse_price(request.discount_value, "discount_value")
        threshold = parse_price(request.threshold, "threshold")
        _validate_rule(
            request.discount_type, value, threshold, request.starts_at, request.ends_at
        )
        await require_trader(self.session, trader_key)

        row = TraderDiscount(
            trader_key=trader_key,
            name=request.name,
            description=request.description,
            discount_type=request.discount_type,
            discount_value=value,
            category=request.category,
            threshold=threshold,
            starts_at=request.starts_at,
            ends_at=request.ends_at,
            is_active=True,
        )
        self.session.add(row)

        try:
            await self.session.flush()
            verified = await self.session.get(TraderDiscount, row.id)
            if verified is None:
                raise WriteVerificationError(f"Discount {row.id} not found after insert")
            await self.session.commit()
        except WriteVerificationError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to create discount: {type(e).__name__}") from e

        logger.info(
            "discount_created",
            trader_key=trader_key,
            discount_id=str(verified.id),
            category=request.category.value,
        )
        return discount_to_domain(verified)

    async def update_discount(
        self, trader_key: str, discount_id: UUID, request: UpdateDiscountRequest
    ) -> DiscountData:
        """
        Update only the fields that are set; the merged rule is re-validated.

        Raises:
            DiscountNotFoundError: unknown id or owned by another trader
            ValidationError: merged rule out of range or window reversed
        """
        row = await self._owned_discount(trader_key, discount_id)

        discount_type = request.discount_type or DiscountType(row.discount_type)
        value = (
            parse_price(request.discount_value, "discount_value")
            if request.discount_value is not None
            else to_money(row.discount_value)
        )
        threshold = (
            parse_price(request.threshold, "threshold")
            if request.threshold is not None
            else to_money(row.threshold)
        )
        starts_at = request.starts_at if request.starts_at is not None else row.starts_at
        ends_at = request.ends_at if request.ends_at is not None else row.ends_at
        _validate_rule(discount_type, value, threshold, starts_at, ends_at)

        row.discount_type = discount_type
        row.discount_value = value
        row.threshold = threshold
        row.starts_at = starts_at
        row.ends_at = ends_at
        if request.name is not None:
            row.name = request.name
        if request.description is not None:
            row.description = request.description
        if request.category is not None:
            row.category = request.category
        if request.is_active is not None:
            row.is_active = request.is_active

        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to update discount: {type(e).__name__}") from e

        logger.info("discount_updated", trader_key=trader_key, discount_id=str(discount_id))
        return discount_to_domain(row)

    async def delete_discount(self, trader_key: str, discount_id: UUID) -> None:
        """
        Raises:
            DiscountNotFoundError: unknown id or owned by another trader
        """
        row = await self._owned_discount(trader_key, discount_id)
        try:
            await self.session.delete(row)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to delete discount: {type(e).__name__}") from e

        logger.info("discount_deleted", trader_key=trader_key, discount_id=str(discount_id))

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _active_discounts(
        self, trader_key: str, category: PricingCategory
    ) -> list[DiscountData]:
        stmt = (
            select(TraderDiscount)
            .where(
                TraderDiscount.trader_key == trader_key,
                TraderDiscount.category == category,
                TraderDiscount.is_active.is_(True),
            )
            .order_by(TraderDiscount.created_at.asc(), TraderDiscount.id.asc())
        )
        result = await self.session.execute(stmt)
        return [discount_to_domain(d) for d in result.scalars().all()]

    async def _owned_discount(self, trader_key: str, discount_id: UUID) -> TraderDiscount:
        row = await self.session.get(TraderDiscount, discount_id)
        if row is None or row.trader_key != trader_key:
            raise DiscountNotFoundError(discount_id)
        return row
