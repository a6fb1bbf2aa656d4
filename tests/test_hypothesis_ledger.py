"""
Hypothesis Property-Based Tests for the ledger and pricing arithmetic.

Tests balance and rounding invariants without complex DB mocking.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import make_result
from hotspot_ledger.models.api import DiscountType, PricingCategory, TransactionKind
from hotspot_ledger.models.domain import DiscountData
from hotspot_ledger.money import MINOR_UNIT, to_money
from hotspot_ledger.services.ledger import LedgerService, fold_balance
from hotspot_ledger.services.pricing import apply_discount, select_discount

# ============================================================================
# Hypothesis Strategies
# ============================================================================

trader_keys = st.sampled_from(["+254700000001", "+254700000002", "+254700000003"])
kinds = st.sampled_from(list(TransactionKind))
amounts = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("100000"), places=2, allow_nan=False
)
prices = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("10000"), places=2, allow_nan=False
)
percentages = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("100"), places=2, allow_nan=False
)
categories = st.sampled_from(list(PricingCategory))

entries = st.lists(st.tuples(trader_keys, kinds, amounts), max_size=50)


@st.composite
def discounts(draw, category=None):
    """Generate valid DiscountData rules."""
    discount_type = draw(st.sampled_from(list(DiscountType)))
    value = draw(percentages if discount_type == DiscountType.PERCENTAGE else prices)
    return DiscountData(
        discount_id=uuid4(),
        trader_key="+254700000001",
        name="rule",
        description=None,
        discount_type=discount_type,
        discount_value=value,
        category=category or draw(categories),
        threshold=draw(prices),
        starts_at=None,
        ends_at=None,
        is_active=True,
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


def expected_balance(log: list[tuple[str, TransactionKind, Decimal]], trader_key: str) -> Decimal:
    credits = sum(
        (a for k, kind, a in log if k == trader_key and kind == TransactionKind.CREDIT_ADD),
        Decimal("0"),
    )
    purchases = sum(
        (a for k, kind, a in log if k == trader_key and kind == TransactionKind.VOUCHER_PURCHASE),
        Decimal("0"),
    )
    return credits - purchases


# ============================================================================
# Balance Properties
# ============================================================================


class TestBalanceProperties:
    """Balance equals credits minus purchases for any interleaving."""

    @given(entries, trader_keys)
    def test_fold_matches_sum(self, log, trader_key) -> None:
        own = [(kind, amount) for k, kind, amount in log if k == trader_key]
        assert fold_balance(own) == expected_balance(log, trader_key)

    @given(entries, trader_keys, st.randoms(use_true_random=False))
    def test_other_traders_do_not_matter(self, log, trader_key, rnd) -> None:
        """Shuffling the global interleaving never changes one trader's balance."""
        shuffled = list(log)
        rnd.shuffle(shuffled)
        own = [(kind, amount) for k, kind, amount in log if k == trader_key]
        own_shuffled = [(kind, amount) for k, kind, amount in shuffled if k == trader_key]
        assert fold_balance(own) == fold_balance(own_shuffled)

    @given(st.lists(st.tuples(kinds, amounts), max_size=30))
    def test_fold_is_rounded_to_minor_unit(self, own) -> None:
        balance = fold_balance(own)
        assert balance == balance.quantize(MINOR_UNIT)

    @settings(max_examples=50)
    @given(entries, trader_keys)
    async def test_balance_of_matches_sum(self, log, trader_key) -> None:
        """balance_of over the rows the store returns for one trader."""
        session = AsyncMock()
        session.execute = AsyncMock(
            return_value=make_result(
                rows=[(kind, amount) for k, kind, amount in log if k == trader_key]
            )
        )
        service = LedgerService(session)

        assert await service.balance_of(trader_key) == expected_balance(log, trader_key)


# ============================================================================
# Pricing Properties
# ============================================================================


class TestDiscountProperties:
    """Discounted prices stay within [0, base] and are rounded."""

    @given(prices, discounts())
    def test_final_price_bounds(self, base, rule) -> None:
        quote = apply_discount(base, rule)
        assert Decimal("0") <= quote.final_price <= base
        assert quote.final_price == quote.final_price.quantize(MINOR_UNIT)
        assert quote.discount_applied == base - quote.final_price

    @given(prices, percentages)
    def test_percentage_rounds_half_up(self, base, pct) -> None:
        rule = DiscountData(
            discount_id=uuid4(),
            trader_key="+254700000001",
            name="pct",
            description=None,
            discount_type=DiscountType.PERCENTAGE,
            discount_value=pct,
            category=PricingCategory.DAY,
            threshold=Decimal("0"),
            starts_at=None,
            ends_at=None,
            is_active=True,
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        assert apply_discount(base, rule).final_price == to_money(
            base * (1 - pct / Decimal("100"))
        )

    @given(st.lists(discounts(category=PricingCategory.DAY), max_size=8), prices, prices)
    def test_selection_is_deterministic(self, rules, base, usage) -> None:
        at = datetime(2026, 6, 1, tzinfo=UTC)
        first = select_discount(rules, PricingCategory.DAY, base, usage, at)
        second = select_discount(list(reversed(rules)), PricingCategory.DAY, base, usage, at)
        assert first == second

    @given(st.lists(discounts(category=PricingCategory.DAY), min_size=1, max_size=8), prices)
    def test_selected_rule_has_highest_qualifying_threshold(self, rules, usage) -> None:
        at = datetime(2026, 6, 1, tzinfo=UTC)
        chosen = select_discount(rules, PricingCategory.DAY, Decimal("10"), usage, at)
        qualifying = [r for r in rules if r.threshold <= usage]
        if not qualifying:
            assert chosen is None
        else:
            assert chosen is not None
            assert chosen.threshold == max(r.threshold for r in qualifying)
