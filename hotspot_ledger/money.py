"""
Money helpers - one rounding rule for every amount the service produces.

Amounts are Decimal with two fractional digits (the currency minor unit),
rounded half-up.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """
    Convert a numeric value to a money Decimal rounded half-up to the minor unit.

    Floats go through their shortest repr so 10.005 rounds as written, not as
    its binary approximation.

    Raises:
        ValueError: value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        amount = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return amount.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal, currency: str = "USD") -> str:
    """Human-readable amount for notification text."""
    symbol = "$" if currency == "USD" else f"{currency} "
    return f"{symbol}{to_money(amount)}"
