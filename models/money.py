"""
Fixed-point money helpers.

Every amount in the system is a ``Decimal`` held to cents.  Binary floats are
never used for storage or for tolerance comparisons.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
AMOUNT_TOLERANCE = Decimal("0.01")


def to_decimal(value) -> Optional[Decimal]:
    """Convert value to Decimal (floats go through str to avoid binary noise)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value) -> Decimal:
    """Round to cents, half-up.  None is treated as zero."""
    dec = to_decimal(value)
    if dec is None:
        return ZERO
    return dec.quantize(CENT, rounding=ROUND_HALF_UP)


def amounts_match(
    a: Optional[Decimal],
    b: Optional[Decimal],
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> bool:
    """Check if two amounts match within tolerance."""
    if a is None or b is None:
        return False
    return abs(a - b) <= tolerance


def format_money(value: Optional[Decimal]) -> str:
    if value is None:
        return "$—"
    return f"${to_money(value):,.2f}"
