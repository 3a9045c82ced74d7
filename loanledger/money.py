"""Decimal money helpers.

Every amount that crosses a service boundary is a ``Decimal`` quantized to
the cent with half-up rounding.
"""
import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from loanledger.config import CENT, MONEY_TOLERANCE
from loanledger.exceptions import ValidationError

ZERO = Decimal("0.00")


def round_money(value: Decimal) -> Decimal:
    """Quantize a Decimal to the cent (ROUND_HALF_UP)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value):
    """Parse a loosely formatted amount, returning None when it is not a number.

    Accepts Decimals, ints, floats and strings such as ``"1,250.50"`` or
    ``" 800 "``. Booleans, blanks, NaN and infinities are rejected.

    Args:
        value: Raw cell value.

    Returns:
        Decimal quantized to the cent, or None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        # repr() keeps the shortest round-tripping form (0.1 -> "0.1")
        number = Decimal(repr(value))
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
    if not number.is_finite():
        return None
    return round_money(number)


def to_money(value, field: str = "amount") -> Decimal:
    """Like parse_amount but raises ValidationError on unparseable input."""
    amount = parse_amount(value)
    if amount is None:
        raise ValidationError(f"{field} is not a valid amount", field=field, value=value)
    return amount


def money_equal(a: Decimal, b: Decimal) -> bool:
    """True when two amounts differ by less than the money tolerance."""
    return abs(a - b) < MONEY_TOLERANCE


def money_sum(values) -> Decimal:
    return round_money(sum(values, ZERO))
