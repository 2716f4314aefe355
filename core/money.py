"""
Fixed-point money arithmetic.

All ledger amounts are decimal.Decimal, never float. Intermediate values keep
at least four fractional digits; only values that get persisted or shown are
rounded to the currency's minor unit (two places) using ROUND_HALF_UP.
"""

from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Iterable

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Minor unit of the currency (cents)
MONEY_PLACES = Decimal("0.01")

# Working precision for chained intermediate results
WORKING_PLACES = Decimal("0.0001")

_PRECISION = 28


def to_decimal(value: Decimal | int | str | float | None) -> Decimal:
    """
    Coerce a numeric input to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than its
    binary expansion. None is treated as zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def multiply(a, b) -> Decimal:
    """a * b at working precision."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return (to_decimal(a) * to_decimal(b)).quantize(WORKING_PLACES, rounding=ROUND_HALF_UP)


def percent_of(amount, rate) -> Decimal:
    """amount * rate / 100 at working precision. `rate` is a percentage (0-100)."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return (to_decimal(amount) * to_decimal(rate) / HUNDRED).quantize(
            WORKING_PLACES, rounding=ROUND_HALF_UP
        )


def negate(amount) -> Decimal:
    return -to_decimal(amount)


def round_money(amount) -> Decimal:
    """Round to the minor unit, half up (2.345 -> 2.35, -2.345 -> -2.35)."""
    return to_decimal(amount).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def total_of(amounts: Iterable) -> Decimal:
    """Exact sum; Decimal addition never loses digits at this scale."""
    result = ZERO
    for amount in amounts:
        result += to_decimal(amount)
    return result
