"""
vestledger/core/numeric.py

Integer helpers for entitlement accounting.

All token amounts are Python ints in base units. The transfer range is
unsigned 64-bit, matching the host ledger's token amounts:

    0 <= amount <= U64_MAX

Nothing here uses binary floating point.
"""

from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Optional, Union

from vestledger.core.exceptions import ConfigurationError


U64_MAX = 2 ** 64 - 1
MAX_DECIMALS = 255


def saturating_sub(a: int, b: int) -> int:
    """a - b clamped at zero. Never negative."""
    return a - b if a > b else 0


def checked_mul(a: int, b: int, limit: int = U64_MAX) -> Optional[int]:
    """
    Multiply two non-negative ints.

    Returns None when the product leaves [0, limit]. The caller decides
    how to report the overflow; a wrapped value is never returned.
    """
    if a < 0 or b < 0:
        return None
    product = a * b
    if product > limit:
        return None
    return product


def scale_to_smallest_unit(amount: int, decimals: int) -> Optional[int]:
    """amount * 10**decimals, or None on overflow."""
    if not 0 <= decimals <= MAX_DECIMALS:
        return None
    return checked_mul(amount, 10 ** decimals)


def to_fraction(value: Union[int, float, str, Decimal, Fraction]) -> Fraction:
    """
    Exact rational for a human-entered number.

    Floats go through their shortest repr, so 12.5 and 0.1 mean what the
    YAML file says rather than their binary approximations.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Expected a number, got {value!r}")
    if isinstance(value, (int, Fraction)):
        return Fraction(value)
    try:
        dec = Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigurationError(f"Not a number: {value!r}") from exc
    if not dec.is_finite():
        raise ConfigurationError(f"Non-finite number: {value!r}")
    return Fraction(dec)


def percent_of(total: int, percent: Union[int, float, str, Decimal, Fraction]) -> int:
    """floor(total * percent / 100) using exact arithmetic."""
    share = to_fraction(percent) * total / 100
    if share < 0:
        raise ConfigurationError(
            "Negative percentage share",
            {"total": total, "percent": percent},
        )
    return int(share)  # int() of a non-negative Fraction truncates == floor
