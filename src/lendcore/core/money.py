"""Fixed-point currency helpers.

All monetary amounts in the engine are ``Decimal``. Floats are converted through
their string representation so that ``0.1`` becomes ``Decimal("0.1")`` rather
than the binary expansion.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings, floats and Decimals to ``Decimal``."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    return Decimal(str(value))


def quantum(places: int = 2) -> Decimal:
    """Smallest currency unit for the given number of decimal places."""
    return Decimal(1).scaleb(-places)


def round_money(amount: Any, places: int = 2) -> Decimal:
    """Round half-up to the smallest currency unit."""
    return to_decimal(amount).quantize(quantum(places), rounding=ROUND_HALF_UP)


def percent_to_rate(percent: Any) -> Decimal:
    """Convert a percentage (``12`` for 12%) to a decimal rate (``0.12``)."""
    return to_decimal(percent) / HUNDRED


def sum_money(amounts: Iterable[Any]) -> Decimal:
    total = ZERO
    for amount in amounts:
        total += to_decimal(amount)
    return total
