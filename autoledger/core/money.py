"""
Decimal helpers for currency amounts and percentages.

Amounts carry two decimal places, percentages four.  Rounding is always
``ROUND_HALF_UP`` so that every payout calculation is reproducible
regardless of the database backend.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

CENT = Decimal("0.01")
PERCENT_QUANTUM = Decimal("0.0001")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_money(value: Decimal | int | str) -> Decimal:
    """Round to whole cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_percentage(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def total(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def within(value: Decimal, target: Decimal, tolerance: Decimal) -> bool:
    """True when ``value`` is no further than ``tolerance`` from ``target``."""
    return abs(value - target) <= tolerance
