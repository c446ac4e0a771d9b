"""Currency and percentage arithmetic.

Every amount is a ``Decimal``; values are quantized to cents with
ROUND_HALF_UP at the points the billing engine persists or compares them.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Numeric]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def q(value: Numeric) -> Decimal:
    return to_decimal(value).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def percent_of(amount: Numeric, percent: Numeric) -> Decimal:
    """``amount * percent / 100`` rounded to cents."""
    return q(to_decimal(amount) * to_decimal(percent) / HUNDRED)


def line_total(quantity: Numeric, unit_price: Optional[Numeric]) -> Decimal:
    return q(to_decimal(quantity) * to_decimal(unit_price))


def money_sum(values: Iterable[Numeric]) -> Decimal:
    return q(sum((to_decimal(value) for value in values), start=ZERO))


def is_positive(value: Optional[Numeric]) -> bool:
    return value is not None and to_decimal(value) > ZERO
