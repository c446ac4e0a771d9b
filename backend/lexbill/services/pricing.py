"""Discount and tax calculation.

The discount is applied first, then tax. A discount is either a percentage
or a fixed amount, never both; the two nullable invoice/proposal columns are
only read and written through ``discount_from_columns``/``discount_to_columns``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple, Union

from lexbill.core.errors import InvalidDiscountConfigurationError
from lexbill.services.money import HUNDRED, ZERO, Numeric, is_positive, percent_of, q, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NoDiscount:
    def value_for(self, subtotal: Decimal) -> Decimal:
        return ZERO


@dataclass(frozen=True)
class PercentDiscount:
    percent: Decimal

    def value_for(self, subtotal: Decimal) -> Decimal:
        return percent_of(subtotal, self.percent)


@dataclass(frozen=True)
class AmountDiscount:
    amount: Decimal

    def value_for(self, subtotal: Decimal) -> Decimal:
        return q(self.amount)


Discount = Union[NoDiscount, PercentDiscount, AmountDiscount]


def discount_from_columns(percent: Optional[Numeric], amount: Optional[Numeric]) -> Discount:
    """Build the discount from its two-column storage form; percent wins when both are set."""
    if percent is not None and to_decimal(percent) < ZERO:
        raise InvalidDiscountConfigurationError(f"Discount percent cannot be negative: {percent}")
    if percent is not None and to_decimal(percent) > HUNDRED:
        raise InvalidDiscountConfigurationError(f"Discount percent cannot exceed 100: {percent}")
    if amount is not None and to_decimal(amount) < ZERO:
        raise InvalidDiscountConfigurationError(f"Discount amount cannot be negative: {amount}")

    if is_positive(percent):
        return PercentDiscount(to_decimal(percent))
    if is_positive(amount):
        return AmountDiscount(to_decimal(amount))
    return NoDiscount()


def discount_to_columns(discount: Discount) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    if isinstance(discount, PercentDiscount):
        return discount.percent, None
    if isinstance(discount, AmountDiscount):
        return None, discount.amount
    return None, None


def prorate_discount(discount: Discount, part: Numeric, whole: Optional[Numeric]) -> Discount:
    """Scale a fixed-amount discount down to the share ``part / whole`` of the total it was set for."""
    if not isinstance(discount, AmountDiscount):
        return discount
    whole_value = to_decimal(whole) if is_positive(whole) else to_decimal(part)
    if whole_value == ZERO:
        return NoDiscount()
    return AmountDiscount(q(to_decimal(part) * discount.amount / whole_value))


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount_value: Decimal
    after_discount: Decimal
    tax_amount: Decimal
    final_amount: Decimal

    @property
    def is_negative(self) -> bool:
        return self.after_discount < ZERO

    @property
    def net_of_tax(self) -> Decimal:
        return self.final_amount - self.tax_amount


def price(
    subtotal: Numeric,
    discount: Discount,
    tax_rate: Optional[Numeric],
    tax_inclusive: bool,
) -> PriceBreakdown:
    subtotal_value = q(subtotal)
    discount_value = discount.value_for(subtotal_value)

    # Not clamped: a discount larger than the subtotal is a configuration problem to surface.
    after_discount = subtotal_value - discount_value

    tax_amount = ZERO
    final_amount = after_discount
    if is_positive(tax_rate):
        rate = to_decimal(tax_rate)
        if tax_inclusive:
            tax_amount = q(after_discount * rate / (HUNDRED + rate))
        else:
            tax_amount = q(after_discount * rate / HUNDRED)
            final_amount = after_discount + tax_amount

    breakdown = PriceBreakdown(
        subtotal=subtotal_value,
        discount_value=discount_value,
        after_discount=after_discount,
        tax_amount=tax_amount,
        final_amount=final_amount,
    )
    if breakdown.is_negative:
        logger.warning(
            "pricing.negative_total",
            extra={"raw_subtotal": subtotal_value, "amount": final_amount},
        )
    return breakdown


def price_from_columns(
    subtotal: Numeric,
    discount_percent: Optional[Numeric],
    discount_amount: Optional[Numeric],
    tax_rate: Optional[Numeric],
    tax_inclusive: bool,
) -> PriceBreakdown:
    return price(subtotal, discount_from_columns(discount_percent, discount_amount), tax_rate, tax_inclusive)
