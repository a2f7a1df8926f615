"""Discount calculation.

A promotion discounts either a percentage of the order (optionally capped)
or a fixed amount, never both. The two shapes are separate types so code
that computes a discount cannot see a promotion with both or neither set.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional, Union

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PercentDiscount:
    """``percent`` of the order amount, clamped to ``cap`` when set."""

    percent: Decimal
    cap: Optional[Decimal] = None

    def __post_init__(self):
        if not Decimal("0") <= self.percent <= HUNDRED:
            raise ValueError(f"percent must be between 0 and 100, got {self.percent}")
        if self.cap is not None and self.cap < 0:
            raise ValueError(f"cap cannot be negative, got {self.cap}")


@dataclass(frozen=True)
class FixedDiscount:
    """A flat amount off the order."""

    amount: Decimal

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError(f"amount cannot be negative, got {self.amount}")


DiscountSpec = Union[PercentDiscount, FixedDiscount]


def round_money(value: Decimal) -> Decimal:
    """Round to currency minor units (banker's rounding)."""
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def calculate_discount(spec: DiscountSpec, order_amount: Decimal) -> Decimal:
    """Compute the discount a promotion grants on ``order_amount``.

    Percent discounts are ``order_amount * percent / 100`` limited by the
    cap; fixed discounts are the fixed amount. Either way the result never
    exceeds the order amount and is rounded to 2 decimal places.
    """
    if isinstance(spec, PercentDiscount):
        discount = order_amount * spec.percent / HUNDRED
        if spec.cap is not None and discount > spec.cap:
            discount = spec.cap
    elif isinstance(spec, FixedDiscount):
        discount = spec.amount
    else:
        raise TypeError(f"Unsupported discount spec: {spec!r}")

    discount = min(discount, order_amount)
    return round_money(discount)
