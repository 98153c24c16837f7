"""Order totals in integer minor units (cents/paise).

Every intermediate figure is an ``int`` number of cents. Decimal amounts are
produced only at the very end via :func:`from_cents`.
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional

from app.core.exceptions import CouponIneligible, ValidationError
from app.services.coupon_rules import as_decimal, compute_discount, validate_eligibility

CENT = Decimal("0.01")


def to_cents(value) -> int:
    """Round a decimal amount to the nearest cent, halves away from zero."""
    amount = as_decimal(value)
    if amount is None:
        raise ValidationError("INVALID_AMOUNT", "Invalid amount")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


@dataclass(frozen=True)
class PricedLine:
    """A cart line with its price frozen at checkout."""

    id: Any
    name: str
    price: Decimal
    quantity: int
    category: Optional[str] = None

    def snapshot(self) -> dict:
        data = asdict(self)
        data["price"] = float(from_cents(to_cents(self.price)))
        return data


@dataclass(frozen=True)
class OrderTotals:
    subtotal_cents: int
    discount_cents: int
    delivery_cents: int
    total_cents: int

    @property
    def subtotal(self) -> Decimal:
        return from_cents(self.subtotal_cents)

    @property
    def discount(self) -> Decimal:
        return from_cents(self.discount_cents)

    @property
    def delivery_fee(self) -> Decimal:
        return from_cents(self.delivery_cents)

    @property
    def amount(self) -> Decimal:
        return from_cents(self.total_cents)


def subtotal_cents(lines: Iterable[PricedLine]) -> int:
    total = 0
    for line in lines:
        if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity <= 0:
            raise ValidationError("EMPTY_CART", "Unable to process order items")
        price_cents = to_cents(line.price)
        if price_cents <= 0:
            raise ValidationError("EMPTY_CART", "Unable to process order items")
        total += price_cents * line.quantity
    return total


def compute_order_totals(
    lines: List[PricedLine],
    coupon=None,
    user_id=None,
    delivery_fee=Decimal("0"),
    now: Optional[datetime] = None,
) -> OrderTotals:
    """Price a cart.

    Raises ``ValidationError`` for an empty or malformed cart and for a total
    that is not positive, and ``CouponIneligible`` when ``coupon`` is given but
    cannot be applied to this cart and user.
    """
    if not lines:
        raise ValidationError("EMPTY_CART", "Your cart is empty")

    sub_cents = subtotal_cents(lines)
    if sub_cents <= 0:
        raise ValidationError("EMPTY_CART", "Your cart is empty")

    discount_cents = 0
    if coupon is not None:
        subtotal = from_cents(sub_cents)
        eligibility = validate_eligibility(coupon, subtotal, user_id, now=now)
        if not eligibility.valid:
            raise CouponIneligible(eligibility.reason, eligibility.message)
        discount_cents = min(to_cents(compute_discount(coupon, subtotal)), sub_cents)

    delivery_cents = 0 if sub_cents == 0 else to_cents(delivery_fee)
    total_cents = max(sub_cents - discount_cents, 0) + delivery_cents

    if total_cents <= 0:
        raise ValidationError("TOTAL_TOO_LOW", "Order total must be greater than zero after discounts")

    return OrderTotals(
        subtotal_cents=sub_cents,
        discount_cents=discount_cents,
        delivery_cents=delivery_cents,
        total_cents=total_cents,
    )
