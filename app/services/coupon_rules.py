"""Coupon eligibility checks and discount arithmetic.

Both functions are pure: they read the coupon's fields (including its per-user
usage counters) and never touch the database. The order of the eligibility
checks is significant; the first failing check decides the reason.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from app.core.config import settings
from app.models.coupon import DiscountType

ZERO = Decimal("0")
HUNDRED = Decimal("100")

CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "GBP": "£", "EUR": "€"}


class EligibilityReason(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    NOT_YET_LIVE = "NOT_YET_LIVE"
    EXPIRED = "EXPIRED"
    EMPTY_CART = "EMPTY_CART"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    GLOBAL_LIMIT_REACHED = "GLOBAL_LIMIT_REACHED"
    PER_USER_LIMIT_REACHED = "PER_USER_LIMIT_REACHED"


REASON_MESSAGES = {
    EligibilityReason.NOT_FOUND: "Coupon not found",
    EligibilityReason.INACTIVE: "This coupon is currently inactive",
    EligibilityReason.NOT_YET_LIVE: "This coupon isn't live yet",
    EligibilityReason.EXPIRED: "This coupon has expired",
    EligibilityReason.EMPTY_CART: "Add dishes to your cart before applying a coupon",
    EligibilityReason.GLOBAL_LIMIT_REACHED: "This coupon has reached its maximum redemptions",
    EligibilityReason.PER_USER_LIMIT_REACHED: "You've already used this coupon the maximum number of times",
}


@dataclass(frozen=True)
class EligibilityResult:
    valid: bool
    reason: Optional[EligibilityReason] = None
    message: str = "Coupon applied"

    @classmethod
    def reject(cls, reason: EligibilityReason, message: Optional[str] = None) -> "EligibilityResult":
        return cls(valid=False, reason=reason, message=message or REASON_MESSAGES[reason])


def as_decimal(value) -> Optional[Decimal]:
    """Return ``value`` as a finite Decimal, or None if it is not a number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        return None
    try:
        return result if result.is_finite() else None
    except InvalidOperation:
        return None


def format_amount(value, currency: Optional[str] = None) -> str:
    amount = as_decimal(value) or ZERO
    symbol = CURRENCY_SYMBOLS.get((currency or settings.CURRENCY).upper(), "")
    if amount == amount.to_integral_value():
        return f"{symbol}{int(amount)}"
    return f"{symbol}{amount:.2f}"


def validate_eligibility(coupon, subtotal, user_id=None, now: Optional[datetime] = None) -> EligibilityResult:
    if coupon is None:
        return EligibilityResult.reject(EligibilityReason.NOT_FOUND)
    if not coupon.active:
        return EligibilityResult.reject(EligibilityReason.INACTIVE)

    now = now or datetime.utcnow()
    if coupon.start_date and now < coupon.start_date:
        return EligibilityResult.reject(EligibilityReason.NOT_YET_LIVE)
    if coupon.end_date and now > coupon.end_date:
        return EligibilityResult.reject(EligibilityReason.EXPIRED)

    amount = as_decimal(subtotal)
    if amount is None or amount <= ZERO:
        return EligibilityResult.reject(EligibilityReason.EMPTY_CART)

    minimum = as_decimal(coupon.min_order_amount) or ZERO
    if minimum > ZERO and amount < minimum:
        return EligibilityResult.reject(
            EligibilityReason.BELOW_MINIMUM,
            f"Requires a minimum order of {format_amount(minimum)}",
        )

    if coupon.usage_limit is not None and (coupon.usage_count or 0) >= coupon.usage_limit:
        return EligibilityResult.reject(EligibilityReason.GLOBAL_LIMIT_REACHED)

    if coupon.per_user_limit and user_id is not None:
        if coupon.usage_for(user_id) >= coupon.per_user_limit:
            return EligibilityResult.reject(EligibilityReason.PER_USER_LIMIT_REACHED)

    return EligibilityResult(valid=True)


def compute_discount(coupon, subtotal) -> Decimal:
    """Discount for ``subtotal``, never negative and never above the subtotal."""
    amount = as_decimal(subtotal)
    if coupon is None or amount is None or amount <= ZERO:
        return ZERO

    value = as_decimal(coupon.discount_value) or ZERO
    if coupon.discount_type == DiscountType.FLAT:
        discount = value
    else:
        discount = amount * value / HUNDRED

    cap = as_decimal(coupon.max_discount_value)
    if cap is not None:
        discount = min(discount, cap)

    return max(ZERO, min(discount, amount))
