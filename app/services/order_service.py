"""Order placement, payment confirmation and operator actions.

Counters on a coupon move only through ``CouponService.redeem``/``release``.
An order records ``coupon_redeemed`` when its redemption went through, and
removal reverses the counters only for such orders, whatever the payment
method.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple
import random
import string
import time

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    CouponIneligible,
    Forbidden,
    OrderNotFound,
    ProviderAuthError,
    ProviderTransientError,
    StoreError,
    ValidationError,
)
from app.models.cart import MAX_CART_QUANTITY
from app.models.food import FoodItem
from app.models.order import Order, OrderStatus, PaymentMethod
from app.models.order_status_history import OrderStatusHistory
from app.services.cart_service import CartService
from app.services.coupon_rules import REASON_MESSAGES, EligibilityReason
from app.services.coupon_service import CouponService, normalize_code
from app.services.payment_gateway import PaymentGatewayBase
from app.services.pricing import OrderTotals, PricedLine, compute_order_totals, to_cents

logger = structlog.get_logger()

CASH_PAYMENT_ALIASES = {"cod", "cash", "cash-on-delivery", "cash_on_delivery"}
MAX_STATUS_LENGTH = 50


@dataclass(frozen=True)
class PlacedOrder:
    order_id: int
    order_number: str
    payment_method: PaymentMethod
    amount: Decimal
    session_url: Optional[str] = None


@dataclass(frozen=True)
class PaymentConfirmation:
    paid: bool
    message: str


def normalize_payment_method(value: Optional[str]) -> PaymentMethod:
    raw = value.strip().lower() if isinstance(value, str) else ""
    return PaymentMethod.COD if raw in CASH_PAYMENT_ALIASES else PaymentMethod.ONLINE


def generate_order_number(db: Session) -> str:
    """Generate a unique order number with bounded retries."""
    max_attempts = 10

    for _ in range(max_attempts):
        timestamp = datetime.utcnow().strftime("%Y%m%d")
        random_part = "".join(random.choices(string.ascii_uppercase + string.digits, k=8))
        order_number = f"NSH{timestamp}{random_part}"

        existing = db.query(Order.id).filter(Order.order_number == order_number).first()
        if not existing:
            return order_number

    raise StoreError("Failed to generate order number")


def coupon_snapshot(coupon) -> Dict[str, Any]:
    return {
        "code": coupon.code,
        "label": coupon.label,
        "discount_type": coupon.discount_type.value,
        "discount_value": float(coupon.discount_value),
        "max_discount_value": float(coupon.max_discount_value) if coupon.max_discount_value is not None else None,
        "min_order_amount": float(coupon.min_order_amount or 0),
    }


def release_provider_discount(gateway: PaymentGatewayBase, discount_id: Optional[str], order_id=None) -> bool:
    """Best-effort delete of a provider discount object.

    Never raises. A failed delete is logged and handed to the background
    cleanup task for retries.
    """
    if not discount_id or not gateway.is_configured:
        return False
    try:
        gateway.delete_discount(discount_id)
        return True
    except (ProviderAuthError, ProviderTransientError) as exc:
        logger.warning(
            "stripe_coupon_cleanup_failed",
            discount_id=discount_id,
            order_id=order_id,
            error_type=type(exc).__name__,
            detail=exc.detail,
        )

    # Imported here: the task module depends on this one.
    from app.tasks.order_tasks import cleanup_provider_discount

    try:
        cleanup_provider_discount.delay(discount_id)
    except Exception as exc:
        logger.error("stripe_coupon_cleanup_not_queued", discount_id=discount_id, error=str(exc))
    return False


class OrderService:

    @staticmethod
    def get_order(db: Session, order_id: int) -> Order:
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise OrderNotFound()
        return order

    @staticmethod
    def _price_lines(db: Session, items: List[Mapping[str, Any]]) -> List[PricedLine]:
        """Snapshot name, price and category from the live menu."""
        if not items:
            raise ValidationError("EMPTY_CART", "Your cart is empty")

        food_ids = set()
        for entry in items:
            food_id = entry.get("food_id") if isinstance(entry, Mapping) else None
            if not isinstance(food_id, int) or isinstance(food_id, bool):
                raise ValidationError("EMPTY_CART", "Unable to process order items")
            food_ids.add(food_id)

        foods = {food.id: food for food in db.query(FoodItem).filter(FoodItem.id.in_(food_ids)).all()}

        lines = []
        for entry in items:
            food = foods.get(entry["food_id"])
            if food is None or not food.is_available:
                name = food.name if food is not None else "An item in your cart"
                raise ValidationError("INVALID_ITEM", f"{name} is no longer available")

            quantity = entry.get("quantity")
            if (
                not isinstance(quantity, int)
                or isinstance(quantity, bool)
                or quantity < 1
                or quantity > MAX_CART_QUANTITY
            ):
                raise ValidationError("EMPTY_CART", "Unable to process order items")

            lines.append(
                PricedLine(
                    id=food.id,
                    name=food.name,
                    price=Decimal(food.price),
                    quantity=quantity,
                    category=food.category,
                )
            )
        return lines

    @staticmethod
    def _checkout_line_items(lines: List[PricedLine], totals: OrderTotals) -> List[Dict[str, Any]]:
        currency = settings.currency_code
        line_items = [
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": line.name},
                    "unit_amount": to_cents(line.price),
                },
                "quantity": line.quantity,
            }
            for line in lines
        ]
        if totals.delivery_cents > 0:
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": "Delivery Charges"},
                        "unit_amount": totals.delivery_cents,
                    },
                    "quantity": 1,
                }
            )
        return line_items

    @staticmethod
    def place_order(
        db: Session,
        gateway: PaymentGatewayBase,
        user_id: int,
        items: List[Mapping[str, Any]],
        address: Optional[Mapping[str, Any]],
        payment_method: Optional[str] = "online",
        coupon_code: Optional[str] = None,
        instructions: Optional[str] = "",
    ) -> PlacedOrder:
        lines = OrderService._price_lines(db, items)

        if not isinstance(address, Mapping) or not address:
            raise ValidationError("ADDRESS_MISSING", "Delivery address missing")

        method = normalize_payment_method(payment_method)
        instructions = (instructions or "").strip()

        coupon = None
        code = normalize_code(coupon_code)
        if code:
            coupon = CouponService.get_by_code(db, code)
            if coupon is None:
                raise CouponIneligible(EligibilityReason.NOT_FOUND, REASON_MESSAGES[EligibilityReason.NOT_FOUND])

        totals = compute_order_totals(lines, coupon, user_id, delivery_fee=settings.DELIVERY_FEE)

        if method == PaymentMethod.ONLINE and not gateway.is_configured:
            logger.warning("online_payment_unavailable", user_id=user_id)
            raise ProviderAuthError("payment gateway not configured")

        order = Order(
            order_number=generate_order_number(db),
            user_id=user_id,
            items=[line.snapshot() for line in lines],
            address=dict(address),
            instructions=instructions,
            subtotal=totals.subtotal,
            discount=totals.discount,
            delivery_fee=totals.delivery_fee,
            amount=totals.amount,
            currency=settings.CURRENCY,
            coupon_code=coupon.code if coupon else None,
            coupon_snapshot=coupon_snapshot(coupon) if coupon else None,
            coupon_redeemed=False,
            payment=False,
            payment_method=method,
            status=(
                OrderStatus.AWAITING_CASH_COLLECTION
                if method == PaymentMethod.COD
                else OrderStatus.AWAITING_PAYMENT
            ),
        )

        if method == PaymentMethod.COD:
            return OrderService._place_cash_order(db, order, coupon, user_id, totals)
        return OrderService._place_online_order(db, gateway, order, coupon, user_id, lines, totals)

    @staticmethod
    def _place_cash_order(db: Session, order: Order, coupon, user_id: int, totals: OrderTotals) -> PlacedOrder:
        try:
            db.add(order)
            db.flush()
            if coupon is not None:
                CouponService.redeem(db, coupon.code, user_id)
                order.coupon_redeemed = True
            CartService.clear_cart(db, user_id)
            db.commit()
        except CouponIneligible as exc:
            db.rollback()
            logger.info("coupon_redemption_rejected", user_id=user_id, code=coupon.code, reason=exc.reason.value)
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("order_persist_failed", user_id=user_id, payment_method="cod", error=str(exc))
            raise StoreError() from exc

        logger.info(
            "order_placed",
            order_id=order.id,
            order_number=order.order_number,
            user_id=user_id,
            payment_method="cod",
            amount=str(totals.amount),
            coupon_code=order.coupon_code,
        )
        return PlacedOrder(
            order_id=order.id,
            order_number=order.order_number,
            payment_method=PaymentMethod.COD,
            amount=totals.amount,
        )

    @staticmethod
    def _place_online_order(
        db: Session,
        gateway: PaymentGatewayBase,
        order: Order,
        coupon,
        user_id: int,
        lines: List[PricedLine],
        totals: OrderTotals,
    ) -> PlacedOrder:
        discount_id = None
        try:
            db.add(order)
            db.flush()
            order_id = order.id

            if totals.discount_cents > 0:
                discount_id = gateway.create_discount(
                    totals.discount_cents,
                    settings.currency_code,
                    f"{coupon.code} discount" if coupon else "Order discount",
                )

            metadata = {"order_id": str(order_id), "order_number": order.order_number}
            if order.instructions:
                metadata["instructions"] = order.instructions[:500]
            if coupon is not None:
                metadata["coupon_code"] = coupon.code
                metadata["coupon_discount"] = f"{totals.discount:.2f}"

            session = gateway.create_checkout_session(
                line_items=OrderService._checkout_line_items(lines, totals),
                success_url=f"{settings.FRONTEND_URL}/verify?success=true&orderId={order_id}",
                cancel_url=f"{settings.FRONTEND_URL}/verify?success=false&orderId={order_id}",
                discount_id=discount_id,
                metadata=metadata,
                expires_at=int(time.time()) + settings.CHECKOUT_SESSION_EXPIRY_MINUTES * 60,
            )

            order.stripe_coupon_id = discount_id
            order.checkout_session_id = session.id
            CartService.clear_cart(db, user_id)
            db.commit()
        except (ProviderAuthError, ProviderTransientError) as exc:
            db.rollback()
            logger.error(
                "stripe_checkout_failed",
                user_id=user_id,
                error_type=type(exc).__name__,
                detail=exc.detail,
            )
            release_provider_discount(gateway, discount_id)
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("order_persist_failed", user_id=user_id, payment_method="online", error=str(exc))
            release_provider_discount(gateway, discount_id)
            raise StoreError() from exc

        logger.info(
            "order_placed",
            order_id=order_id,
            order_number=order.order_number,
            user_id=user_id,
            payment_method="online",
            amount=str(totals.amount),
            coupon_code=order.coupon_code,
            checkout_session_id=session.id,
        )
        return PlacedOrder(
            order_id=order_id,
            order_number=order.order_number,
            payment_method=PaymentMethod.ONLINE,
            amount=totals.amount,
            session_url=session.url,
        )

    @staticmethod
    def confirm_payment(db: Session, gateway: PaymentGatewayBase, order_id: int, success: bool) -> PaymentConfirmation:
        """Apply the outcome of a checkout redirect or webhook. Safe to repeat."""
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise OrderNotFound()

        if order.payment_method == PaymentMethod.COD:
            return PaymentConfirmation(paid=True, message="Cash order verified")

        if order.payment:
            return PaymentConfirmation(paid=True, message="Paid")

        if success:
            return OrderService._mark_paid(db, gateway, order)

        discount_id = order.stripe_coupon_id
        try:
            db.delete(order)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("order_delete_failed", order_id=order_id, error=str(exc))
            raise StoreError() from exc

        logger.info("unpaid_order_removed", order_id=order_id)
        release_provider_discount(gateway, discount_id, order_id)
        return PaymentConfirmation(paid=False, message="Not Paid")

    @staticmethod
    def _mark_paid(db: Session, gateway: PaymentGatewayBase, order: Order) -> PaymentConfirmation:
        order_id = order.id
        user_id = order.user_id
        coupon_code = order.coupon_code
        discount_id = order.stripe_coupon_id
        old_status = order.status

        try:
            # Only one concurrent confirmation may flip the flag.
            claimed = (
                db.query(Order)
                .filter(Order.id == order_id, Order.payment.is_(False))
                .update(
                    {
                        Order.payment: True,
                        Order.status: OrderStatus.FOOD_PROCESSING,
                        Order.stripe_coupon_id: None,
                    },
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                db.rollback()
                return PaymentConfirmation(paid=True, message="Paid")

            db.add(
                OrderStatusHistory(
                    order_id=order_id,
                    old_status=old_status,
                    new_status=OrderStatus.FOOD_PROCESSING,
                )
            )

            redeemed = False
            if coupon_code:
                try:
                    CouponService.redeem(db, coupon_code, user_id)
                    redeemed = True
                except CouponIneligible as exc:
                    logger.warning(
                        "coupon_redemption_rejected",
                        order_id=order_id,
                        user_id=user_id,
                        code=coupon_code,
                        reason=exc.reason.value,
                    )
            if redeemed:
                db.query(Order).filter(Order.id == order_id).update(
                    {Order.coupon_redeemed: True}, synchronize_session=False
                )

            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("payment_confirmation_failed", order_id=order_id, error=str(exc))
            raise StoreError() from exc

        logger.info("payment_confirmed", order_id=order_id, user_id=user_id, coupon_code=coupon_code)
        release_provider_discount(gateway, discount_id, order_id)
        return PaymentConfirmation(paid=True, message="Paid")

    @staticmethod
    def update_status(
        db: Session,
        order_id: int,
        status: str,
        requester_is_admin: bool,
        changed_by: Optional[int] = None,
    ) -> Order:
        """Operator status change. Coupon counters are not touched."""
        if not requester_is_admin:
            raise Forbidden("You are not an admin")

        new_status = status.strip() if isinstance(status, str) else ""
        if not new_status or len(new_status) > MAX_STATUS_LENGTH:
            raise ValidationError("INVALID_STATUS", "Status must be 1-50 characters")

        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise OrderNotFound()

        old_status = order.status
        order.status = new_status
        # Handing over a cash order means the cash was collected.
        if new_status == OrderStatus.DELIVERED and order.payment_method == PaymentMethod.COD:
            order.payment = True

        db.add(
            OrderStatusHistory(
                order_id=order.id,
                old_status=old_status,
                new_status=new_status,
                changed_by=changed_by,
            )
        )
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError() from exc
        db.refresh(order)

        logger.info(
            "order_status_updated",
            order_id=order.id,
            old_status=old_status,
            new_status=new_status,
            changed_by=changed_by,
        )
        return order

    @staticmethod
    def remove_order(db: Session, gateway: PaymentGatewayBase, order_id: int, requester_is_admin: bool) -> None:
        if not requester_is_admin:
            raise Forbidden()

        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise OrderNotFound()

        discount_id = order.stripe_coupon_id
        coupon_code = order.coupon_code
        user_id = order.user_id
        redeemed = bool(order.coupon_redeemed)

        try:
            db.delete(order)
            if redeemed and coupon_code:
                CouponService.release(db, coupon_code, user_id)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("order_remove_failed", order_id=order_id, error=str(exc))
            raise StoreError() from exc

        logger.info(
            "order_removed",
            order_id=order_id,
            coupon_code=coupon_code,
            coupon_released=redeemed and bool(coupon_code),
        )
        release_provider_discount(gateway, discount_id, order_id)

    @staticmethod
    def list_user_orders(db: Session, user_id: int) -> List[Order]:
        return (
            db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(Order.date.desc(), Order.id.desc())
            .all()
        )

    @staticmethod
    def list_orders(
        db: Session,
        requester_is_admin: bool,
        page: int = 1,
        limit: int = 50,
        status: Optional[str] = None,
    ) -> Tuple[List[Order], int]:
        if not requester_is_admin:
            raise Forbidden()

        query = db.query(Order)
        if status:
            query = query.filter(Order.status == status)

        total = query.count()
        orders = (
            query.order_by(Order.date.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return orders, total

    @staticmethod
    def sweep_abandoned_checkouts(
        db: Session,
        gateway: PaymentGatewayBase,
        older_than_minutes: Optional[int] = None,
    ) -> int:
        """Delete unpaid online orders whose checkout was never completed.

        An order is only removed once its checkout session is expired on the
        provider side. Orders whose session was paid, or could not be closed,
        stay in place for the webhook or the next sweep.
        """
        minutes = settings.ABANDONED_CHECKOUT_MINUTES if older_than_minutes is None else older_than_minutes
        cutoff = datetime.utcnow() - timedelta(minutes=minutes)

        stale_orders = (
            db.query(Order)
            .filter(
                Order.payment_method == PaymentMethod.ONLINE,
                Order.payment.is_(False),
                Order.date < cutoff,
            )
            .all()
        )

        discount_ids = []
        for order in stale_orders:
            if not OrderService._close_checkout_session(gateway, order):
                continue
            discount_ids.append((order.id, order.stripe_coupon_id))
            db.delete(order)

        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError() from exc

        for order_id, discount_id in discount_ids:
            logger.info("abandoned_checkout_removed", order_id=order_id)
            release_provider_discount(gateway, discount_id, order_id)

        return len(discount_ids)

    @staticmethod
    def _close_checkout_session(gateway: PaymentGatewayBase, order: Order) -> bool:
        if not order.checkout_session_id:
            return True
        if not gateway.is_configured:
            logger.warning("abandoned_checkout_kept", order_id=order.id, reason="provider_not_configured")
            return False
        try:
            status = gateway.expire_checkout_session(order.checkout_session_id)
        except (ProviderAuthError, ProviderTransientError) as exc:
            logger.warning(
                "abandoned_checkout_kept",
                order_id=order.id,
                reason="provider_error",
                error_type=type(exc).__name__,
                detail=exc.detail,
            )
            return False
        if status != "expired":
            # A complete session is paid; the webhook or verify call will confirm it.
            logger.warning(
                "abandoned_checkout_kept",
                order_id=order.id,
                reason="session_not_expired",
                session_status=status,
            )
            return False
        return True
