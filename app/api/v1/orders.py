from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from typing import Optional
import stripe
import structlog

from app.api.deps import get_current_active_user, is_admin, require_admin
from app.core.exceptions import OrderNotFound
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.order import OrderPlace, OrderResponse, OrderStatusChange, OrderVerify
from app.services.order_service import OrderService
from app.services.payment_gateway import PaymentGatewayBase, get_payment_gateway
from app.utils.response import error, paginated_response, success

router = APIRouter()
logger = structlog.get_logger()


def _serialize(order) -> dict:
    return OrderResponse.model_validate(order).model_dump()


@router.post(
    "/place",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Place order",
    description="""
Prices the submitted items against the live menu, applies an optional coupon
and either records a cash-on-delivery order or opens a checkout session.

Online orders return `session_url`; the order stays `Awaiting payment` until
`/verify` or the payment webhook confirms it.
""",
    responses={
        201: {"description": "Order placed"},
        400: {"description": "Empty cart, missing address, ineligible coupon or zero total"},
        502: {"description": "Payment provider error, cash on delivery suggested"},
        503: {"description": "Online payments unavailable, cash on delivery suggested"},
    },
)
@limiter.limit("10/minute")
def place_order(
    request: Request,
    order_in: OrderPlace,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
):
    placed = OrderService.place_order(
        db,
        gateway,
        user_id=current_user.id,
        items=[item.model_dump() for item in order_in.items],
        address=order_in.address,
        payment_method=order_in.payment_method,
        coupon_code=order_in.coupon_code,
        instructions=order_in.instructions,
    )

    data = {
        "order_id": placed.order_id,
        "order_number": placed.order_number,
        "payment_method": placed.payment_method.value,
        "amount": float(placed.amount),
        "session_url": placed.session_url,
    }
    message = "Cash on delivery order placed" if placed.session_url is None else "Checkout session created"
    return success(data=data, message=message)


@router.post("/verify", response_model=dict)
@limiter.limit("30/minute")
def verify_order(
    request: Request,
    verify_in: OrderVerify,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
):
    """Checkout redirect landing: confirm or discard the order."""
    order = OrderService.get_order(db, verify_in.order_id)
    if order.user_id != current_user.id and not is_admin(current_user):
        raise OrderNotFound()

    result = OrderService.confirm_payment(db, gateway, verify_in.order_id, verify_in.success)
    if not result.paid:
        return error(message=result.message, errors=[{"code": "NOT_PAID"}], status_code=status.HTTP_200_OK)
    return success(data={"order_id": verify_in.order_id, "paid": True}, message=result.message)


@router.post("/webhook", include_in_schema=False)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = gateway.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("stripe_webhook_rejected", error_type=type(exc).__name__)
        return error(message="Invalid webhook signature", status_code=status.HTTP_400_BAD_REQUEST)

    event_type = event.get("type")
    session = (event.get("data") or {}).get("object") or {}
    order_id = (session.get("metadata") or {}).get("order_id")

    if event_type not in ("checkout.session.completed", "checkout.session.expired") or not order_id:
        logger.info("stripe_webhook_ignored", event_type=event_type)
        return success(message="Ignored")

    try:
        order_id = int(order_id)
    except (TypeError, ValueError):
        logger.warning("stripe_webhook_bad_order_id", event_type=event_type)
        return success(message="Ignored")

    paid = event_type == "checkout.session.completed" and session.get("payment_status") == "paid"
    if event_type == "checkout.session.completed" and not paid:
        # Delayed payment methods complete later with their own event.
        logger.info("stripe_webhook_payment_pending", order_id=order_id)
        return success(message="Pending")

    try:
        result = OrderService.confirm_payment(db, gateway, order_id, paid)
    except OrderNotFound:
        if paid:
            logger.error(
                "stripe_payment_without_order",
                order_id=order_id,
                checkout_session_id=session.get("id"),
                payment_intent=session.get("payment_intent"),
            )
        else:
            logger.info("stripe_webhook_order_missing", order_id=order_id, event_type=event_type)
        return success(message="Ignored")

    logger.info("stripe_webhook_processed", order_id=order_id, event_type=event_type, paid=result.paid)
    return success(data={"order_id": order_id, "paid": result.paid}, message=result.message)


@router.get("/mine", response_model=dict)
def my_orders(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    orders = OrderService.list_user_orders(db, current_user.id)
    return success(data=[_serialize(order) for order in orders])


@router.get("/", response_model=dict)
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status_filter: Optional[str] = Query(None, alias="status", max_length=50),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    orders, total = OrderService.list_orders(
        db,
        requester_is_admin=True,
        page=page,
        limit=limit,
        status=status_filter,
    )
    return paginated_response([_serialize(order) for order in orders], total=total, page=page, limit=limit)


@router.put("/{order_id}/status", response_model=dict)
def update_order_status(
    order_id: int,
    status_in: OrderStatusChange,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    order = OrderService.update_status(
        db,
        order_id,
        status_in.status,
        requester_is_admin=is_admin(current_user),
        changed_by=current_user.id,
    )
    return success(data=_serialize(order), message="Status Updated Successfully")


@router.delete("/{order_id}", response_model=dict)
def remove_order(
    order_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
):
    OrderService.remove_order(db, gateway, order_id, requester_is_admin=is_admin(current_user))
    return success(message="Order removed")
