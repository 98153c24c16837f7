"""Payment provider boundary.

The order service only talks to :class:`PaymentGatewayBase`. The Stripe
implementation classifies SDK failures into ``ProviderAuthError`` (bad or
missing credentials) and ``ProviderTransientError`` (everything else), with
API keys scrubbed from any message that leaves this module.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import stripe
import structlog

from app.core.config import settings
from app.core.exceptions import ProviderAuthError, ProviderTransientError
from app.core.logging_config import scrub

logger = structlog.get_logger()


@dataclass
class CheckoutSession:
    """Checkout session result from provider."""

    id: str
    url: str


class PaymentGatewayBase(ABC):
    """Abstract base class for payment providers."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether online payments can be attempted at all."""
        pass  # pragma: no cover

    @abstractmethod
    def create_discount(self, amount_cents: int, currency: str, name: str) -> str:
        """Create a single-use amount-off discount and return its id."""
        pass  # pragma: no cover

    @abstractmethod
    def delete_discount(self, discount_id: str) -> None:
        pass  # pragma: no cover

    @abstractmethod
    def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        discount_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        expires_at: Optional[int] = None,
    ) -> CheckoutSession:
        pass  # pragma: no cover

    @abstractmethod
    def expire_checkout_session(self, session_id: str) -> str:
        """Close an open session so it can no longer be paid; return its final status."""
        pass  # pragma: no cover

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify a webhook payload and return the decoded event."""
        pass  # pragma: no cover


class StripeGateway(PaymentGatewayBase):
    """Stripe Checkout + Coupons."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.STRIPE_SECRET_KEY).strip()
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.timeout = timeout or settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS
        self.max_retries = settings.PAYMENT_PROVIDER_MAX_RETRIES if max_retries is None else max_retries
        self._http_client = None

    @property
    def is_configured(self) -> bool:
        return self.api_key.startswith("sk_") and "placeholder" not in self.api_key.lower()

    def _request_options(self) -> Dict[str, Any]:
        if not self.is_configured:
            raise ProviderAuthError("Stripe secret key is missing or invalid")
        if self._http_client is None:
            self._http_client = stripe.RequestsClient(timeout=self.timeout)
            stripe.default_http_client = self._http_client
            stripe.max_network_retries = self.max_retries
        return {"api_key": self.api_key}

    def _call(self, action: str, func, **params):
        options = self._request_options()
        try:
            return func(**params, **options)
        except (stripe.AuthenticationError, stripe.PermissionError) as exc:
            detail = scrub(getattr(exc, "user_message", None) or str(exc))
            logger.error("stripe_authentication_failed", action=action, detail=detail)
            raise ProviderAuthError(detail) from exc
        except stripe.StripeError as exc:
            detail = scrub(str(exc)) or type(exc).__name__
            logger.error("stripe_request_failed", action=action, error_type=type(exc).__name__, detail=detail)
            raise ProviderTransientError(detail) from exc

    def create_discount(self, amount_cents: int, currency: str, name: str) -> str:
        coupon = self._call(
            "create_discount",
            stripe.Coupon.create,
            amount_off=amount_cents,
            currency=currency.lower(),
            duration="once",
            max_redemptions=1,
            name=name[:40],
        )
        return coupon["id"]

    def delete_discount(self, discount_id: str) -> None:
        try:
            self._call("delete_discount", stripe.Coupon.delete, sid=discount_id)
        except ProviderTransientError as exc:
            cause = exc.__cause__
            if isinstance(cause, stripe.InvalidRequestError) and getattr(cause, "http_status", None) == 404:
                logger.info("stripe_coupon_already_deleted", discount_id=discount_id)
                return
            raise

    def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        discount_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        expires_at: Optional[int] = None,
    ) -> CheckoutSession:
        params: Dict[str, Any] = {
            "line_items": line_items,
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if discount_id:
            params["discounts"] = [{"coupon": discount_id}]
        if metadata:
            params["metadata"] = metadata
        if expires_at:
            params["expires_at"] = expires_at

        session = self._call("create_checkout_session", stripe.checkout.Session.create, **params)
        return CheckoutSession(id=session["id"], url=session["url"])

    def expire_checkout_session(self, session_id: str) -> str:
        session = self._call("retrieve_checkout_session", stripe.checkout.Session.retrieve, id=session_id)
        status = session["status"]
        if status == "open":
            session = self._call("expire_checkout_session", stripe.checkout.Session.expire, session=session_id)
            status = session["status"]
        return status

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise ProviderAuthError("Stripe webhook secret is not configured")
        event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return event.to_dict() if hasattr(event, "to_dict") else dict(event)


payment_gateway = StripeGateway()

if not payment_gateway.is_configured:
    logger.warning("stripe_not_configured", detail="Online payments disabled until STRIPE_SECRET_KEY is set")


def get_payment_gateway() -> PaymentGatewayBase:
    """FastAPI dependency returning the process-wide gateway."""
    return payment_gateway
