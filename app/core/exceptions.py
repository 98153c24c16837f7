from typing import Any, List, Optional

from fastapi import status

ONLINE_PAYMENTS_UNAVAILABLE = (
    "Online payments are temporarily unavailable. Please choose Cash on Delivery or try again later."
)
PAYMENT_SESSION_FAILED = (
    "We couldn't start the payment session. Please try again or switch to Cash on Delivery."
)


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class ValidationError(APIError):
    """Malformed or missing input. Nothing has been written when this is raised."""

    def __init__(self, code: str, message: str):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, [{"code": code}])
        self.code = code


class CouponIneligible(APIError):
    def __init__(self, reason, message: str):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, [{"code": reason.value}])
        self.reason = reason


class ProviderAuthError(APIError):
    """Payment provider rejected our credentials, or none are configured."""

    def __init__(self, detail: str = ""):
        super().__init__(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            ONLINE_PAYMENTS_UNAVAILABLE,
            [{"code": "PAYMENT_PROVIDER_UNAVAILABLE", "fallback_payment_method": "cod"}],
        )
        self.detail = detail


class ProviderTransientError(APIError):
    def __init__(self, detail: str = ""):
        super().__init__(
            status.HTTP_502_BAD_GATEWAY,
            PAYMENT_SESSION_FAILED,
            [{"code": "PAYMENT_PROVIDER_ERROR", "fallback_payment_method": "cod"}],
        )
        self.detail = detail


class NotFound(APIError):
    def __init__(self, message: str = "Not found"):
        super().__init__(status.HTTP_404_NOT_FOUND, message, [{"code": "NOT_FOUND"}])


class OrderNotFound(NotFound):
    def __init__(self):
        super().__init__("Order not found")


class CouponNotFound(NotFound):
    def __init__(self):
        super().__init__("Coupon not found")


class Forbidden(APIError):
    def __init__(self, message: str = "You are not admin"):
        super().__init__(status.HTTP_403_FORBIDDEN, message, [{"code": "FORBIDDEN"}])


class StoreError(APIError):
    def __init__(self, message: str = "Unable to save your changes. Please try again."):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, message, [{"code": "STORE_ERROR"}])


class EmailAlreadyExists(APIError):
    def __init__(self):
        super().__init__(status.HTTP_409_CONFLICT, "Email already registered")


class InvalidCredentials(APIError):
    def __init__(self):
        super().__init__(status.HTTP_401_UNAUTHORIZED, "Incorrect email or password")
