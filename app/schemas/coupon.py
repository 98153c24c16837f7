from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime, timezone
from decimal import Decimal
from app.models.coupon import DiscountType


def _normalize_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    normalized = value.strip().upper()
    if not normalized:
        raise ValueError("Coupon code is required")
    return normalized


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Coupon windows are stored as naive UTC and compared against utcnow()."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _check_window(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date and end_date and end_date < start_date:
        raise ValueError("End date must be after the start date")


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    label: str = Field(..., min_length=1, max_length=120)
    description: str = ""
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: Decimal = Field(..., gt=0)
    min_order_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_discount_value: Optional[Decimal] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: bool = True
    usage_limit: Optional[int] = Field(None, ge=1)
    per_user_limit: int = Field(default=1, ge=1)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_code(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_naive_utc(value)

    @field_validator("label", "description")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def validate_window(self):
        if not self.label:
            raise ValueError("Coupon label is required")
        _check_window(self.start_date, self.end_date)
        return self


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    label: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_value: Optional[Decimal] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: Optional[bool] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    per_user_limit: Optional[int] = Field(None, ge=1)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_code(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_naive_utc(value)

    @model_validator(mode="after")
    def validate_window(self):
        _check_window(self.start_date, self.end_date)
        return self


class CouponResponse(BaseModel):
    id: int
    code: str
    label: str
    description: str
    discount_type: DiscountType
    discount_value: float
    min_order_amount: float
    max_discount_value: Optional[float]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    active: bool
    usage_limit: Optional[int]
    usage_count: int
    per_user_limit: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ActiveCouponResponse(BaseModel):
    code: str
    label: str
    description: str
    discount_type: DiscountType
    discount_value: float
    min_order_amount: float
    max_discount_value: Optional[float]
    end_date: Optional[datetime]
    remaining_redemptions: Optional[int]


class ValidateCouponRequest(BaseModel):
    code: str = ""
    subtotal: Decimal


class ValidateCouponResponse(BaseModel):
    valid: bool
    message: str
    reason: Optional[str] = None
    discount_amount: float = 0.0
    coupon: Optional[CouponResponse] = None
