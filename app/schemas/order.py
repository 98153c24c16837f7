from typing import Any, Dict, List, Optional
from datetime import datetime

import bleach
from pydantic import BaseModel, Field, field_validator

from app.models.order import PaymentMethod


class OrderItemIn(BaseModel):
    food_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1, le=99)


class OrderPlace(BaseModel):
    items: List[OrderItemIn] = Field(default_factory=list)
    address: Dict[str, Any] = Field(default_factory=dict)
    payment_method: str = "online"
    coupon_code: Optional[str] = None
    instructions: Optional[str] = None

    @field_validator("instructions")
    @classmethod
    def validate_instructions(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        sanitized = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
        if len(sanitized) > 500:
            raise ValueError("Instructions too long (max 500 chars)")
        return sanitized


class OrderVerify(BaseModel):
    order_id: int = Field(..., gt=0)
    success: bool


class OrderStatusChange(BaseModel):
    status: str = Field(..., min_length=1, max_length=50)

    @field_validator("status")
    @classmethod
    def strip_status(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Status is required")
        return stripped


class OrderLine(BaseModel):
    id: int
    name: str
    price: float
    quantity: int
    category: Optional[str] = None


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    items: List[OrderLine]
    address: Dict[str, Any]
    instructions: str
    subtotal: float
    discount: float
    delivery_fee: float
    amount: float
    currency: str
    coupon_code: Optional[str] = None
    coupon_snapshot: Optional[Dict[str, Any]] = None
    payment: bool
    payment_method: PaymentMethod
    status: str
    date: datetime

    class Config:
        from_attributes = True
