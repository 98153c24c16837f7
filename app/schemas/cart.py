from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class CartItemChange(BaseModel):
    food_id: int


class CartReplace(BaseModel):
    # food id -> quantity; non-positive quantities are dropped, the rest clamped to 99
    items: Dict[int, float]


class CartItemResponse(BaseModel):
    food_id: int
    name: str
    image: Optional[str] = None
    category: str
    quantity: int
    unit_price: float
    total_price: float
    is_available: bool


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    subtotal: float
    total_items: int = Field(..., ge=0)
