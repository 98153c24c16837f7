from pydantic import BaseModel
from typing import Optional


class FoodItemResponse(BaseModel):
    id: int
    name: str
    description: str
    price: float
    category: str
    image: Optional[str] = None

    class Config:
        from_attributes = True
