from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from app.db.session import get_db
from app.models.food import FoodItem
from app.schemas.food import FoodItemResponse
from app.utils.response import success

router = APIRouter()


@router.get("/", response_model=dict)
def list_menu(
    category: Optional[str] = Query(None, max_length=50),
    db: Session = Depends(get_db),
):
    """Dishes that can be ordered right now."""
    query = db.query(FoodItem).filter(FoodItem.is_available.is_(True))
    if category:
        query = query.filter(FoodItem.category == category)

    items = query.order_by(FoodItem.category, FoodItem.name).all()
    return success(data=[FoodItemResponse.model_validate(item).model_dump() for item in items])
