from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_active_user
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.cart import CartItemChange, CartReplace
from app.services.cart_service import CartService
from app.utils.response import success

router = APIRouter()


@router.get("/", response_model=dict)
def get_cart(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Get user's cart"""
    cart = CartService.get_cart(db, current_user.id)
    return success(data=cart.model_dump())


@router.post("/items", response_model=dict, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def add_to_cart(
    request: Request,
    change: CartItemChange,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    quantity = CartService.add_item(db, current_user.id, change.food_id)
    return success(data={"food_id": change.food_id, "quantity": quantity}, message="Added to Cart")


@router.delete("/items/{food_id}", response_model=dict)
def remove_from_cart(
    food_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Remove one unit of a dish"""
    quantity = CartService.remove_item(db, current_user.id, food_id)
    return success(data={"food_id": food_id, "quantity": quantity}, message="Removed from Cart")


@router.put("/", response_model=dict)
def replace_cart(
    cart: CartReplace,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    items = CartService.replace_cart(db, current_user.id, cart.items)
    return success(data={"items": items}, message="Cart updated")


@router.delete("/", response_model=dict)
def clear_cart(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Clear entire cart"""
    CartService.clear_cart(db, current_user.id)
    db.commit()
    return success(message="Cart cleared")
