from sqlalchemy.orm import Session
from typing import Dict
import math
import structlog

from app.core.exceptions import NotFound
from app.models.cart import CartItem, MAX_CART_QUANTITY
from app.models.food import FoodItem
from app.schemas.cart import CartItemResponse, CartResponse
from app.services.pricing import from_cents, to_cents

logger = structlog.get_logger()


class CartService:

    @staticmethod
    def get_cart(db: Session, user_id: int) -> CartResponse:
        cart_items = (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .order_by(CartItem.id)
            .all()
        )

        items = []
        subtotal = 0
        for item in cart_items:
            food = item.food
            line_cents = to_cents(food.price) * item.quantity
            if food.is_available:
                subtotal += line_cents
            items.append(
                CartItemResponse(
                    food_id=food.id,
                    name=food.name,
                    image=food.image,
                    category=food.category,
                    quantity=item.quantity,
                    unit_price=float(from_cents(to_cents(food.price))),
                    total_price=float(from_cents(line_cents)),
                    is_available=food.is_available,
                )
            )

        return CartResponse(items=items, subtotal=float(from_cents(subtotal)), total_items=len(items))

    @staticmethod
    def add_item(db: Session, user_id: int, food_id: int) -> int:
        """Add one unit of a dish; returns the new quantity."""
        food = db.query(FoodItem).filter(FoodItem.id == food_id, FoodItem.is_available.is_(True)).first()
        if not food:
            raise NotFound("Food item not found")

        item = db.query(CartItem).filter(CartItem.user_id == user_id, CartItem.food_id == food_id).first()
        if item:
            item.quantity = min(item.quantity + 1, MAX_CART_QUANTITY)
        else:
            item = CartItem(user_id=user_id, food_id=food_id, quantity=1)
            db.add(item)

        db.commit()
        return item.quantity

    @staticmethod
    def remove_item(db: Session, user_id: int, food_id: int) -> int:
        """Remove one unit of a dish; the line disappears at zero."""
        item = db.query(CartItem).filter(CartItem.user_id == user_id, CartItem.food_id == food_id).first()
        if not item:
            return 0

        if item.quantity > 1:
            item.quantity -= 1
            remaining = item.quantity
        else:
            db.delete(item)
            remaining = 0

        db.commit()
        return remaining

    @staticmethod
    def replace_cart(db: Session, user_id: int, items: Dict[int, float]) -> Dict[int, int]:
        normalized = {}
        for food_id, quantity in items.items():
            if quantity is None or not math.isfinite(quantity) or quantity <= 0:
                continue
            normalized[int(food_id)] = min(int(math.floor(quantity)), MAX_CART_QUANTITY)
        normalized = {food_id: qty for food_id, qty in normalized.items() if qty > 0}

        known = set()
        if normalized:
            known = {
                row.id
                for row in db.query(FoodItem.id).filter(FoodItem.id.in_(list(normalized))).all()
            }
        dropped = sorted(set(normalized) - known)
        if dropped:
            logger.info("cart_unknown_items_dropped", user_id=user_id, food_ids=dropped)

        CartService.clear_cart(db, user_id)
        for food_id, quantity in normalized.items():
            if food_id in known:
                db.add(CartItem(user_id=user_id, food_id=food_id, quantity=quantity))
        db.commit()

        return {food_id: qty for food_id, qty in normalized.items() if food_id in known}

    @staticmethod
    def clear_cart(db: Session, user_id: int) -> None:
        """Delete every cart line for the user. Does not commit."""
        db.query(CartItem).filter(CartItem.user_id == user_id).delete(synchronize_session=False)
