from app.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from app.models.user import User
from app.models.food import FoodItem
from app.models.cart import CartItem
from app.models.coupon import Coupon, CouponUserUsage
from app.models.order import Order
from app.models.order_status_history import OrderStatusHistory
