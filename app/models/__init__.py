from app.models.user import User, UserRole
from app.models.food import FoodItem
from app.models.cart import CartItem
from app.models.coupon import Coupon, CouponUserUsage, DiscountType
from app.models.order import Order, OrderStatus, PaymentMethod
from app.models.order_status_history import OrderStatusHistory
