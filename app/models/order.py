from sqlalchemy import Boolean, Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Text, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class OrderStatus:
    """Conventional status values. Operators may set any other free-text status."""

    AWAITING_PAYMENT = "Awaiting payment"
    AWAITING_CASH_COLLECTION = "Awaiting cash collection"
    FOOD_PROCESSING = "Food Processing"
    OUT_FOR_DELIVERY = "Out for delivery"
    DELIVERED = "Delivered"


class PaymentMethod(str, enum.Enum):
    ONLINE = "online"
    COD = "cod"  # Cash on Delivery


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_user_date", "user_id", "date"),
        Index("ix_orders_payment_method_payment", "payment_method", "payment"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Snapshots frozen at checkout
    items = Column(JSON, nullable=False)
    address = Column(JSON, nullable=False)
    instructions = Column(Text, nullable=False, default="")

    # Pricing
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")

    # Coupon
    coupon_code = Column(String(50), nullable=True)
    coupon_snapshot = Column(JSON, nullable=True)
    coupon_redeemed = Column(Boolean, nullable=False, default=False)

    # Payment
    payment = Column(Boolean, nullable=False, default=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.ONLINE)
    stripe_coupon_id = Column(String(100), nullable=True)
    checkout_session_id = Column(String(255), nullable=True, index=True)

    status = Column(String(50), nullable=False, default=OrderStatus.AWAITING_PAYMENT, index=True)
    date = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="orders")
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.created_at",
    )
