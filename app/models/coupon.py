from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    label = Column(String(120), nullable=False)
    description = Column(Text, nullable=False, default="")

    discount_type = Column(Enum(DiscountType), nullable=False, default=DiscountType.PERCENTAGE)
    discount_value = Column(Numeric(10, 2), nullable=False)  # Percentage (0-100) or flat amount

    min_order_amount = Column(Numeric(10, 2), default=0, nullable=False)
    max_discount_value = Column(Numeric(10, 2), nullable=True)  # Cap applied to either type

    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    usage_limit = Column(Integer, nullable=True)  # Global usage limit
    usage_count = Column(Integer, default=0, nullable=False)
    per_user_limit = Column(Integer, default=1, nullable=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user_usages = relationship("CouponUserUsage", back_populates="coupon", cascade="all, delete-orphan")

    def usage_for(self, user_id) -> int:
        """Redemptions recorded for one user, 0 when the user has none."""
        if user_id is None:
            return 0
        for usage in self.user_usages:
            if usage.user_id == int(user_id):
                return usage.count
        return 0


class CouponUserUsage(Base):
    """Per-user redemption counter for a coupon, keyed by (coupon_id, user_id)."""

    __tablename__ = "coupon_user_usages"
    __table_args__ = (UniqueConstraint("coupon_id", "user_id", name="uq_coupon_user_usages_coupon_user"),)

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    count = Column(Integer, default=0, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    coupon = relationship("Coupon", back_populates="user_usages")
