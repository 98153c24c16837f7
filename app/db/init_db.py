from decimal import Decimal
from sqlalchemy.orm import Session
import logging
from app.models.coupon import Coupon, DiscountType
from app.models.food import FoodItem
from app.models.user import User, UserRole
from app.core.config import settings
from app.core.security import hash_password

logger = logging.getLogger(__name__)

MENU_ITEMS = [
    ("Charcoal Tandoori Murgh", "Chicken", "520"),
    ("Awadhi Chicken Korma", "Chicken", "560"),
    ("Smoked Malai Tikka", "Chicken", "540"),
    ("Lal Mirch Chicken Tikka", "Chicken", "515"),
    ("Raan-e-Nosh", "Mutton", "780"),
    ("Nalli Nihari", "Mutton", "690"),
    ("Kashmiri Rogan Josh", "Mutton", "760"),
    ("Patiala Mutton Chaap", "Mutton", "735"),
    ("Shahi Tukda", "Desserts", "280"),
    ("Kesariya Phirni Parfait", "Desserts", "240"),
    ("Kesar Kulfi Falooda", "Desserts", "260"),
    ("Gulab Phirni Tart", "Desserts", "255"),
]

COUPONS = [
    {
        "code": "FESTIVE250",
        "label": "₹250 off festive thaali",
        "description": "Flat ₹250 off when your order crosses ₹1,499.",
        "discount_type": DiscountType.FLAT,
        "discount_value": Decimal("250"),
        "min_order_amount": Decimal("1499"),
        "max_discount_value": Decimal("250"),
        "usage_limit": None,
        "per_user_limit": 1,
    },
    {
        "code": "NAWABI10",
        "label": "10% off Nihari & Rogan Josh",
        "description": "Save 10% on slow-cooked mutton signatures. Capped at ₹400, minimum order ₹999.",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "min_order_amount": Decimal("999"),
        "max_discount_value": Decimal("400"),
        "usage_limit": None,
        "per_user_limit": 2,
    },
    {
        "code": "DESSERT75",
        "label": "Dessert add-on savings",
        "description": "₹75 off when you add sweets to the party. Works on orders above ₹499.",
        "discount_type": DiscountType.FLAT,
        "discount_value": Decimal("75"),
        "min_order_amount": Decimal("499"),
        "max_discount_value": None,
        "usage_limit": 500,
        "per_user_limit": 3,
    },
]


def init_db(db: Session) -> None:
    """Seed the admin account, the menu and the launch coupons. Safe to re-run."""

    # Create admin user
    admin = db.query(User).filter(User.email == settings.DEFAULT_ADMIN_EMAIL).first()
    if not admin:
        seed_password = (settings.DEFAULT_ADMIN_PASSWORD or "").strip()
        if not seed_password:
            message = (
                "Missing admin bootstrap credentials: set DEFAULT_ADMIN_PASSWORD "
                "or create an admin user manually before launch."
            )
            if settings.ENVIRONMENT == "production":
                logger.error("%s env=%s", message, settings.ENVIRONMENT)
                raise RuntimeError(message)
            logger.warning("%s env=%s", message, settings.ENVIRONMENT)
        else:
            admin = User(
                email=settings.DEFAULT_ADMIN_EMAIL,
                password_hash=hash_password(seed_password),
                name="Nosh Admin",
                role=UserRole.ADMIN,
                is_active=True,
            )
            db.add(admin)
            logger.info("admin_user_created email=%s", settings.DEFAULT_ADMIN_EMAIL)

    # Menu
    for name, category, price in MENU_ITEMS:
        existing = db.query(FoodItem).filter(FoodItem.name == name).first()
        if not existing:
            db.add(FoodItem(name=name, category=category, price=Decimal(price), description="", is_available=True))
            logger.info("food_item_created name=%s", name)

    # Coupons: refresh the terms, never the counters
    for data in COUPONS:
        coupon = db.query(Coupon).filter(Coupon.code == data["code"]).first()
        if coupon:
            for key, value in data.items():
                setattr(coupon, key, value)
            coupon.active = True
            logger.info("coupon_updated code=%s", data["code"])
        else:
            db.add(Coupon(**data, active=True, usage_count=0))
            logger.info("coupon_created code=%s", data["code"])

    db.commit()
    logger.info("database_initialized")


if __name__ == "__main__":
    from app.db.session import SessionLocal
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    db = SessionLocal()
    init_db(db)
    db.close()
