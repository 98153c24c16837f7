import json
import os
import tempfile
from collections.abc import Generator
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-more-than-32-characters")
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["DELIVERY_FEE"] = "0"

import app.models  # noqa: F401
from app.core.celery_app import celery_app
from app.core.exceptions import ProviderTransientError
from app.core.security import create_access_token, hash_password
from app.db.base_class import Base
from app.db.session import get_db
from app.main import app
from app.models.coupon import Coupon, DiscountType
from app.models.food import FoodItem
from app.models.user import User, UserRole
from app.services.payment_gateway import CheckoutSession, PaymentGatewayBase, get_payment_gateway

celery_app.conf.task_always_eager = True


class FakeGateway(PaymentGatewayBase):
    """In-memory stand-in for Stripe that records every call."""

    def __init__(self):
        self.configured = True
        self.discounts = {}
        self.deleted = []
        self.sessions = []
        self.session_status = {}
        self.expired = []
        self.failures = {}

    @property
    def is_configured(self) -> bool:
        return self.configured

    def fail(self, action: str, exc: Exception) -> None:
        self.failures[action] = exc

    def _maybe_fail(self, action: str) -> None:
        exc = self.failures.get(action)
        if exc is not None:
            raise exc

    def create_discount(self, amount_cents, currency, name):
        self._maybe_fail("create_discount")
        discount_id = f"coupon_fake_{len(self.discounts) + 1}"
        self.discounts[discount_id] = {"amount_off": amount_cents, "currency": currency, "name": name}
        return discount_id

    def delete_discount(self, discount_id):
        self._maybe_fail("delete_discount")
        self.deleted.append(discount_id)

    def create_checkout_session(self, line_items, success_url, cancel_url, discount_id=None, metadata=None, expires_at=None):
        self._maybe_fail("create_checkout_session")
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append(
            {
                "id": session_id,
                "line_items": line_items,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "discount_id": discount_id,
                "metadata": metadata or {},
                "expires_at": expires_at,
            }
        )
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    def expire_checkout_session(self, session_id):
        self._maybe_fail("expire_checkout_session")
        status = self.session_status.get(session_id, "open")
        if status == "open":
            self.expired.append(session_id)
            status = self.session_status[session_id] = "expired"
        return status

    def construct_event(self, payload, signature):
        if signature != "valid-signature":
            raise ValueError("No signatures found matching the expected signature for payload")
        return json.loads(payload)


@pytest.fixture()
def db_engine():
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture()
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def client(db_session: Session, gateway: FakeGateway) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session: Session):
    counter = {"n": 0}

    def _make(role: UserRole = UserRole.CUSTOMER, email: str = None) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"diner{counter['n']}@example.com",
            name=f"Diner {counter['n']}",
            password_hash=hash_password("StrongPass1"),
            role=role,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_food(db_session: Session):
    def _make(name: str = "Nalli Nihari", price: str = "690", category: str = "Mutton", available: bool = True) -> FoodItem:
        food = FoodItem(
            name=name,
            description="",
            price=Decimal(price),
            category=category,
            is_available=available,
        )
        db_session.add(food)
        db_session.commit()
        db_session.refresh(food)
        return food

    return _make


@pytest.fixture()
def make_coupon(db_session: Session):
    def _make(code: str = "FESTIVE250", **overrides) -> Coupon:
        data = {
            "code": code,
            "label": f"{code} offer",
            "description": "",
            "discount_type": DiscountType.FLAT,
            "discount_value": Decimal("250"),
            "min_order_amount": Decimal("0"),
            "max_discount_value": None,
            "start_date": datetime.utcnow() - timedelta(days=1),
            "end_date": datetime.utcnow() + timedelta(days=30),
            "active": True,
            "usage_limit": None,
            "usage_count": 0,
            "per_user_limit": 1,
        }
        data.update(overrides)
        coupon = Coupon(**data)
        db_session.add(coupon)
        db_session.commit()
        db_session.refresh(coupon)
        return coupon

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token(user.id, user.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def transient_error():
    return ProviderTransientError("api_connection_error: could not reach api.stripe.com")
