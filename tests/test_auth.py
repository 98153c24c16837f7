from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.core.config import settings
from app.core.security import create_access_token, decode_access_token, verify_password


def _register(client: TestClient, email: str, password: str = "StrongPass1", phone: str = "9876543210"):
    return client.post(
        "/api/v1/auth/register",
        json={
            "email": email,
            "name": "Ayaan Rizvi",
            "phone": phone,
            "password": password,
        },
    )


def _login(client: TestClient, email: str, password: str = "StrongPass1"):
    return client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )


def test_register_success(client: TestClient):
    response = _register(client, "Register@Example.com")

    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["email"] == "register@example.com"
    assert payload["data"]["role"] == "customer"
    assert "password_hash" not in payload["data"]


def test_register_duplicate_email(client: TestClient):
    assert _register(client, "dup@example.com").status_code == 201

    response = _register(client, "DUP@example.com", phone="9876543211")

    assert response.status_code == 409
    assert response.json()["message"] == "Email already registered"


def test_register_rejects_weak_password(client: TestClient):
    response = _register(client, "weak@example.com", password="letmein")

    assert response.status_code == 422
    assert response.json()["success"] is False
    assert response.json()["message"] == "Validation failed"


def test_login_success(client: TestClient):
    assert _register(client, "login@example.com").status_code == 201

    response = _login(client, "login@example.com")

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["user"]["email"] == "login@example.com"
    assert response.cookies.get("access_token") is not None

    token = payload["data"]["access_token"]
    assert decode_access_token(token) == payload["data"]["user"]["id"]
    claims = jwt.get_unverified_claims(token)
    assert claims["role"] == "customer"
    assert claims["type"] == "access"


def test_login_failure(client: TestClient):
    assert _register(client, "wrongpass@example.com").status_code == 201

    response = _login(client, "wrongpass@example.com", password="WrongPass1")

    assert response.status_code == 401
    payload = response.json()
    assert payload["success"] is False
    assert payload["message"] == "Incorrect email or password"


def test_me_with_cookie_session(client: TestClient):
    _register(client, "cookie@example.com")
    _login(client, "cookie@example.com")

    response = client.get("/api/v1/auth/me")

    assert response.status_code == 200
    assert response.json()["data"]["email"] == "cookie@example.com"


def test_me_with_token_header(client: TestClient, make_user, auth_headers):
    user = make_user()
    token = auth_headers(user)["Authorization"].split(" ", 1)[1]

    response = client.get("/api/v1/auth/me", headers={"token": token})

    assert response.status_code == 200
    assert response.json()["data"]["id"] == user.id


def test_me_rejects_garbage_token(client: TestClient):
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_inactive_user_is_refused(client: TestClient, db_session, make_user, auth_headers):
    user = make_user()
    user.is_active = False
    db_session.commit()

    response = client.get("/api/v1/auth/me", headers=auth_headers(user))

    assert response.status_code == 403
    assert response.json()["message"] == "Account is inactive"


def _signed(claims):
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


@pytest.mark.parametrize(
    "claims",
    [
        {"sub": "1", "type": "refresh"},
        {"sub": "not-a-number", "type": "access"},
        {"type": "access"},
    ],
)
def test_me_rejects_tokens_that_are_not_access_tokens(client: TestClient, make_user, claims):
    make_user()
    claims["exp"] = datetime.utcnow() + timedelta(minutes=5)

    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {_signed(claims)}"})

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid authentication credentials"


def test_expired_token_is_refused(client: TestClient, make_user):
    user = make_user()
    token = create_access_token(user.id, user.role.value, expires_delta=timedelta(minutes=-1))

    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["message"] == "Could not validate credentials"


def test_verify_password_tolerates_unreadable_hash():
    assert verify_password("StrongPass1", "") is False
    assert verify_password("StrongPass1", "not-a-bcrypt-hash") is False
