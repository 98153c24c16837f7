from datetime import datetime, timedelta
from decimal import Decimal

from app.models.user import UserRole


def _coupon_body(**overrides):
    body = {
        "code": "monsoon15",
        "label": "15% off the monsoon menu",
        "discount_type": "percentage",
        "discount_value": 15,
        "min_order_amount": 600,
        "max_discount_value": 200,
        "usage_limit": 100,
        "per_user_limit": 1,
    }
    body.update(overrides)
    return body


def test_admin_creates_coupon(client, make_user, auth_headers):
    admin = make_user(role=UserRole.ADMIN)

    response = client.post("/api/v1/coupons/", json=_coupon_body(), headers=auth_headers(admin))

    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["code"] == "MONSOON15"
    assert payload["data"]["usage_count"] == 0
    assert payload["data"]["discount_type"] == "percentage"


def test_customer_cannot_manage_coupons(client, make_user, make_coupon, auth_headers):
    customer = make_user()
    coupon = make_coupon()
    headers = auth_headers(customer)

    assert client.post("/api/v1/coupons/", json=_coupon_body(), headers=headers).status_code == 403
    assert client.get("/api/v1/coupons/", headers=headers).status_code == 403
    assert client.put(f"/api/v1/coupons/{coupon.id}", json={"active": False}, headers=headers).status_code == 403
    assert client.delete(f"/api/v1/coupons/{coupon.id}", headers=headers).status_code == 403


def test_create_rejects_bad_input(client, make_user, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    headers = auth_headers(admin)

    too_generous = client.post("/api/v1/coupons/", json=_coupon_body(discount_value=150), headers=headers)
    assert too_generous.status_code == 400
    assert too_generous.json()["errors"] == [{"code": "INVALID_DISCOUNT"}]

    now = datetime.utcnow()
    backwards = _coupon_body(
        code="BACKWARDS",
        start_date=now.isoformat(),
        end_date=(now - timedelta(days=1)).isoformat(),
    )
    assert client.post("/api/v1/coupons/", json=backwards, headers=headers).status_code == 422


def test_admin_updates_and_deletes_coupon(client, make_user, make_coupon, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    coupon = make_coupon("FESTIVE250")
    headers = auth_headers(admin)

    updated = client.put(f"/api/v1/coupons/{coupon.id}", json={"active": False}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["data"]["active"] is False

    fetched = client.get(f"/api/v1/coupons/{coupon.id}", headers=headers)
    assert fetched.json()["data"]["code"] == "FESTIVE250"

    deleted = client.delete(f"/api/v1/coupons/{coupon.id}", headers=headers)
    assert deleted.status_code == 200

    missing = client.get(f"/api/v1/coupons/{coupon.id}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["message"] == "Coupon not found"


def test_update_accepts_offset_end_date(client, make_user, make_coupon, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    coupon = make_coupon("FESTIVE250", start_date=datetime(2026, 1, 1), end_date=datetime(2026, 6, 30))

    response = client.put(
        f"/api/v1/coupons/{coupon.id}",
        json={"end_date": "2026-12-31T23:59:59+05:30"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    assert response.json()["data"]["end_date"] == "2026-12-31T18:29:59"


def test_admin_lists_coupons(client, make_user, make_coupon, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    make_coupon("FESTIVE250")
    make_coupon("NAWABI10")

    response = client.get("/api/v1/coupons/", headers=auth_headers(admin))

    assert response.status_code == 200
    assert {coupon["code"] for coupon in response.json()["data"]} == {"FESTIVE250", "NAWABI10"}


def test_active_coupons_are_public(client, make_coupon):
    make_coupon("FESTIVE250", usage_limit=10, usage_count=4)
    make_coupon("PAUSED", active=False)

    response = client.get("/api/v1/coupons/active")

    assert response.status_code == 200
    data = response.json()["data"]
    assert [coupon["code"] for coupon in data] == ["FESTIVE250"]
    assert data[0]["remaining_redemptions"] == 6


def test_validate_coupon(client, make_user, make_coupon, auth_headers):
    user = make_user()
    make_coupon("FESTIVE250", min_order_amount=Decimal("1000"))

    response = client.post(
        "/api/v1/coupons/validate",
        json={"code": "festive250", "subtotal": 1200},
        headers=auth_headers(user),
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["valid"] is True
    assert payload["data"]["discount_amount"] == 250.0


def test_validate_coupon_reports_reason(client, make_user, make_coupon, auth_headers):
    user = make_user()
    make_coupon("FESTIVE250", min_order_amount=Decimal("1000"))

    response = client.post(
        "/api/v1/coupons/validate",
        json={"code": "FESTIVE250", "subtotal": 400},
        headers=auth_headers(user),
    )

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["message"] == "Requires a minimum order of ₹1000"
    assert payload["errors"] == [{"code": "BELOW_MINIMUM"}]


def test_validate_coupon_without_code(client, make_user, auth_headers):
    user = make_user()

    response = client.post(
        "/api/v1/coupons/validate",
        json={"code": "", "subtotal": 400},
        headers=auth_headers(user),
    )

    assert response.status_code == 400
    assert response.json()["errors"] == [{"code": "CODE_REQUIRED"}]
