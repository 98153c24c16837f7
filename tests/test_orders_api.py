import json
from decimal import Decimal

from app.api.v1 import orders as orders_api
from app.models.order import Order, OrderStatus
from app.models.user import UserRole

ADDRESS = {"name": "Ayaan", "street": "12 Aminabad Road", "city": "Lucknow", "zip": "226018"}


def _order_body(food, **overrides):
    body = {
        "items": [{"food_id": food.id, "quantity": 2}],
        "address": ADDRESS,
        "payment_method": "online",
    }
    body.update(overrides)
    return body


def _place(client, headers, food, **overrides):
    response = client.post("/api/v1/orders/place", json=_order_body(food, **overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _webhook(client, event, signature="valid-signature"):
    return client.post(
        "/api/v1/orders/webhook",
        content=json.dumps(event),
        headers={"stripe-signature": signature, "Content-Type": "application/json"},
    )


def _session_event(event_type, order_id, payment_status="paid"):
    return {
        "id": "evt_test_1",
        "type": event_type,
        "data": {
            "object": {
                "id": "cs_test_1",
                "payment_status": payment_status,
                "metadata": {"order_id": str(order_id)},
            }
        },
    }


def test_place_cash_order(client, make_user, make_food, auth_headers):
    user = make_user()
    food = make_food()

    response = client.post(
        "/api/v1/orders/place",
        json=_order_body(food, payment_method="Cash", instructions="<b>Less spicy</b>"),
        headers=auth_headers(user),
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["message"] == "Cash on delivery order placed"
    assert payload["data"]["payment_method"] == "cod"
    assert payload["data"]["amount"] == 1380.0
    assert payload["data"]["session_url"] is None
    assert payload["data"]["order_number"].startswith("NSH")


def test_place_online_order_returns_session_url(client, make_user, make_food, auth_headers, gateway):
    user = make_user()
    food = make_food()

    data = _place(client, auth_headers(user), food)

    assert data["payment_method"] == "online"
    assert data["session_url"] == "https://checkout.stripe.test/cs_test_1"
    assert gateway.sessions[0]["metadata"]["order_id"] == str(data["order_id"])


def test_place_requires_login(client, make_food):
    food = make_food()
    response = client.post("/api/v1/orders/place", json=_order_body(food))
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_online_unavailable_suggests_cash(client, make_user, make_food, auth_headers, gateway):
    user = make_user()
    food = make_food()
    gateway.configured = False

    response = client.post("/api/v1/orders/place", json=_order_body(food), headers=auth_headers(user))

    assert response.status_code == 503
    payload = response.json()
    assert payload["success"] is False
    assert payload["errors"] == [{"code": "PAYMENT_PROVIDER_UNAVAILABLE", "fallback_payment_method": "cod"}]
    assert "timestamp" in payload


def test_provider_error_is_bad_gateway(client, make_user, make_food, auth_headers, gateway, transient_error):
    user = make_user()
    food = make_food()
    gateway.fail("create_checkout_session", transient_error)

    response = client.post("/api/v1/orders/place", json=_order_body(food), headers=auth_headers(user))

    assert response.status_code == 502
    assert response.json()["errors"][0]["code"] == "PAYMENT_PROVIDER_ERROR"
    assert "stripe.com" not in response.json()["message"]


def test_ineligible_coupon_reports_reason(client, make_user, make_food, make_coupon, auth_headers):
    user = make_user()
    food = make_food()
    make_coupon("FESTIVE250", min_order_amount=Decimal("5000"))

    response = client.post(
        "/api/v1/orders/place",
        json=_order_body(food, coupon_code="FESTIVE250"),
        headers=auth_headers(user),
    )

    assert response.status_code == 400
    assert response.json()["errors"] == [{"code": "BELOW_MINIMUM"}]


def test_missing_address_is_rejected(client, make_user, make_food, auth_headers):
    user = make_user()
    food = make_food()

    response = client.post("/api/v1/orders/place", json=_order_body(food, address={}), headers=auth_headers(user))

    assert response.status_code == 400
    assert response.json()["message"] == "Delivery address missing"


def test_verify_success_marks_order_paid(client, db_session, make_user, make_food, auth_headers):
    user = make_user()
    data = _place(client, auth_headers(user), make_food())

    response = client.post(
        "/api/v1/orders/verify",
        json={"order_id": data["order_id"], "success": True},
        headers=auth_headers(user),
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Paid"
    db_session.expire_all()
    assert db_session.get(Order, data["order_id"]).payment is True


def test_verify_failure_discards_order(client, db_session, make_user, make_food, auth_headers):
    user = make_user()
    data = _place(client, auth_headers(user), make_food())

    response = client.post(
        "/api/v1/orders/verify",
        json={"order_id": data["order_id"], "success": False},
        headers=auth_headers(user),
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is False
    assert payload["message"] == "Not Paid"
    assert payload["errors"] == [{"code": "NOT_PAID"}]
    assert db_session.query(Order).count() == 0


def test_error_envelopes_share_one_shape(client, make_user, make_food, auth_headers):
    owner = make_user()
    stranger = make_user()
    data = _place(client, auth_headers(owner), make_food())
    keys = {"success", "message", "data", "errors", "timestamp"}

    not_paid = client.post(
        "/api/v1/orders/verify",
        json={"order_id": data["order_id"], "success": False},
        headers=auth_headers(owner),
    )
    not_found = client.post(
        "/api/v1/orders/verify",
        json={"order_id": data["order_id"] + 100, "success": False},
        headers=auth_headers(stranger),
    )
    bad_signature = _webhook(client, _session_event("checkout.session.completed", 1), signature="forged")

    for response in (not_paid, not_found, bad_signature):
        payload = response.json()
        assert set(payload) == keys
        assert payload["timestamp"].endswith("Z")
    assert not_found.status_code == 404
    assert bad_signature.status_code == 400


def test_verify_someone_elses_order_is_not_found(client, make_user, make_food, auth_headers):
    owner = make_user()
    stranger = make_user()
    data = _place(client, auth_headers(owner), make_food())

    response = client.post(
        "/api/v1/orders/verify",
        json={"order_id": data["order_id"], "success": False},
        headers=auth_headers(stranger),
    )

    assert response.status_code == 404
    assert response.json()["message"] == "Order not found"


def test_webhook_rejects_bad_signature(client):
    response = _webhook(client, _session_event("checkout.session.completed", 1), signature="forged")

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid webhook signature"


def test_webhook_completed_session_confirms_payment(client, db_session, make_user, make_food, auth_headers):
    user = make_user()
    data = _place(client, auth_headers(user), make_food())

    response = _webhook(client, _session_event("checkout.session.completed", data["order_id"]))

    assert response.status_code == 200
    assert response.json()["data"] == {"order_id": data["order_id"], "paid": True}
    db_session.expire_all()
    order = db_session.get(Order, data["order_id"])
    assert order.payment is True
    assert order.status == OrderStatus.FOOD_PROCESSING


def test_webhook_unpaid_completion_is_pending(client, db_session, make_user, make_food, auth_headers):
    user = make_user()
    data = _place(client, auth_headers(user), make_food())

    response = _webhook(
        client,
        _session_event("checkout.session.completed", data["order_id"], payment_status="unpaid"),
    )

    assert response.json()["message"] == "Pending"
    db_session.expire_all()
    assert db_session.get(Order, data["order_id"]).payment is False


def test_webhook_expired_session_discards_order(client, db_session, make_user, make_food, auth_headers):
    user = make_user()
    data = _place(client, auth_headers(user), make_food())

    response = _webhook(client, _session_event("checkout.session.expired", data["order_id"]))

    assert response.status_code == 200
    assert response.json()["data"]["paid"] is False
    assert db_session.query(Order).count() == 0

    # Stripe retries deliveries; a second copy finds nothing to do.
    again = _webhook(client, _session_event("checkout.session.expired", data["order_id"]))
    assert again.status_code == 200
    assert again.json()["message"] == "Ignored"



class _RecordingLogger:
    def __init__(self):
        self.events = []

    def _record(self, level):
        return lambda event, **kw: self.events.append((level, event, kw))

    def __getattr__(self, level):
        return self._record(level)


def test_webhook_payment_for_missing_order_is_logged_as_error(client, monkeypatch):
    recorder = _RecordingLogger()
    monkeypatch.setattr(orders_api, "logger", recorder)

    response = _webhook(client, _session_event("checkout.session.completed", 4242))

    assert response.status_code == 200
    assert response.json()["message"] == "Ignored"
    level, event, fields = recorder.events[-1]
    assert (level, event) == ("error", "stripe_payment_without_order")
    assert fields["order_id"] == 4242
    assert fields["checkout_session_id"] == "cs_test_1"

def test_webhook_ignores_other_events(client):
    response = _webhook(client, {"type": "invoice.paid", "data": {"object": {}}})
    assert response.status_code == 200
    assert response.json()["message"] == "Ignored"


def test_my_orders(client, make_user, make_food, auth_headers):
    user = make_user()
    other = make_user()
    food = make_food()
    mine = _place(client, auth_headers(user), food, payment_method="cod")
    _place(client, auth_headers(other), food, payment_method="cod")

    response = client.get("/api/v1/orders/mine", headers=auth_headers(user))

    assert response.status_code == 200
    orders = response.json()["data"]
    assert [order["id"] for order in orders] == [mine["order_id"]]
    assert orders[0]["items"][0]["name"] == "Nalli Nihari"
    assert orders[0]["status"] == OrderStatus.AWAITING_CASH_COLLECTION


def test_admin_order_list_is_paginated(client, make_user, make_food, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    user = make_user()
    food = make_food()
    for _ in range(3):
        _place(client, auth_headers(user), food, payment_method="cod")

    response = client.get("/api/v1/orders/?page=1&limit=2", headers=auth_headers(admin))

    assert response.status_code == 200
    payload = response.json()
    assert len(payload["data"]) == 2
    assert payload["meta"] == {"total": 3, "page": 1, "limit": 2, "total_pages": 2}

    forbidden = client.get("/api/v1/orders/", headers=auth_headers(user))
    assert forbidden.status_code == 403


def test_status_update_requires_admin(client, make_user, make_food, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    user = make_user()
    data = _place(client, auth_headers(user), make_food(), payment_method="cod")
    url = f"/api/v1/orders/{data['order_id']}/status"

    denied = client.put(url, json={"status": "Delivered"}, headers=auth_headers(user))
    assert denied.status_code == 403
    assert denied.json()["message"] == "You are not an admin"

    response = client.put(url, json={"status": "Delivered"}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["message"] == "Status Updated Successfully"
    assert response.json()["data"]["status"] == "Delivered"
    assert response.json()["data"]["payment"] is True


def test_status_update_on_missing_order(client, make_user, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    user = make_user()

    body = {"status": "Delivered"}

    assert client.put("/api/v1/orders/999/status", json=body, headers=auth_headers(user)).status_code == 403
    assert client.put("/api/v1/orders/999/status", json=body, headers=auth_headers(admin)).status_code == 404


def test_remove_order(client, db_session, make_user, make_food, make_coupon, auth_headers):
    admin = make_user(role=UserRole.ADMIN)
    user = make_user()
    coupon = make_coupon("FESTIVE250")
    data = _place(client, auth_headers(user), make_food(), payment_method="cod", coupon_code="FESTIVE250")

    denied = client.delete(f"/api/v1/orders/{data['order_id']}", headers=auth_headers(user))
    assert denied.status_code == 403

    response = client.delete(f"/api/v1/orders/{data['order_id']}", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["message"] == "Order removed"
    assert db_session.query(Order).count() == 0
    db_session.refresh(coupon)
    assert coupon.usage_count == 0
