from app.core.logging_config import scrub, scrub_secrets


def test_scrub_masks_provider_keys():
    assert scrub("Invalid API Key provided: sk_live_51HxYzAbC") == "Invalid API Key provided: sk_****"
    assert scrub("restricted rk_test_abc and publishable pk_live_q1") == "restricted rk_**** and publishable pk_****"


def test_scrub_leaves_other_values_alone():
    assert scrub("coupon_fake_1 deleted") == "coupon_fake_1 deleted"
    assert scrub(None) is None
    assert scrub(42) == 42


def test_scrub_secrets_processor():
    event = {
        "event": "stripe_request_failed",
        "detail": "No such key sk_test_123",
        "error": ValueError("bad key rk_live_999"),
        "order_id": 7,
    }

    processed = scrub_secrets(None, "error", event)

    assert processed["detail"] == "No such key sk_****"
    assert processed["error"] == "bad key rk_****"
    assert processed["order_id"] == 7
