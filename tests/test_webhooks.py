# tests/test_webhooks.py
import base64
import hashlib
import hmac
import json
import time

import pytest

from listing_aggregator import webhooks
from listing_aggregator.errors import WebhookVerificationError
from listing_aggregator.models import Subscription, User, WebhookEvent

STRIPE_SECRET = "whsec_test_secret"
CLERK_KEY = base64.b64decode("dGVzdC1jbGVyay1zZWNyZXQ=")


def stripe_signature(payload: bytes, secret=STRIPE_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    sig = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={sig}"


def clerk_headers(payload: bytes, msg_id="msg_1", timestamp=None):
    timestamp = str(timestamp or int(time.time()))
    signed = f"{msg_id}.{timestamp}.".encode() + payload
    sig = base64.b64encode(hmac.new(CLERK_KEY, signed, hashlib.sha256).digest()).decode()
    return {"svix-id": msg_id, "svix-timestamp": timestamp, "svix-signature": f"v1,{sig}"}


def checkout_event(event_id="evt_1", user_id="u1"):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {"metadata": {"userId": user_id}, "subscription": "sub_1", "customer": "cus_1"}},
    }


def test_verify_stripe_event_accepts_valid_signature():
    payload = json.dumps(checkout_event()).encode()
    event = webhooks.verify_stripe_event(payload, stripe_signature(payload))
    assert event["type"] == "checkout.session.completed"


@pytest.mark.parametrize("header", [None, "", "t=1,v1=deadbeef"])
def test_verify_stripe_event_rejects_bad_signature(header):
    payload = json.dumps(checkout_event()).encode()
    with pytest.raises(WebhookVerificationError):
        webhooks.verify_stripe_event(payload, header)


def test_verify_stripe_event_rejects_wrong_secret():
    payload = json.dumps(checkout_event()).encode()
    with pytest.raises(WebhookVerificationError):
        webhooks.verify_stripe_event(payload, stripe_signature(payload, secret="whsec_other"))


def test_stripe_checkout_then_deletion(db):
    assert "Activated" in webhooks.handle_stripe_event(db, checkout_event())
    assert db.get(User, "u1").plan_type == "pro"

    deleted = {"id": "evt_2", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_1"}}}
    webhooks.handle_stripe_event(db, deleted)
    db.expire_all()
    assert db.get(User, "u1").plan_type == "free"
    assert db.query(Subscription).one().status == "canceled"


def test_stripe_update_with_cancel_at_period_end(db):
    webhooks.handle_stripe_event(db, checkout_event())
    updated = {
        "id": "evt_2",
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_1", "status": "active", "cancel_at_period_end": True}},
    }
    assert webhooks.handle_stripe_event(db, updated) == "Subscription sub_1 is canceling"
    assert db.get(User, "u1").plan_type == "pro"


def test_stripe_events_are_processed_once(db):
    webhooks.handle_stripe_event(db, checkout_event())
    assert webhooks.handle_stripe_event(db, checkout_event()) == "duplicate"
    assert db.query(Subscription).count() == 1
    record = db.query(WebhookEvent).one()
    assert record.source == "stripe"
    assert record.processed_at is not None


def test_failed_stripe_event_is_recorded_and_retryable(db):
    bad = {"id": "evt_bad", "type": "checkout.session.completed", "data": {"object": {"metadata": {}}}}
    with pytest.raises(ValueError):
        webhooks.handle_stripe_event(db, bad)
    record = db.query(WebhookEvent).filter(WebhookEvent.event_id == "evt_bad").one()
    assert record.processed_at is None
    assert "No user ID" in record.error_message


def test_unhandled_stripe_event_is_ignored(db):
    event = {"id": "evt_3", "type": "invoice.paid", "data": {"object": {}}}
    assert webhooks.handle_stripe_event(db, event) == "Ignored invoice.paid"


def test_verify_clerk_event():
    payload = json.dumps({"type": "user.created", "data": {"id": "u1"}}).encode()
    event = webhooks.verify_clerk_event(payload, clerk_headers(payload))
    assert event["data"]["id"] == "u1"


def test_verify_clerk_event_rejects_tampered_body():
    payload = json.dumps({"type": "user.created", "data": {"id": "u1"}}).encode()
    headers = clerk_headers(payload)
    with pytest.raises(WebhookVerificationError):
        webhooks.verify_clerk_event(payload.replace(b"u1", b"u2"), headers)


def test_verify_clerk_event_rejects_stale_timestamp():
    payload = b'{"type": "user.created", "data": {}}'
    headers = clerk_headers(payload, timestamp=int(time.time()) - 3600)
    with pytest.raises(WebhookVerificationError):
        webhooks.verify_clerk_event(payload, headers)


def test_clerk_user_lifecycle(db):
    created = {
        "type": "user.created",
        "data": {"id": "u1", "email_addresses": [{"email_address": "first@example.com"}]},
    }
    webhooks.handle_clerk_event(db, created, "msg_1")
    assert db.get(User, "u1").email == "first@example.com"

    updated = {
        "type": "user.updated",
        "data": {"id": "u1", "email_addresses": [{"email_address": "second@example.com"}]},
    }
    webhooks.handle_clerk_event(db, updated, "msg_2")
    assert db.get(User, "u1").email == "second@example.com"
    assert webhooks.handle_clerk_event(db, updated, "msg_2") == "duplicate"

    webhooks.handle_clerk_event(db, {"type": "user.deleted", "data": {"id": "u1"}}, "msg_3")
    assert db.get(User, "u1") is None


def test_verified_stripe_event_is_a_plain_dict():
    payload = json.dumps(checkout_event()).encode()
    event = webhooks.verify_stripe_event(payload, stripe_signature(payload))
    assert type(event) is dict
    assert event["data"]["object"]["metadata"] == {"userId": "u1"}


def test_malformed_clerk_secret_is_a_verification_error():
    payload = b'{"type": "user.created", "data": {"id": "u1"}}'
    with pytest.raises(WebhookVerificationError) as exc:
        webhooks.verify_clerk_event(payload, clerk_headers(payload), secret="whsec_not*base64!")
    assert exc.value.status_code == 400
    assert exc.value.detail == "Clerk webhook secret not configured"
