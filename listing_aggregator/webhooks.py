# listing_aggregator/webhooks.py
"""Billing (Stripe) and identity (Clerk) webhook handling.

Each delivery is verified, recorded in `webhook_events` so provider
retries are processed only once, then dispatched to the subscription gate.
"""
import base64
import binascii
import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config, subscriptions
from .errors import WebhookVerificationError
from .models import User, WebhookEvent
from .utils import logger

SIGNATURE_TOLERANCE_SECONDS = 300


def verify_stripe_event(payload: bytes, signature: str, secret: str = None) -> Dict[str, Any]:
    """Check the `stripe-signature` header and return the event as a plain dict."""
    secret = secret or config.STRIPE_WEBHOOK_SECRET
    if not signature:
        raise WebhookVerificationError("Missing stripe-signature header")
    if not secret:
        raise WebhookVerificationError("Stripe webhook secret not configured")
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        logger.error("Invalid Stripe webhook signature: %s", e)
        raise WebhookVerificationError()
    except ValueError:
        raise WebhookVerificationError("Invalid JSON payload")
    return event.to_dict()


def verify_clerk_event(payload: bytes, headers: Mapping[str, str], secret: str = None) -> Dict[str, Any]:
    """Verify a Clerk (svix) delivery: HMAC-SHA256 over "id.timestamp.body"."""
    secret = secret or config.CLERK_WEBHOOK_SECRET
    msg_id = headers.get("svix-id")
    timestamp = headers.get("svix-timestamp")
    signature_header = headers.get("svix-signature")
    if not msg_id or not timestamp or not signature_header:
        raise WebhookVerificationError("Missing svix headers")
    if not secret:
        raise WebhookVerificationError("Clerk webhook secret not configured")
    try:
        sent_at = int(timestamp)
    except ValueError:
        raise WebhookVerificationError("Invalid svix timestamp")
    if abs(time.time() - sent_at) > SIGNATURE_TOLERANCE_SECONDS:
        raise WebhookVerificationError("Webhook timestamp outside tolerance")

    key = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
    try:
        key = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError):
        logger.error("CLERK_WEBHOOK_SECRET is not valid base64")
        raise WebhookVerificationError("Clerk webhook secret not configured")
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    signed = f"{msg_id}.{timestamp}.".encode("utf-8") + payload
    expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode()
    for part in signature_header.split():
        version, _, sig = part.partition(",")
        if version == "v1" and hmac.compare_digest(sig, expected):
            try:
                return json.loads(payload)
            except json.JSONDecodeError:
                raise WebhookVerificationError("Invalid JSON payload")
    raise WebhookVerificationError()


def record_event(db: Session, event_id: str, source: str, event_type: str):
    """Store the delivery; returns None when it was already processed."""
    existing = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
    if existing:
        if existing.processed_at is not None:
            logger.info("Webhook event %s already processed, skipping", event_id)
            return None
        return existing
    event = WebhookEvent(event_id=event_id, source=source, event_type=event_type)
    db.add(event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    return event


def _finish(db: Session, event: WebhookEvent, error: str = None):
    if error is None:
        event.processed_at = datetime.now(timezone.utc)
        event.error_message = None
    else:
        event.error_message = error
    db.commit()


def _dispatch_stripe(db: Session, event_type: str, obj: Dict[str, Any]) -> str:
    if event_type == "checkout.session.completed":
        user_id = (obj.get("metadata") or {}).get("userId") or (obj.get("metadata") or {}).get("user_id")
        if not user_id:
            raise ValueError("No user ID in session metadata")
        subscription_id = obj.get("subscription")
        if not subscription_id:
            raise ValueError("No subscription ID in session")
        customer_id = obj.get("customer")
        if not customer_id:
            raise ValueError("No customer ID in session")
        subscriptions.activate_subscription(db, user_id, customer_id, subscription_id)
        return f"Activated pro subscription for user {user_id}"

    if event_type == "customer.subscription.updated":
        sub = subscriptions.update_subscription_status(
            db, obj["id"], obj.get("status", ""),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            period_end=obj.get("current_period_end"),
        )
        return f"Subscription {obj['id']} is {sub.status}"

    if event_type == "customer.subscription.deleted":
        subscriptions.cancel_subscription(db, obj["id"])
        return f"Subscription {obj['id']} canceled"

    logger.info("Unhandled Stripe event type: %s", event_type)
    return f"Ignored {event_type}"


def handle_stripe_event(db: Session, event: Dict[str, Any]) -> str:
    event_type = event.get("type", "unknown")
    event_id = event.get("id") or f"{event_type}_{event.get('created')}"
    record = record_event(db, event_id, "stripe", event_type)
    if record is None:
        return "duplicate"
    logger.info("Processing Stripe webhook %s (%s)", event_id, event_type)
    try:
        message = _dispatch_stripe(db, event_type, (event.get("data") or {}).get("object") or {})
    except Exception as e:
        db.rollback()
        _finish(db, record, error=str(e))
        raise
    _finish(db, record)
    return message


def _primary_email(data: Dict[str, Any]) -> str:
    addresses = data.get("email_addresses") or []
    if addresses and isinstance(addresses, list) and addresses[0].get("email_address"):
        return addresses[0]["email_address"]
    return ""


def handle_clerk_event(db: Session, event: Dict[str, Any], event_id: str) -> str:
    event_type = event.get("type", "unknown")
    data = event.get("data") or {}
    record = record_event(db, event_id, "clerk", event_type)
    if record is None:
        return "duplicate"
    logger.info("Processing Clerk webhook %s (%s)", event_id, event_type)
    user_id = data.get("id")
    try:
        if event_type in ("user.created", "user.updated"):
            if not user_id:
                raise ValueError("No user id in event data")
            user = subscriptions.ensure_user(db, user_id, _primary_email(data))
            email = _primary_email(data)
            if email and user.email != email:
                user.email = email
                db.commit()
            message = f"User {user_id} synced"
        elif event_type == "user.deleted":
            user = db.get(User, user_id) if user_id else None
            if user is not None:
                db.delete(user)
                db.commit()
            message = f"User {user_id} deleted"
        else:
            message = f"Ignored {event_type}"
    except Exception as e:
        db.rollback()
        _finish(db, record, error=str(e))
        raise
    _finish(db, record)
    return message
