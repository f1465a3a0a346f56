# listing_aggregator/subscriptions.py
"""Subscription gate.

Single place that answers "which plan is this user on" and the only code
that changes `users.plan_type`. Plan changes arrive exclusively from
billing webhooks; the sync path only reads.

`users.plan_type` is the authoritative plan. Subscription rows are the
billing history behind it and are kept consistent by the transition
functions below.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config
from .errors import NotFoundError
from .models import PlanType, Subscription, SubscriptionStatus, User
from .quota import is_pro, remaining_quota
from .utils import logger


@dataclass(frozen=True)
class PlanState:
    plan_type: str
    listings_count: int

    @property
    def remaining(self):
        return remaining_quota(self.plan_type, self.listings_count)


def _now():
    return datetime.now(timezone.utc)

def _from_timestamp(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def ensure_user(db: Session, user_id: str, email: Optional[str] = None) -> User:
    """Get the user row, creating a free-plan user the first time we see the id."""
    user = db.get(User, user_id)
    if user:
        return user
    user = User(id=user_id, email=email or "", plan_type=PlanType.FREE.value, listings_count=0)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # created concurrently (e.g. by the identity webhook)
        db.rollback()
        user = db.get(User, user_id)
        if user is None:
            raise
        return user
    logger.info("Created user %s on the free plan", user_id)
    return user


def get_effective_plan(db: Session, user_id: str) -> PlanState:
    user = ensure_user(db, user_id)
    plan = PlanType.PRO.value if is_pro(user.plan_type) else PlanType.FREE.value
    return PlanState(plan_type=plan, listings_count=user.listings_count or 0)


def get_current_subscription(db: Session, user_id: str) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.status.in_([SubscriptionStatus.ACTIVE.value, SubscriptionStatus.CANCELING.value]),
        )
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def get_subscription_status(db: Session, user_id: str) -> dict:
    state = get_effective_plan(db, user_id)
    sub = get_current_subscription(db, user_id)
    return {
        "isPro": state.plan_type == PlanType.PRO.value,
        "planType": state.plan_type,
        "listingsCount": state.listings_count,
        "subscriptionStatus": sub.status if sub else None,
        "currentPeriodEnd": sub.current_period_end.isoformat() if sub and sub.current_period_end else None,
    }


def get_usage(db: Session, user_id: str) -> dict:
    state = get_effective_plan(db, user_id)
    if state.plan_type == PlanType.PRO.value:
        return {"plan": state.plan_type, "usage": state.listings_count, "limit": "unlimited", "percentage": 0}
    limit = config.FREE_LISTING_LIMIT
    percentage = min(100, round(state.listings_count / limit * 100)) if limit else 100
    return {"plan": state.plan_type, "usage": state.listings_count, "limit": limit, "percentage": percentage}


# ---------------------------------------------------
# billing-driven transitions (webhooks only)
# ---------------------------------------------------
def activate_subscription(db: Session, user_id: str, customer_id: str, subscription_id: str,
                          period_start=None, period_end=None) -> Subscription:
    """checkout completed: none -> active, user becomes pro."""
    user = ensure_user(db, user_id)
    now = _now()
    sub = db.query(Subscription).filter(Subscription.stripe_subscription_id == subscription_id).first()
    # at most one active subscription per user
    others = db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
    )
    if sub is not None:
        others = others.filter(Subscription.id != sub.id)
    for old in others.all():
        old.status = SubscriptionStatus.CANCELED.value
    if sub is None:
        sub = Subscription(user_id=user_id, stripe_subscription_id=subscription_id)
        db.add(sub)
    sub.status = SubscriptionStatus.ACTIVE.value
    sub.plan_type = PlanType.PRO.value
    sub.stripe_customer_id = customer_id
    sub.current_period_start = _from_timestamp(period_start) or now
    sub.current_period_end = _from_timestamp(period_end)
    user.plan_type = PlanType.PRO.value
    user.stripe_customer_id = customer_id
    db.commit()
    logger.info("Activated pro subscription %s for user %s", subscription_id, user_id)
    return sub


def update_subscription_status(db: Session, subscription_id: str, status: str,
                               cancel_at_period_end: bool = False, period_end=None) -> Subscription:
    """Mirror a provider-side update; cancel_at_period_end means canceling."""
    sub = db.query(Subscription).filter(Subscription.stripe_subscription_id == subscription_id).first()
    if sub is None:
        raise NotFoundError(f"Subscription {subscription_id} not found")
    if status == "canceled":
        return cancel_subscription(db, subscription_id)
    if cancel_at_period_end:
        sub.status = SubscriptionStatus.CANCELING.value
    elif status in ("active", "trialing"):
        sub.status = SubscriptionStatus.ACTIVE.value
    if period_end is not None:
        sub.current_period_end = _from_timestamp(period_end)
    db.commit()
    logger.info("Subscription %s is now %s", subscription_id, sub.status)
    return sub


def cancel_subscription(db: Session, subscription_id: str) -> Subscription:
    """Provider confirmed the end: -> canceled, user reverts to free."""
    sub = db.query(Subscription).filter(Subscription.stripe_subscription_id == subscription_id).first()
    if sub is None:
        raise NotFoundError(f"Subscription {subscription_id} not found")
    sub.status = SubscriptionStatus.CANCELED.value
    still_paying = db.query(Subscription).filter(
        Subscription.user_id == sub.user_id,
        Subscription.id != sub.id,
        Subscription.status.in_([SubscriptionStatus.ACTIVE.value, SubscriptionStatus.CANCELING.value]),
    ).count()
    user = db.get(User, sub.user_id)
    if user is not None and not still_paying:
        user.plan_type = PlanType.FREE.value
    db.commit()
    logger.info("Subscription %s canceled; user %s downgraded to free", subscription_id, sub.user_id)
    return sub


def request_cancellation(db: Session, user_id: str) -> Subscription:
    """Ask Stripe to stop renewing; the plan stays pro until the deletion webhook."""
    sub = (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status == SubscriptionStatus.ACTIVE.value)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    if sub is None or not sub.stripe_subscription_id:
        raise NotFoundError("No active subscription found")
    stripe.api_key = config.STRIPE_SECRET_KEY
    stripe.Subscription.modify(sub.stripe_subscription_id, cancel_at_period_end=True)
    sub.status = SubscriptionStatus.CANCELING.value
    db.commit()
    return sub
