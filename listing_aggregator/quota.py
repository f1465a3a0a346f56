# listing_aggregator/quota.py
"""Listing quota policy and atomic slot reservation.

`remaining_quota` is the pure policy. `reserve_listing_slots` applies it to
the stored counter with a conditional UPDATE so that two concurrent callers
cannot both pass the check and overshoot the free limit.
"""
import enum
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import config
from .models import PlanType, User
from .utils import logger

UNLIMITED = float("inf")

MAX_RESERVE_ATTEMPTS = 3


def is_pro(plan) -> bool:
    return str(getattr(plan, "value", plan)) == PlanType.PRO.value


def remaining_quota(plan, current_count: int, limit: int = None):
    """Listings the user may still add: `UNLIMITED` on pro, never negative on free."""
    if is_pro(plan):
        return UNLIMITED
    if limit is None:
        limit = config.FREE_LISTING_LIMIT
    return max(0, limit - (current_count or 0))


def quota_exhausted_message(limit: int = None) -> str:
    if limit is None:
        limit = config.FREE_LISTING_LIMIT
    return (
        f"You've reached the limit of {limit} listings on the Free plan. "
        "Upgrade to Pro for unlimited listings."
    )


def check_listing_limit(plan, current_count: int):
    """Return ``(can_create, message)`` for creating one more listing."""
    if remaining_quota(plan, current_count) <= 0:
        return False, quota_exhausted_message()
    return True, None


class ReservationStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    PARTIAL = "partial"
    REJECTED = "rejected"


@dataclass(frozen=True)
class QuotaReservation:
    requested: int
    granted: int

    @property
    def status(self) -> ReservationStatus:
        if self.granted >= self.requested:
            return ReservationStatus.ACCEPTED
        if self.granted > 0:
            return ReservationStatus.PARTIAL
        return ReservationStatus.REJECTED


def _increment(db: Session, user_id: str, n: int, limit=None) -> bool:
    stmt = update(User).where(User.id == user_id)
    if limit is not None:
        stmt = stmt.where(User.listings_count + n <= limit)
    stmt = stmt.values(listings_count=User.listings_count + n).execution_options(synchronize_session=False)
    return db.execute(stmt).rowcount == 1


def reserve_listing_slots(db: Session, user_id: str, plan, requested: int) -> QuotaReservation:
    """Atomically add up to `requested` to the user's listings counter.

    Runs inside the caller's transaction; rolling it back releases the slots.
    """
    if requested <= 0:
        return QuotaReservation(requested=max(requested, 0), granted=0)
    if is_pro(plan):
        _increment(db, user_id, requested)
        return QuotaReservation(requested=requested, granted=requested)

    limit = config.FREE_LISTING_LIMIT
    wanted = requested
    for _ in range(MAX_RESERVE_ATTEMPTS):
        if wanted <= 0:
            break
        if _increment(db, user_id, wanted, limit=limit):
            return QuotaReservation(requested=requested, granted=wanted)
        current = db.execute(select(User.listings_count).where(User.id == user_id)).scalar_one_or_none()
        if current is None:
            break
        wanted = min(wanted, remaining_quota(plan, current, limit))
    logger.info("Quota reservation for %s rejected (%d requested)", user_id, requested)
    return QuotaReservation(requested=requested, granted=0)


def release_listing_slots(db: Session, user_id: str, n: int):
    """Give back `n` slots, never below zero (used when listings are deleted)."""
    if n <= 0:
        return
    stmt = (
        update(User)
        .where(User.id == user_id, User.listings_count >= n)
        .values(listings_count=User.listings_count - n)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount == 0:
        db.execute(
            update(User).where(User.id == user_id).values(listings_count=0)
            .execution_options(synchronize_session=False)
        )
