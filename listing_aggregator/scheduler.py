# listing_aggregator/scheduler.py
"""Periodic automatic sync for pro users (off unless AUTO_SYNC_ENABLED)."""
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import select

from . import config
from .db import SessionLocal
from .models import ConnectedSite, PlanType, User
from .services import sync_listings
from .utils import logger

scheduler = BackgroundScheduler()


def auto_sync_pro_users(session_factory=SessionLocal, clients=None):
    """Run a sync for every pro user with at least one active connection."""
    db = session_factory()
    try:
        user_ids = db.execute(
            select(User.id)
            .join(ConnectedSite, ConnectedSite.user_id == User.id)
            .where(User.plan_type == PlanType.PRO.value, ConnectedSite.is_active.is_(True))
            .distinct()
        ).scalars().all()
        total = 0
        for user_id in user_ids:
            try:
                report = sync_listings(db, user_id, clients=clients)
            except Exception as e:
                db.rollback()
                logger.exception("Automatic sync failed for %s: %s", user_id, e)
                continue
            total += report.total_new_listings
        logger.info("Automatic sync done: %d user(s), %d new listing(s)", len(user_ids), total)
        return total
    finally:
        db.close()


def start_scheduler():
    if not config.AUTO_SYNC_ENABLED or scheduler.running:
        return False
    scheduler.add_job(auto_sync_pro_users, "interval", minutes=config.AUTO_SYNC_INTERVAL_MINUTES,
                      id="auto-sync", replace_existing=True)
    scheduler.start()
    logger.info("Scheduler started")
    return True


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
