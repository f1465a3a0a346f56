# listing_aggregator/services.py
"""Listing synchronization.

`sync_listings` pulls candidate listings from each of a user's active
connections, drops the ones already stored, caps what is left by the
user's remaining quota and persists the rest. Connections run one after
another because the quota is shared across all of them. Each connection
is one transaction: a failure rolls back that connection's listings,
counter increment and timestamp, and the batch moves on.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from . import config, crud, quota, subscriptions
from .dedup import dedupe
from .errors import AppError, NoActiveConnectionsError, PlatformClientError
from .models import ConnectedSite, PlanType
from .platforms import PayloadPlatformClient, PlatformClient, build_platform_clients
from .utils import logger

QUOTA_EXHAUSTED = "quota exhausted"
RECENTLY_SYNCED = "Site was recently synced (within last hour). Free plan limited to hourly syncs."


@dataclass(frozen=True)
class SyncOk:
    site_id: str
    site_name: str
    listings_added: int
    listings: Tuple[dict, ...] = ()
    message: Optional[str] = None
    success: bool = field(default=True, init=False)

    def to_dict(self):
        out = {
            "site_id": self.site_id,
            "site_name": self.site_name,
            "success": True,
            "listings_added": self.listings_added,
            "listings": list(self.listings),
        }
        if self.message:
            out["message"] = self.message
        return out


@dataclass(frozen=True)
class SyncErr:
    site_id: str
    site_name: str
    error: Optional[str] = None
    message: Optional[str] = None
    success: bool = field(default=False, init=False)

    @property
    def listings_added(self):
        return 0

    def to_dict(self):
        out = {
            "site_id": self.site_id,
            "site_name": self.site_name,
            "success": False,
            "listings_added": 0,
        }
        if self.message:
            out["message"] = self.message
        if self.error:
            out["error"] = self.error
        return out


SyncResult = Union[SyncOk, SyncErr]


@dataclass(frozen=True)
class SyncReport:
    success: bool
    results: Tuple[SyncResult, ...]
    total_new_listings: int
    timestamp: datetime
    can_sync: bool = True
    message: Optional[str] = None

    @classmethod
    def quota_exhausted(cls, now: datetime):
        return cls(
            success=False,
            results=(),
            total_new_listings=0,
            timestamp=now,
            can_sync=False,
            message=quota.quota_exhausted_message(),
        )

    def to_dict(self):
        if not self.can_sync:
            return {"success": False, "message": self.message, "canSync": False}
        return {
            "success": self.success,
            "message": self.message,
            "results": [r.to_dict() for r in self.results],
            "total_new_listings": self.total_new_listings,
            "timestamp": self.timestamp.isoformat(),
        }


def _site_name(connection: ConnectedSite) -> str:
    return connection.site.name if connection.site else "Unknown site"


def _recently_synced(connection: ConnectedSite, now: datetime) -> bool:
    last = connection.last_synced_at
    if last is None or config.FREE_SYNC_INTERVAL_SECONDS <= 0:
        return False
    if last.tzinfo is None:
        # SQLite hands back naive datetimes
        last = last.replace(tzinfo=timezone.utc)
    return now - last < timedelta(seconds=config.FREE_SYNC_INTERVAL_SECONDS)


def _sync_connection(db: Session, user_id: str, plan: str, connection: ConnectedSite,
                     client: PlatformClient, remaining, now: datetime, match_urls: bool = False) -> SyncOk:
    candidates = client.fetch_candidate_listings(connection)
    known = crud.get_known_external_ids(db, user_id, connection.site_id)
    fresh = candidates
    if match_urls:
        # pushed pages may already be stored under a platform id
        known_urls = crud.get_known_urls(db, user_id, connection.site_id)
        fresh = [c for c in fresh if not c.url or c.url not in known_urls]
    fresh = dedupe(fresh, known)
    if remaining != quota.UNLIMITED:
        # beyond-quota items are dropped, not queued
        fresh = fresh[:int(remaining)]
    reservation = quota.reserve_listing_slots(db, user_id, plan, len(fresh))
    accepted = fresh[:reservation.granted]
    created = crud.create_listings_from_candidates(db, user_id, connection.site_id, accepted, now=now)
    summaries = tuple({"id": l.id, "title": l.title, "status": l.status} for l in created)
    connection.last_synced_at = now
    db.commit()
    logger.info(
        "Synced %s for %s: %d candidates, %d new, %d added (%s)",
        connection.site_id, user_id, len(candidates), len(fresh), len(created), reservation.status.value,
    )
    return SyncOk(
        site_id=connection.site_id,
        site_name=_site_name(connection),
        listings_added=len(created),
        listings=summaries,
    )


def sync_listings(db: Session, user_id: str, platform_ids: Optional[List[str]] = None,
                  clients: Optional[Dict[str, PlatformClient]] = None,
                  now: Optional[datetime] = None, throttle: bool = True,
                  match_urls: bool = False) -> SyncReport:
    """Sync the user's active connections (all, or only `platform_ids`).

    With `match_urls`, candidates whose page URL is already stored for the
    site are skipped as well, whatever their external id.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    state = subscriptions.get_effective_plan(db, user_id)
    plan = state.plan_type
    is_free = plan == PlanType.FREE.value
    remaining = quota.remaining_quota(plan, state.listings_count)
    if is_free and remaining == 0:
        logger.info("Sync refused for %s: free quota exhausted", user_id)
        return SyncReport.quota_exhausted(now)

    connections = crud.get_active_connections(db, user_id, platform_ids)
    if not connections:
        raise NoActiveConnectionsError()
    if clients is None:
        clients = build_platform_clients()

    results = []
    total = 0
    for connection in connections:
        site_id = connection.site_id
        site_name = _site_name(connection)
        if is_free and remaining <= 0:
            results.append(SyncErr(site_id=site_id, site_name=site_name, message=QUOTA_EXHAUSTED))
            continue
        if is_free and throttle and _recently_synced(connection, now):
            results.append(SyncOk(site_id=site_id, site_name=site_name, listings_added=0, message=RECENTLY_SYNCED))
            continue
        try:
            client = clients.get(site_id)
            if client is None:
                raise PlatformClientError(f"No platform client configured for site {site_id}")
            result = _sync_connection(db, user_id, plan, connection, client, remaining, now, match_urls)
        except Exception as e:
            db.rollback()
            logger.exception("Error syncing site %s for %s: %s", site_id, user_id, e)
            results.append(SyncErr(site_id=site_id, site_name=site_name, error=str(e) or "An unknown error occurred"))
            continue
        results.append(result)
        total += result.listings_added
        remaining -= result.listings_added

    success = any(isinstance(r, SyncOk) for r in results)
    logger.info("Sync for %s finished: %d new listings across %d site(s)", user_id, total, len(results))
    return SyncReport(
        success=success,
        results=tuple(results),
        total_new_listings=total,
        timestamp=now,
        message="Sync completed successfully" if success else "Sync failed for all sites",
    )


def sync_pushed_listings(db: Session, user_id: str, site_id: str, items, now: Optional[datetime] = None) -> SyncReport:
    """Ingest listings posted by the browser extension for one connected site."""
    conn = crud.get_connection(db, user_id, site_id)
    if not conn or not conn.is_active:
        raise AppError(400, "Site not connected for this user")
    return sync_listings(
        db, user_id, [site_id],
        clients={site_id: PayloadPlatformClient(items)},
        now=now,
        throttle=False,
        match_urls=True,
    )
