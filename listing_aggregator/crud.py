# listing_aggregator/crud.py
"""CRUD operations for sites, connections and listings.

Helpers flush but leave committing to the caller unless the function is a
complete user-facing operation (create/update/delete of one listing,
connect/disconnect). The sync path batches its writes into one transaction
per connection.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from . import quota
from .errors import NotFoundError, QuotaExceededError
from .models import ConnectedSite, Listing, ListingStatus, Site, User
from .utils import parse_price, logger

MARKETPLACE_SITES = [
    {"id": "facebook", "name": "Facebook Marketplace", "url": "https://www.facebook.com/marketplace",
     "description": "Connect your Facebook Marketplace account to sync listings", "enabled": True},
    {"id": "ebay", "name": "eBay", "url": "https://www.ebay.com",
     "description": "Connect your eBay seller account to sync listings", "enabled": True},
    {"id": "etsy", "name": "Etsy", "url": "https://www.etsy.com",
     "description": "Connect your Etsy shop to sync listings", "enabled": True},
    {"id": "amazon", "name": "Amazon", "url": "https://www.amazon.com",
     "description": "Connect your Amazon seller account to sync listings", "enabled": False},
    {"id": "shopify", "name": "Shopify", "url": "https://www.shopify.com",
     "description": "Connect your Shopify store to sync products", "enabled": False},
]


def _now():
    return datetime.now(timezone.utc)


def seed_sites(db: Session) -> int:
    """Insert missing catalogue entries; existing rows are left untouched."""
    existing = set(db.execute(select(Site.id)).scalars())
    added = 0
    for data in MARKETPLACE_SITES:
        if data["id"] in existing:
            continue
        db.add(Site(api_endpoint=f"{data['url']}/api", **data))
        added += 1
    db.commit()
    return added

def list_sites(db: Session, enabled_only: bool = False) -> List[Site]:
    q = db.query(Site)
    if enabled_only:
        q = q.filter(Site.enabled.is_(True))
    return q.order_by(Site.name).all()


def get_connection(db: Session, user_id: str, site_id: str) -> Optional[ConnectedSite]:
    return db.query(ConnectedSite).filter(
        ConnectedSite.user_id == user_id, ConnectedSite.site_id == site_id
    ).first()

def get_active_connections(db: Session, user_id: str, site_ids: Optional[Iterable[str]] = None) -> List[ConnectedSite]:
    q = db.query(ConnectedSite).filter(
        ConnectedSite.user_id == user_id, ConnectedSite.is_active.is_(True)
    )
    if site_ids is not None:
        q = q.filter(ConnectedSite.site_id.in_(list(site_ids)))
    return q.order_by(ConnectedSite.id).all()

def count_active_connections(db: Session, user_id: str) -> int:
    return db.query(func.count(ConnectedSite.id)).filter(
        ConnectedSite.user_id == user_id, ConnectedSite.is_active.is_(True)
    ).scalar()

def connect_site(db: Session, user_id: str, site_id: str, credentials: Optional[Dict[str, Any]] = None) -> ConnectedSite:
    site = db.get(Site, site_id)
    if not site or not site.enabled:
        raise NotFoundError(f"Site {site_id} is not available")
    conn = get_connection(db, user_id, site_id)
    if conn:
        conn.is_active = True
        if credentials is not None:
            conn.credentials = credentials
    else:
        conn = ConnectedSite(user_id=user_id, site_id=site_id, credentials=credentials or {}, is_active=True)
        db.add(conn)
    db.commit()
    db.refresh(conn)
    return conn

def disconnect_site(db: Session, user_id: str, site_id: str) -> bool:
    conn = get_connection(db, user_id, site_id)
    if not conn or not conn.is_active:
        return False
    conn.is_active = False
    db.commit()
    return True


def get_known_external_ids(db: Session, user_id: str, site_id: str) -> set:
    rows = db.execute(
        select(Listing.external_id).where(
            Listing.user_id == user_id,
            Listing.site_id == site_id,
            Listing.external_id.is_not(None),
        )
    ).scalars()
    return set(rows)

def get_known_urls(db: Session, user_id: str, site_id: str) -> set:
    rows = db.execute(
        select(Listing.url).where(
            Listing.user_id == user_id,
            Listing.site_id == site_id,
            Listing.url.is_not(None),
        )
    ).scalars()
    return set(rows)


def _apply_status(obj: Listing, status, now: datetime):
    status = getattr(status, "value", status)
    obj.status = status
    if status == ListingStatus.ACTIVE.value and obj.published_at is None:
        obj.published_at = now

def create_listings_from_candidates(db: Session, user_id: str, site_id: str, candidates, now: Optional[datetime] = None) -> List[Listing]:
    """Add one Listing per candidate and flush; the caller commits."""
    now = now or _now()
    created = []
    for c in candidates:
        price, currency = parse_price(c.price)
        obj = Listing(
            user_id=user_id,
            site_id=site_id,
            external_id=c.external_id,
            title=c.title,
            description=c.description or "",
            price=price,
            currency=currency,
            url=c.url,
            metadata_={**c.metadata, "source_site": site_id, "sync_time": now.isoformat()},
        )
        _apply_status(obj, c.status or ListingStatus.ACTIVE, now)
        db.add(obj)
        created.append(obj)
    db.flush()
    return created


def get_listing(db: Session, user_id: str, listing_id: int) -> Optional[Listing]:
    return db.query(Listing).filter(Listing.id == listing_id, Listing.user_id == user_id).first()

def list_listings(db: Session, user_id: str, skip: int = 0, limit: int = 50, filters: Dict = None):
    q = db.query(Listing).filter(Listing.user_id == user_id)
    if filters:
        conds = []
        if filters.get("status"):
            conds.append(Listing.status == filters["status"])
        if filters.get("site_id"):
            conds.append(Listing.site_id == filters["site_id"])
        if filters.get("search"):
            conds.append(Listing.title.ilike(f"%{filters['search']}%"))
        if conds:
            q = q.filter(and_(*conds))
    total = q.count()
    items = q.order_by(Listing.created_at.desc(), Listing.id.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": items}

def create_listing(db: Session, user_id: str, plan, data: Dict[str, Any]) -> Listing:
    """Create an in-app listing, charging one slot of the user's quota."""
    reservation = quota.reserve_listing_slots(db, user_id, plan, 1)
    if reservation.granted == 0:
        db.rollback()
        raise QuotaExceededError(quota.quota_exhausted_message())
    now = _now()
    status = data.pop("status", ListingStatus.DRAFT)
    metadata = data.pop("metadata", None)
    if data.get("currency") is None:
        data["currency"] = "USD"
    obj = Listing(user_id=user_id, metadata_=metadata or {}, **data)
    _apply_status(obj, status, now)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def update_listing(db: Session, user_id: str, listing_id: int, updates: Dict[str, Any]) -> Optional[Listing]:
    obj = get_listing(db, user_id, listing_id)
    if not obj:
        return None
    status = updates.pop("status", None)
    if "metadata" in updates:
        obj.metadata_ = updates.pop("metadata")
    for k, v in updates.items():
        setattr(obj, k, v)
    if status is not None:
        _apply_status(obj, status, _now())
    db.commit()
    db.refresh(obj)
    return obj

def delete_listing(db: Session, user_id: str, listing_id: int) -> bool:
    obj = get_listing(db, user_id, listing_id)
    if not obj:
        return False
    db.delete(obj)
    quota.release_listing_slots(db, user_id, 1)
    db.commit()
    return True


def reconcile_listings_count(db: Session, user_id: Optional[str] = None) -> Dict[str, Dict[str, int]]:
    """Recompute `listings_count` from the listings table.

    Returns ``{user_id: {"stored": n, "actual": m}}`` for every user whose
    counter had drifted; those counters are corrected.
    """
    counts = (
        select(Listing.user_id, func.count(Listing.id).label("actual"))
        .group_by(Listing.user_id)
        .subquery()
    )
    q = select(User.id, User.listings_count, func.coalesce(counts.c.actual, 0)).outerjoin(
        counts, counts.c.user_id == User.id
    )
    if user_id is not None:
        q = q.where(User.id == user_id)
    drift = {}
    for uid, stored, actual in db.execute(q).all():
        if stored != actual:
            drift[uid] = {"stored": stored, "actual": actual}
            db.execute(update(User).where(User.id == uid).values(listings_count=actual))
    db.commit()
    if drift:
        logger.warning("Corrected listings_count drift for %d user(s)", len(drift))
    return drift
