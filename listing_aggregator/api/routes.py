# listing_aggregator/api/routes.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from .. import config, crud, schemas, subscriptions
from ..auth import get_current_user_id
from ..db import get_db
from ..errors import NotFoundError, SiteLimitError
from ..models import PlanType, Site
from ..utils import logger

router = APIRouter()

@router.get("/health")
def health():
    return {"status": "ok"}


# ---------------------------------------------------
# listings
# ---------------------------------------------------
@router.get("/listings", response_model=schemas.ListingPage)
def listings(
    skip: int = 0,
    limit: int = Query(20, le=100),
    status: Optional[str] = Query(None),
    site_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    filters = {"status": status, "site_id": site_id, "search": search}
    return crud.list_listings(db, user_id, skip=skip, limit=limit, filters=filters)


@router.get("/listings/{listing_id}", response_model=schemas.ListingOut)
def get_listing(listing_id: int, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    obj = crud.get_listing(db, user_id, listing_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return obj


@router.post("/listings", response_model=schemas.ListingOut, status_code=201)
def create_listing(payload: schemas.ListingCreate, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    if not db.get(Site, payload.site_id):
        raise NotFoundError(f"Site {payload.site_id} not found")
    state = subscriptions.get_effective_plan(db, user_id)
    obj = crud.create_listing(db, user_id, state.plan_type, payload.model_dump())
    logger.info("User %s created listing %s", user_id, obj.id)
    return obj


@router.patch("/listings/{listing_id}", response_model=schemas.ListingOut)
def update_listing(listing_id: int, payload: schemas.ListingUpdate, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    obj = crud.update_listing(db, user_id, listing_id, updates=payload.model_dump(exclude_unset=True))
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return obj


@router.delete("/listings/{listing_id}")
def delete_listing(listing_id: int, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    ok = crud.delete_listing(db, user_id, listing_id)
    if not ok:
        raise HTTPException(status_code=404, detail="Listing not found")
    return {"status": "deleted"}


# ---------------------------------------------------
# sites / connections
# ---------------------------------------------------
@router.get("/sites/available", response_model=List[schemas.SiteOut])
def available_sites(db: Session = Depends(get_db)):
    return crud.list_sites(db)


@router.get("/sites/connected", response_model=List[schemas.ConnectionOut])
def connected_sites(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return crud.get_active_connections(db, user_id)


@router.post("/sites/connect", response_model=schemas.ConnectionOut)
def connect_site(payload: schemas.ConnectRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    state = subscriptions.get_effective_plan(db, user_id)
    existing = crud.get_connection(db, user_id, payload.site_id)
    already_active = existing is not None and existing.is_active
    if (state.plan_type == PlanType.FREE.value and not already_active
            and crud.count_active_connections(db, user_id) >= config.MAX_FREE_SITES):
        raise SiteLimitError(f"Free plan is limited to {config.MAX_FREE_SITES} connected sites. Upgrade to Pro to connect more.")
    conn = crud.connect_site(db, user_id, payload.site_id, payload.credentials)
    logger.info("User %s connected %s", user_id, payload.site_id)
    return conn


@router.delete("/sites/{site_id}")
def disconnect_site(site_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    if not crud.disconnect_site(db, user_id, site_id):
        raise HTTPException(status_code=404, detail="Site connection not found")
    return {"status": "disconnected"}


# ---------------------------------------------------
# subscription
# ---------------------------------------------------
@router.get("/subscription/status")
def subscription_status(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return subscriptions.get_subscription_status(db, user_id)


@router.get("/subscriptions/usage", response_model=schemas.UsageOut)
def subscription_usage(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return subscriptions.get_usage(db, user_id)


@router.post("/subscriptions/cancel")
def cancel_subscription(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    subscriptions.request_cancellation(db, user_id)
    return {
        "success": True,
        "message": "Subscription will be canceled at the end of the current billing period",
    }
