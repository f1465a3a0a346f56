# listing_aggregator/api/sync_routes.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from .. import schemas, services
from ..auth import get_current_user_id
from ..db import get_db
from ..errors import AppError
from ..utils import logger

router = APIRouter()


@router.post("/sync")
def sync(payload: schemas.SyncRequest = None, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    platform_ids = [payload.platformId] if payload and payload.platformId else None
    try:
        report = services.sync_listings(db, user_id, platform_ids)
    except AppError:
        raise
    except Exception as e:
        logger.exception("Sync failed for %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="An error occurred while syncing listings")
    return report.to_dict()


@router.post("/extension/sync")
def extension_sync(payload: schemas.ExtensionSyncRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    logger.info("Extension sync for %s: %d listing(s) for %s", user_id, len(payload.listings), payload.siteId)
    try:
        report = services.sync_pushed_listings(db, user_id, payload.siteId, payload.listings)
    except AppError:
        raise
    except Exception as e:
        logger.exception("Extension sync failed for %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Server error processing extension sync")
    if not report.can_sync:
        return report.to_dict()
    result = report.results[0]
    if not result.success:
        return {"success": False, "message": result.error or result.message, "newItems": 0}
    return {"success": True, "message": "Sync successful", "newItems": report.total_new_listings}
