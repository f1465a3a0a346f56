# listing_aggregator/api/webhook_routes.py
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session
from .. import webhooks
from ..db import get_db
from ..errors import AppError
from ..utils import logger

router = APIRouter(prefix="/webhooks")


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="stripe-signature"),
    db: Session = Depends(get_db),
):
    body = await request.body()
    event = webhooks.verify_stripe_event(body, stripe_signature)
    try:
        message = webhooks.handle_stripe_event(db, event)
    except AppError:
        raise
    except Exception as e:
        logger.error("Error processing Stripe webhook: %s", e)
        raise HTTPException(status_code=500, detail=f"Webhook handler failed: {e}")
    return {"received": True, "message": message}


@router.post("/clerk")
async def clerk_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    event = webhooks.verify_clerk_event(body, request.headers)
    try:
        message = webhooks.handle_clerk_event(db, event, request.headers["svix-id"])
    except AppError:
        raise
    except Exception as e:
        logger.error("Error processing Clerk webhook: %s", e)
        raise HTTPException(status_code=500, detail=f"Webhook handler failed: {e}")
    return {"success": True, "message": message}
