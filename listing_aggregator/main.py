# listing_aggregator/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import crud
from .api.routes import router as api_router
from .api.sync_routes import router as sync_router
from .api.webhook_routes import router as webhook_router
from .db import Base, SessionLocal, engine
from . import models  # noqa: F401 ensure models are imported so tables are known
from .scheduler import start_scheduler, stop_scheduler
from .utils import logger

# create FastAPI instance
app = FastAPI(title="Listing Aggregator")

# the browser extension calls the sync API from marketplace pages
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(api_router)
app.include_router(sync_router)
app.include_router(webhook_router)


@app.on_event("startup")
def on_startup():
    # Ensure database tables and the site catalogue exist on startup
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        added = crud.seed_sites(db)
        if added:
            logger.info("Seeded %d marketplace site(s)", added)
    finally:
        db.close()
    start_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    stop_scheduler()
