# listing_aggregator/config.py
"""Environment-driven settings.

Values are read once at import time from the process environment (a local
`.env` file is loaded first). Modules read them as `config.NAME` at call
time so tests can override them with monkeypatch.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def database_url():
    url = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_URL") or "sqlite:///./local.db"
    # SQLAlchemy 2.x doesn't accept 'postgres://'
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


def _flag(name, default="0"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = database_url()
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 5))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# plans
FREE_LISTING_LIMIT = int(os.getenv("FREE_LISTING_LIMIT", 25))
MAX_FREE_SITES = int(os.getenv("MAX_FREE_SITES", 3))
FREE_SYNC_INTERVAL_SECONDS = int(os.getenv("FREE_SYNC_INTERVAL_SECONDS", 3600))

# platform clients
PLATFORM_CLIENT = os.getenv("PLATFORM_CLIENT", "simulated").strip().lower()
HEADLESS = os.getenv("HEADLESS", "1") == "1"
SCRAPE_MAX_ITEMS = int(os.getenv("SCRAPE_MAX_ITEMS", "200"))

# background sync for pro users
AUTO_SYNC_ENABLED = _flag("AUTO_SYNC_ENABLED")
AUTO_SYNC_INTERVAL_MINUTES = int(os.getenv("AUTO_SYNC_INTERVAL_MINUTES", 60))

# billing / identity providers
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
CLERK_WEBHOOK_SECRET = os.getenv("CLERK_WEBHOOK_SECRET", "")
CLERK_JWT_PUBLIC_KEY = os.getenv("CLERK_JWT_PUBLIC_KEY", "").replace("\\n", "\n")
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "")

# first matching symbol wins; anything else is USD
CURRENCY_SYMBOLS = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
}
DEFAULT_CURRENCY = "USD"
