# tests/conftest.py
import os

# must be set before the package reads its configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["CLERK_WEBHOOK_SECRET"] = "whsec_dGVzdC1jbGVyay1zZWNyZXQ="
os.environ["CLERK_JWT_PUBLIC_KEY"] = ""
os.environ["AUTO_SYNC_ENABLED"] = "0"

import jwt
import pytest

from listing_aggregator import config, crud
from listing_aggregator.db import Base, SessionLocal, engine
from listing_aggregator.models import ConnectedSite, PlanType, User
from listing_aggregator.schemas import CandidateListing


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    crud.seed_sites(session)
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def no_sync_throttle(monkeypatch):
    monkeypatch.setattr(config, "FREE_SYNC_INTERVAL_SECONDS", 0)


@pytest.fixture
def make_user(db):
    def _make(user_id="user_1", plan=PlanType.FREE, listings_count=0):
        user = User(id=user_id, email=f"{user_id}@example.com", plan_type=plan.value, listings_count=listings_count)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def connect(db):
    def _connect(user_id, site_id, **kwargs):
        conn = ConnectedSite(user_id=user_id, site_id=site_id, credentials={}, is_active=True, **kwargs)
        db.add(conn)
        db.commit()
        return conn
    return _connect


class StubClient:
    """Platform client returning a fixed batch, or raising."""

    def __init__(self, candidates=(), error=None):
        self.candidates = list(candidates)
        self.error = error
        self.calls = 0

    def fetch_candidate_listings(self, connection):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.candidates)


def candidates(prefix, n, price="$10.00"):
    return [
        CandidateListing(external_id=f"{prefix}-{i}", title=f"{prefix} item {i}", price=price,
                         url=f"https://example.com/{prefix}/{i}")
        for i in range(n)
    ]


def auth_header(user_id="user_1"):
    token = jwt.encode({"sub": user_id}, "test-secret", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}
