# tests/test_api.py
import json

import pytest
from fastapi.testclient import TestClient

from listing_aggregator import config, services
from listing_aggregator.main import app
from listing_aggregator.models import PlanType, User

from conftest import StubClient, auth_header, candidates
from test_webhooks import checkout_event, stripe_signature


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def stub_clients(monkeypatch):
    stubs = {
        "facebook": StubClient(candidates("fb", 3)),
        "ebay": StubClient(candidates("eb", 2)),
        "etsy": StubClient(candidates("et", 1)),
    }
    monkeypatch.setattr(services, "build_platform_clients", lambda: stubs)
    return stubs


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer not-a-token"}, {"Authorization": "Basic abc"}])
def test_requires_authentication(client, headers):
    assert client.post("/sync", headers=headers).status_code == 401


def test_sync_without_connections(client):
    resp = client.post("/sync", headers=auth_header())
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No active connected sites found"


def test_sync_report_shape(client, make_user, connect, stub_clients):
    make_user("user_1")
    connect("user_1", "facebook")
    connect("user_1", "ebay")
    resp = client.post("/sync", headers=auth_header())
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["total_new_listings"] == 5
    assert [r["site_id"] for r in body["results"]] == ["facebook", "ebay"]
    assert body["results"][0]["listings_added"] == 3
    assert "timestamp" in body


def test_sync_single_platform(client, make_user, connect, stub_clients):
    make_user("user_1")
    connect("user_1", "facebook")
    connect("user_1", "ebay")
    resp = client.post("/sync", json={"platformId": "ebay"}, headers=auth_header())
    assert [r["site_id"] for r in resp.json()["results"]] == ["ebay"]
    assert stub_clients["facebook"].calls == 0


def test_sync_with_exhausted_quota(client, make_user, connect, stub_clients):
    make_user("user_1", listings_count=25)
    connect("user_1", "facebook")
    body = client.post("/sync", headers=auth_header()).json()
    assert body["success"] is False
    assert body["canSync"] is False
    assert "25 listings" in body["message"]


def test_listing_crud(client, db, make_user):
    make_user("user_1")
    created = client.post("/listings", json={
        "site_id": "ebay", "title": "Bike", "price": 120.5, "status": "active", "metadata": {"size": "M"},
    }, headers=auth_header())
    assert created.status_code == 201
    listing = created.json()
    assert listing["currency"] == "USD"
    assert listing["metadata"] == {"size": "M"}
    assert listing["published_at"] is not None

    page = client.get("/listings", params={"search": "bik"}, headers=auth_header()).json()
    assert page["total"] == 1

    patched = client.patch(f"/listings/{listing['id']}", json={"status": "sold"}, headers=auth_header()).json()
    assert patched["status"] == "sold"
    assert patched["published_at"] == listing["published_at"]

    assert client.get(f"/listings/{listing['id']}", headers=auth_header("someone_else")).status_code == 404
    assert client.delete(f"/listings/{listing['id']}", headers=auth_header()).json() == {"status": "deleted"}
    db.expire_all()
    assert db.get(User, "user_1").listings_count == 0


def test_create_listing_over_quota(client, make_user):
    make_user("user_1", listings_count=25)
    resp = client.post("/listings", json={"site_id": "ebay", "title": "Bike"}, headers=auth_header())
    assert resp.status_code == 403


def test_create_listing_unknown_site(client, make_user):
    make_user("user_1")
    resp = client.post("/listings", json={"site_id": "nowhere", "title": "Bike"}, headers=auth_header())
    assert resp.status_code == 404


def test_usage(client, make_user):
    make_user("user_1", listings_count=5)
    assert client.get("/subscriptions/usage", headers=auth_header()).json() == {
        "plan": "free", "usage": 5, "limit": 25, "percentage": 20,
    }


def test_connect_sites_respects_free_limit(client, make_user, monkeypatch):
    monkeypatch.setattr(config, "MAX_FREE_SITES", 2)
    make_user("user_1")
    assert client.post("/sites/connect", json={"site_id": "facebook"}, headers=auth_header()).status_code == 200
    assert client.post("/sites/connect", json={"site_id": "ebay"}, headers=auth_header()).status_code == 200
    # reconnecting an active site does not count against the limit
    assert client.post("/sites/connect", json={"site_id": "ebay"}, headers=auth_header()).status_code == 200
    assert client.post("/sites/connect", json={"site_id": "etsy"}, headers=auth_header()).status_code == 403

    assert client.delete("/sites/ebay", headers=auth_header()).status_code == 200
    assert client.post("/sites/connect", json={"site_id": "etsy"}, headers=auth_header()).status_code == 200
    connected = client.get("/sites/connected", headers=auth_header()).json()
    assert {c["site_id"] for c in connected} == {"facebook", "etsy"}


def test_connect_pro_user_has_no_site_limit(client, make_user, monkeypatch):
    monkeypatch.setattr(config, "MAX_FREE_SITES", 1)
    make_user("user_1", plan=PlanType.PRO)
    for site_id in ("facebook", "ebay", "etsy"):
        assert client.post("/sites/connect", json={"site_id": site_id}, headers=auth_header()).status_code == 200


def test_connect_disabled_site(client, make_user):
    make_user("user_1")
    assert client.post("/sites/connect", json={"site_id": "amazon"}, headers=auth_header()).status_code == 404


def test_extension_sync(client, make_user, connect):
    make_user("user_1")
    connect("user_1", "facebook")
    payload = {
        "siteId": "facebook",
        "listings": [
            {"title": "Desk", "price": "£30", "url": "https://www.facebook.com/marketplace/item/9"},
        ],
    }
    first = client.post("/extension/sync", json=payload, headers=auth_header()).json()
    second = client.post("/extension/sync", json=payload, headers=auth_header()).json()
    assert first == {"success": True, "message": "Sync successful", "newItems": 1}
    assert second["newItems"] == 0


def test_extension_sync_requires_connection(client, make_user):
    make_user("user_1")
    resp = client.post("/extension/sync", json={"siteId": "ebay", "listings": []}, headers=auth_header())
    assert resp.status_code == 400


def test_stripe_webhook_route(client, db):
    payload = json.dumps(checkout_event(user_id="user_1")).encode()
    resp = client.post("/webhooks/stripe", content=payload, headers={"stripe-signature": stripe_signature(payload)})
    assert resp.status_code == 200
    assert resp.json()["received"] is True
    status = client.get("/subscription/status", headers=auth_header()).json()
    assert status["isPro"] is True
    assert status["planType"] == "pro"


def test_stripe_webhook_bad_signature(client):
    payload = json.dumps(checkout_event()).encode()
    resp = client.post("/webhooks/stripe", content=payload, headers={"stripe-signature": "t=1,v1=00"})
    assert resp.status_code == 400


@pytest.mark.parametrize("body", [{"title": None}, {"title": ""}, {"status": None}])
def test_patch_cannot_clear_required_fields(client, db, make_user, body):
    make_user("user_1")
    created = client.post("/listings", json={"site_id": "ebay", "title": "Bike"}, headers=auth_header()).json()
    resp = client.patch(f"/listings/{created['id']}", json=body, headers=auth_header())
    assert resp.status_code == 422
    assert client.get(f"/listings/{created['id']}", headers=auth_header()).json()["title"] == "Bike"
