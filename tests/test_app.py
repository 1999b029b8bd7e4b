from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

import app as app_module
import scheduler
from app import app, get_store
from conftest import make_listing
from models import ListingStatus

TODAY = date.today()


@pytest.fixture
def client(store):
    store.insert_batch([
        make_listing("A", price=650000, city="Ajax", postal_code="L1S1R6",
                     first_seen=TODAY, last_seen=TODAY),
        make_listing("B", price=420000, city="Ajax", postal_code="L1T2B4",
                     first_seen=TODAY - timedelta(days=40), last_seen=TODAY),
        make_listing("C", price=900000, first_seen=TODAY - timedelta(days=100),
                     last_seen=TODAY, status=ListingStatus.SOLD),
    ])
    app.dependency_overrides[get_store] = lambda: store
    # No context manager: the lifespan (and with it the scheduler) stays off.
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_stats(client):
    resp = client.get("/api/stats")

    assert resp.status_code == 200
    data = resp.json()
    assert data["new_today"] == 1
    assert data["sold_today"] == 1
    assert data["total_active"] == 2
    assert data["older_than_30_days_count"] == 1


def test_listings_filter_and_sort(client):
    resp = client.get("/api/listings", params={"postal": "l1", "sort_by": "price_asc"})

    assert resp.status_code == 200
    assert [item["key"] for item in resp.json()["listings"]] == ["B", "A"]


def test_listings_include_sold_on_request(client):
    resp = client.get("/api/listings", params={"active_only": "false"})
    assert resp.json()["count"] == 3


def test_listings_reject_unknown_sort(client):
    assert client.get("/api/listings", params={"sort_by": "bedrooms"}).status_code == 400


def test_recent_listings(client):
    resp = client.get("/api/listings/recent")
    assert [item["key"] for item in resp.json()["listings"]] == ["A"]


def test_listings_by_age(client):
    resp = client.get("/api/listings/by-age", params={"days": 30})
    assert resp.json()["count"] == 1
    assert resp.json()["listings"][0]["key"] == "B"

    everything = client.get("/api/listings/by-age").json()
    assert set(everything) == {"7", "30", "90", "365"}

    assert client.get("/api/listings/by-age", params={"days": 14}).status_code == 400


def test_single_listing(client):
    assert client.get("/api/listings/A").json()["city"] == "Ajax"
    assert client.get("/api/listings/nope").status_code == 404


def test_daily_stats(client, store):
    store.upsert_daily_stat(TODAY, 1, 1, 2)
    resp = client.get("/api/daily-stats")
    assert resp.json()["stats"] == [
        {"date": TODAY.isoformat(), "new_listings": 1, "sold_count": 1, "total_active": 2}
    ]


def test_settings_update(client):
    resp = client.put("/api/settings", json={"webhook_enabled": True, "webhook_provider": "discord"})
    assert resp.status_code == 200

    settings = client.get("/api/settings").json()
    assert settings["webhook_enabled"] is True
    assert settings["webhook_provider"] == "discord"


def test_settings_reject_unknown_backend(client):
    assert client.put("/api/settings", json={"store_backend": "postgres"}).status_code == 400


def test_settings_require_password_when_configured(client, monkeypatch):
    monkeypatch.setattr(app_module, "SETTINGS_PASSWORD", "hunter2")

    assert client.get("/api/settings").status_code == 401
    assert client.get("/api/settings", auth=("admin", "wrong")).status_code == 401
    assert client.get("/api/settings", auth=("admin", "hunter2")).status_code == 200


def test_trigger_conflict_while_syncing(client, monkeypatch):
    monkeypatch.setattr(scheduler, "_is_running", True)
    assert client.post("/api/scheduler/trigger").status_code == 409


def test_scheduler_status(client):
    assert client.get("/api/scheduler/status").json()["running"] is False
