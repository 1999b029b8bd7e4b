"""FastAPI dashboard API for the Realtor Listing Tracker."""

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel

import db
import scheduler
from aggregator import AGE_BUCKET_DAYS, bucket_for, compute_stats
from config import SETTINGS_PASSWORD
from store import Store, StoreError, build_store
from views import SORT_OPTIONS, filter_listings, recently_added, sort_listings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    db.init_db()
    if db.get_setting("scheduler_enabled", False):
        scheduler.start_scheduler()
        if db.get_db_stats()["total_sync_runs"] == 0:
            scheduler.trigger_now()
    yield
    scheduler.stop_scheduler(disable=False)


app = FastAPI(title="Realtor Listing Tracker", lifespan=lifespan)
settings_auth = HTTPBasic(auto_error=False)


def get_store() -> Store:
    return build_store(db.get_all_settings())


def require_settings_auth(credentials: Optional[HTTPBasicCredentials] = Depends(settings_auth)) -> None:
    """Protect settings APIs when SETTINGS_PASSWORD is configured."""
    if not SETTINGS_PASSWORD:
        return

    if not credentials or not secrets.compare_digest(credentials.password, SETTINGS_PASSWORD):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Settings authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )


def _records(store: Store):
    try:
        return store.get_all_records()
    except StoreError as e:
        logger.error(f"Failed to load listings: {e}")
        raise HTTPException(status_code=502, detail=str(e))


# ── API: Stats ─────────────────────────────────────────────────

@app.get("/api/stats")
async def api_stats(store: Store = Depends(get_store)):
    stats = compute_stats(_records(store), date.today())
    return {**stats.summary(), "last_run": db.get_db_stats()["last_run"]}


@app.get("/api/daily-stats")
async def api_daily_stats(limit: int = 30, store: Store = Depends(get_store)):
    try:
        daily = store.get_daily_stats(limit)
    except StoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"stats": [d.to_dict() for d in daily]}


# ── API: Listings ──────────────────────────────────────────────

@app.get("/api/listings")
async def api_listings(city: Optional[str] = None, postal: Optional[str] = None,
                       sort_by: str = "date_desc", active_only: bool = True,
                       store: Store = Depends(get_store)):
    if sort_by not in SORT_OPTIONS:
        raise HTTPException(status_code=400, detail=f"sort_by must be one of {', '.join(SORT_OPTIONS)}")
    records = _records(store)
    if active_only:
        records = [r for r in records if r.is_active]
    records = sort_listings(filter_listings(records, city=city, postal_prefix=postal), sort_by)
    return {"count": len(records), "listings": [r.to_dict() for r in records]}


@app.get("/api/listings/recent")
async def api_recent_listings(store: Store = Depends(get_store)):
    records = recently_added([_records(store)], date.today())
    return {"count": len(records), "listings": [r.to_dict() for r in records]}


@app.get("/api/listings/by-age")
async def api_listings_by_age(days: Optional[int] = None, store: Store = Depends(get_store)):
    stats = compute_stats(_records(store), date.today())
    if days is not None:
        bucket = bucket_for(stats, days)
        if bucket is None:
            raise HTTPException(status_code=400, detail=f"days must be one of {list(AGE_BUCKET_DAYS)}")
        return {"days": days, "count": len(bucket), "listings": [r.to_dict() for r in bucket]}
    return {
        str(n): {"count": len(bucket_for(stats, n)), "listings": [r.to_dict() for r in bucket_for(stats, n)]}
        for n in AGE_BUCKET_DAYS
    }


@app.get("/api/listings/{key}")
async def api_listing(key: str, store: Store = Depends(get_store)):
    for record in _records(store):
        if record.key == key:
            return record.to_dict()
    raise HTTPException(status_code=404, detail="Listing not found")


# ── API: Settings ─────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings(_: None = Depends(require_settings_auth)):
    return db.get_all_settings()


class SettingsUpdate(BaseModel):
    sync_interval_hours: Optional[float] = None
    store_backend: Optional[str] = None
    webhook_enabled: Optional[bool] = None
    webhook_url: Optional[str] = None
    webhook_provider: Optional[str] = None
    webhook_events: Optional[list[str]] = None


@app.put("/api/settings")
async def api_update_settings(data: SettingsUpdate, _: None = Depends(require_settings_auth)):
    updated = data.model_dump(exclude_none=True)
    if updated.get("store_backend") not in (None, "sqlite", "airtable"):
        raise HTTPException(status_code=400, detail="store_backend must be 'sqlite' or 'airtable'")
    for key, value in updated.items():
        db.set_setting(key, value)

    if "sync_interval_hours" in updated and scheduler.get_status()["running"]:
        scheduler.start_scheduler(updated["sync_interval_hours"])

    return {"updated": updated}


# ── API: Scheduler ─────────────────────────────────────────────

@app.get("/api/scheduler/status")
async def api_scheduler_status():
    return scheduler.get_status()


@app.post("/api/scheduler/start")
async def api_scheduler_start(_: None = Depends(require_settings_auth)):
    interval = db.get_setting("sync_interval_hours", 1)
    scheduler.start_scheduler(interval)
    return scheduler.get_status()


@app.post("/api/scheduler/stop")
async def api_scheduler_stop(_: None = Depends(require_settings_auth)):
    scheduler.stop_scheduler()
    return scheduler.get_status()


@app.post("/api/scheduler/trigger")
async def api_scheduler_trigger(_: None = Depends(require_settings_auth)):
    result = scheduler.trigger_now()
    if "error" in result:
        raise HTTPException(status_code=409, detail=result["error"])
    return result
