"""Background scheduler and shared sync logic."""

import logging
import threading
from datetime import date, datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

import db
from config import ScraperConfig
from models import ReconcileResult
from notifier import send_webhook_event
from parsing import normalize_date, normalize_key
from reconciler import Reconciler, accumulate
from scraper import RealtorScraper
from store import Store, StoreReadError, build_store

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None
_lock = threading.Lock()
_last_result: Optional[dict] = None
_is_running = False


def _emit_event(event_type: str, payload: dict, settings: dict):
    try:
        send_webhook_event(event_type, payload, settings)
    except Exception as e:
        logger.warning(f"Webhook send failed for event={event_type}: {e}")


def _probe_active_keys(store: Store) -> Optional[set[str]]:
    """Active keys from the store, or None to run the cycle in degraded mode."""
    try:
        return store.get_active_keys()
    except StoreReadError as e:
        logger.warning(f"Active keys unavailable, sold detection will be skipped: {e}")
        return None


def run_sync(store: Optional[Store] = None, scraper=None, cycle_date=None) -> dict:
    """Run one scrape-and-reconcile cycle. Shared between CLI and scheduler.

    Returns a summary dict with counts, or ``{"error": ...}``.
    """
    global _last_result, _is_running

    if _is_running:
        return {"error": "Sync already in progress"}

    _is_running = True
    settings = {}
    run_id = None
    try:
        db.init_db()
        settings = db.get_all_settings()
        store = store or build_store(settings)
        scraper = scraper or RealtorScraper(ScraperConfig.from_env())
        cycle_date = normalize_date(cycle_date) or date.today()

        run_id = db.start_sync_run(backend=getattr(store, "name", type(store).__name__))
        prior_active = _probe_active_keys(store)
        reconciler = Reconciler(store)
        totals = ReconcileResult(cycle_date=cycle_date, sold_detection_skipped=prior_active is None)
        new_records = {}
        batches = 0
        found = 0

        for batch, is_last in scraper.iter_batches():
            batches += 1
            found += len(batch)
            active = prior_active
            if is_last and not getattr(scraper, "complete", True):
                logger.warning(
                    f"Scrape incomplete ({', '.join(scraper.failed_segments)}); "
                    f"skipping sold detection for {cycle_date}"
                )
                active = None
            logger.info(f"Reconciling batch {batches} ({len(batch)} listings)")
            result = reconciler.reconcile(batch, cycle_date, is_last, active)
            accumulate(totals, result)
            inserted = set(result.inserted_keys)
            for record in batch:
                key = normalize_key(record.key)
                if key in inserted:
                    new_records.setdefault(key, record)

        if batches == 0:
            raise RuntimeError("No listings found. The API may be blocking requests.")

        db.finish_sync_run(run_id, batches, found, totals.inserted, totals.sold,
                           errors=0, degraded=totals.sold_detection_skipped)

        result = {
            "cycle_date": cycle_date.isoformat(),
            "batches": batches,
            "found": found,
            "new": totals.inserted,
            "touched": totals.touched,
            "relisted": totals.relisted,
            "sold": totals.sold,
            "rejected": totals.rejected,
            "sold_detection_skipped": totals.sold_detection_skipped,
            "total_active": totals.daily_stat.total_active if totals.daily_stat else None,
            "finished_at": datetime.now(timezone.utc).isoformat(),
        }
        _last_result = result
        _emit_event("sync_completed", result, settings)

        batch_size = int(settings.get("webhook_new_listings_batch_size", 5))
        if new_records:
            _emit_event("new_listings_detected", {
                "count": len(new_records),
                "listings": [
                    {"key": key, "address": r.address, "price": r.price, "url": r.url}
                    for key, r in list(new_records.items())[:batch_size]
                ],
                "finished_at": result["finished_at"],
            }, settings)
        logger.info(f"Sync done: {result}")
        return result

    except Exception as e:
        logger.error(f"Sync failed: {e}")
        if run_id is not None:
            try:
                db.finish_sync_run(run_id, 0, 0, 0, 0, errors=1, degraded=False)
            except Exception as record_error:
                logger.warning(f"Could not record failed run {run_id}: {record_error}")
        failure = {
            "error": str(e),
            "finished_at": datetime.now(timezone.utc).isoformat(),
        }
        _last_result = failure
        _emit_event("sync_failed", failure, settings)
        return failure
    finally:
        _is_running = False


def _sync_job():
    """APScheduler job wrapper."""
    logger.info("Scheduled sync starting...")
    run_sync()


def start_scheduler(interval_hours: Optional[float] = None):
    """Start the background scheduler."""
    global _scheduler

    with _lock:
        if _scheduler and _scheduler.running:
            _scheduler.shutdown(wait=False)

        if interval_hours is None:
            interval_hours = db.get_setting("sync_interval_hours", 1)

        _scheduler = BackgroundScheduler()
        _scheduler.add_job(
            _sync_job,
            "interval",
            hours=interval_hours,
            id="sync_job",
            replace_existing=True,
        )
        _scheduler.start()
        db.set_setting("scheduler_enabled", True)
        logger.info(f"Scheduler started: syncing every {interval_hours}h")


def stop_scheduler(disable: bool = True):
    """Stop the background scheduler.

    Set disable=False to stop only in-memory scheduling without changing the
    persisted scheduler setting.
    """
    global _scheduler

    with _lock:
        if _scheduler and _scheduler.running:
            _scheduler.shutdown(wait=False)
            _scheduler = None
        if disable:
            db.set_setting("scheduler_enabled", False)
        logger.info("Scheduler stopped")


def trigger_now():
    """Trigger an immediate sync (runs in a background thread)."""
    if _is_running:
        return {"error": "Sync already in progress"}
    thread = threading.Thread(target=run_sync, daemon=True)
    thread.start()
    return {"status": "triggered"}


def get_status() -> dict:
    """Get scheduler status."""
    running = _scheduler is not None and _scheduler.running

    status = {
        "running": running,
        "syncing": _is_running,
        "last_result": _last_result,
    }

    if running:
        job = _scheduler.get_job("sync_job")
        if job and job.next_run_time:
            status["next_run"] = job.next_run_time.isoformat()
        status["interval_hours"] = db.get_setting("sync_interval_hours", 1)

    return status
