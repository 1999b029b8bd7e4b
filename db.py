"""SQLite persistence for the Realtor Listing Tracker."""

import json
import logging
import sqlite3
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from config import DB_PATH, DEFAULT_SETTINGS
from models import (
    DESCRIPTIVE_FIELDS,
    DailyStat,
    ListingRecord,
    ListingStatus,
    TransactionKind,
)
from parsing import normalize_date
from store import StoreReadError, StoreWriteError

logger = logging.getLogger(__name__)

LISTING_COLUMNS = (
    "key", "price", "address", "transaction_kind", "first_seen", "last_seen", "status",
) + DESCRIPTIVE_FIELDS

_DATE_COLUMNS = {"first_seen", "last_seen", "listed_date"}


def get_conn(db_path: Optional[str] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db(db_path: Optional[str] = None):
    conn = get_conn(db_path)
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS listings (
            key              TEXT PRIMARY KEY,
            price            INTEGER NOT NULL DEFAULT 0,
            address          TEXT NOT NULL DEFAULT '',
            transaction_kind TEXT NOT NULL DEFAULT 'sale',
            first_seen       TEXT NOT NULL,
            last_seen        TEXT NOT NULL,
            status           TEXT NOT NULL DEFAULT 'active',
            bedrooms         TEXT DEFAULT '',
            bathrooms        TEXT DEFAULT '',
            parking          TEXT DEFAULT '',
            sqft             TEXT DEFAULT '',
            lot_size         TEXT DEFAULT '',
            property_type    TEXT DEFAULT '',
            url              TEXT DEFAULT '',
            listed_date      TEXT,
            street_address   TEXT DEFAULT '',
            city             TEXT DEFAULT '',
            province         TEXT DEFAULT '',
            postal_code      TEXT DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS daily_stats (
            date            TEXT PRIMARY KEY,
            new_listings    INTEGER DEFAULT 0,
            sold_count      INTEGER DEFAULT 0,
            total_active    INTEGER DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS sync_runs (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            started_at      TEXT NOT NULL,
            finished_at     TEXT,
            backend         TEXT,
            batches         INTEGER DEFAULT 0,
            listings_found  INTEGER DEFAULT 0,
            new_listings    INTEGER DEFAULT 0,
            sold_listings   INTEGER DEFAULT 0,
            errors          INTEGER DEFAULT 0,
            degraded        INTEGER DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS settings (
            key             TEXT PRIMARY KEY,
            value           TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_listings_status ON listings(status);
        CREATE INDEX IF NOT EXISTS idx_listings_first_seen ON listings(first_seen);
        CREATE INDEX IF NOT EXISTS idx_listings_city ON listings(city);
    """)
    for key, value in DEFAULT_SETTINGS.items():
        conn.execute(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
    conn.commit()
    conn.close()


# ── Row conversion ─────────────────────────────────────────────

def _to_column(name: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if name in _DATE_COLUMNS:
        return value.isoformat() if isinstance(value, date) else value
    return value


def record_to_row(record: ListingRecord) -> tuple:
    return tuple(_to_column(name, getattr(record, name)) for name in LISTING_COLUMNS)


def row_to_record(row: sqlite3.Row) -> ListingRecord:
    data = dict(row)
    return ListingRecord(
        key=data["key"],
        price=data["price"] or 0,
        address=data["address"] or "",
        transaction_kind=TransactionKind(data["transaction_kind"]),
        first_seen=normalize_date(data["first_seen"]),
        last_seen=normalize_date(data["last_seen"]),
        status=ListingStatus(data["status"]),
        listed_date=normalize_date(data["listed_date"]),
        **{name: data[name] or "" for name in DESCRIPTIVE_FIELDS if name != "listed_date"},
    )


# ── Listings ───────────────────────────────────────────────────

def get_all_listings(conn: Optional[sqlite3.Connection] = None) -> list[ListingRecord]:
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    rows = conn.execute("SELECT * FROM listings ORDER BY first_seen, key").fetchall()
    result = [row_to_record(row) for row in rows]
    if close:
        conn.close()
    return result


def get_listing(key: str, conn: Optional[sqlite3.Connection] = None) -> Optional[ListingRecord]:
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    row = conn.execute("SELECT * FROM listings WHERE key = ?", (key,)).fetchone()
    result = row_to_record(row) if row else None
    if close:
        conn.close()
    return result


def get_active_keys(conn: Optional[sqlite3.Connection] = None) -> set[str]:
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    rows = conn.execute(
        "SELECT key FROM listings WHERE status = ?", (ListingStatus.ACTIVE.value,)
    ).fetchall()
    result = {row["key"] for row in rows}
    if close:
        conn.close()
    return result


def insert_listings(records: Iterable[ListingRecord],
                    conn: Optional[sqlite3.Connection] = None) -> int:
    """Insert new listings. Keys already present are left untouched."""
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    placeholders = ", ".join("?" for _ in LISTING_COLUMNS)
    cursor = conn.executemany(
        f"INSERT OR IGNORE INTO listings ({', '.join(LISTING_COLUMNS)}) VALUES ({placeholders})",
        [record_to_row(record) for record in records],
    )
    conn.commit()
    inserted = cursor.rowcount
    if close:
        conn.close()
    return inserted


def update_listing(key: str, fields: dict, conn: Optional[sqlite3.Connection] = None) -> bool:
    """Update selected columns of one listing. Returns False if the key is unknown."""
    unknown = set(fields) - set(LISTING_COLUMNS)
    if unknown or "key" in fields:
        raise ValueError(f"Cannot update listing columns: {sorted(unknown | ({'key'} & set(fields)))}")
    if not fields:
        return False

    close = False
    if conn is None:
        conn = get_conn()
        close = True

    assignments = ", ".join(f"{name} = ?" for name in fields)
    params = [_to_column(name, value) for name, value in fields.items()]
    cursor = conn.execute(f"UPDATE listings SET {assignments} WHERE key = ?", (*params, key))
    conn.commit()
    updated = cursor.rowcount > 0
    if close:
        conn.close()
    return updated


# ── Daily stats ────────────────────────────────────────────────

def upsert_daily_stat(stat: DailyStat, conn: Optional[sqlite3.Connection] = None):
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    conn.execute("""
        INSERT INTO daily_stats (date, new_listings, sold_count, total_active)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(date) DO UPDATE SET
            new_listings = excluded.new_listings,
            sold_count = excluded.sold_count,
            total_active = excluded.total_active
    """, (stat.date.isoformat(), stat.new_listings, stat.sold_count, stat.total_active))
    conn.commit()
    if close:
        conn.close()


def get_daily_stats(limit: int = 30, conn: Optional[sqlite3.Connection] = None) -> list[DailyStat]:
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    rows = conn.execute(
        "SELECT * FROM daily_stats ORDER BY date DESC LIMIT ?", (limit,)
    ).fetchall()
    result = [
        DailyStat(
            date=normalize_date(row["date"]),
            new_listings=row["new_listings"] or 0,
            sold_count=row["sold_count"] or 0,
            total_active=row["total_active"] or 0,
        )
        for row in rows
    ]
    if close:
        conn.close()
    return result


# ── Sync runs ──────────────────────────────────────────────────

def start_sync_run(backend: str = "", conn: Optional[sqlite3.Connection] = None) -> int:
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    now = datetime.now(timezone.utc).isoformat()
    cursor = conn.execute(
        "INSERT INTO sync_runs (started_at, backend) VALUES (?, ?)",
        (now, backend)
    )
    conn.commit()
    run_id = cursor.lastrowid
    if close:
        conn.close()
    return run_id


def finish_sync_run(run_id: int, batches: int, listings_found: int, new_listings: int,
                    sold_listings: int, errors: int, degraded: bool,
                    conn: Optional[sqlite3.Connection] = None):
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    now = datetime.now(timezone.utc).isoformat()
    conn.execute("""
        UPDATE sync_runs SET finished_at = ?, batches = ?, listings_found = ?,
               new_listings = ?, sold_listings = ?, errors = ?, degraded = ?
        WHERE id = ?
    """, (now, batches, listings_found, new_listings, sold_listings, errors,
          int(degraded), run_id))
    conn.commit()
    if close:
        conn.close()


def get_db_stats(conn: Optional[sqlite3.Connection] = None) -> dict:
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    stats = {}
    stats["total_listings"] = conn.execute("SELECT COUNT(*) as c FROM listings").fetchone()["c"]
    stats["active_listings"] = conn.execute(
        "SELECT COUNT(*) as c FROM listings WHERE status = 'active'"
    ).fetchone()["c"]
    stats["sold_listings"] = conn.execute(
        "SELECT COUNT(*) as c FROM listings WHERE status = 'sold'"
    ).fetchone()["c"]
    stats["total_sync_runs"] = conn.execute("SELECT COUNT(*) as c FROM sync_runs").fetchone()["c"]

    last_run = conn.execute(
        "SELECT * FROM sync_runs ORDER BY id DESC LIMIT 1"
    ).fetchone()
    stats["last_run"] = dict(last_run) if last_run else None

    if close:
        conn.close()
    return stats


# ── Settings ───────────────────────────────────────────────────

def get_setting(key: str, default: Any = None, conn: Optional[sqlite3.Connection] = None) -> Any:
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    if close:
        conn.close()
    if row is None:
        return default
    return json.loads(row["value"])


def get_all_settings(conn: Optional[sqlite3.Connection] = None) -> dict:
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    rows = conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
    result = {row["key"]: json.loads(row["value"]) for row in rows}
    if close:
        conn.close()
    return result


def set_setting(key: str, value: Any, conn: Optional[sqlite3.Connection] = None):
    close = False
    if conn is None:
        conn = get_conn()
        close = True

    conn.execute(
        "INSERT INTO settings (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, json.dumps(value)),
    )
    conn.commit()
    if close:
        conn.close()


# ── Store adapter ──────────────────────────────────────────────

class SqliteStore:
    """Store backed by the local SQLite database. Each call uses its own connection."""

    name = "sqlite"

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DB_PATH
        init_db(self.db_path)

    def _conn(self) -> sqlite3.Connection:
        return get_conn(self.db_path)

    def get_all_records(self) -> list[ListingRecord]:
        try:
            conn = self._conn()
            try:
                return get_all_listings(conn=conn)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreReadError(f"Failed to read listings: {e}") from e

    def get_active_keys(self) -> set[str]:
        try:
            conn = self._conn()
            try:
                return get_active_keys(conn=conn)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreReadError(f"Failed to read active keys: {e}") from e

    def insert_batch(self, records: Iterable[ListingRecord]) -> None:
        records = list(records)
        if not records:
            return
        try:
            conn = self._conn()
            try:
                inserted = insert_listings(records, conn=conn)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreWriteError(f"Failed to insert {len(records)} listings: {e}") from e
        if inserted < len(records):
            logger.warning(f"Skipped {len(records) - inserted} inserts for keys already stored")

    def update_fields(self, key: str, fields: dict) -> None:
        try:
            conn = self._conn()
            try:
                updated = update_listing(key, fields, conn=conn)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreWriteError(f"Failed to update listing {key}: {e}") from e
        if not updated:
            raise StoreWriteError(f"Listing {key} not found")

    def upsert_daily_stat(self, stat_date: date, new_count: int,
                          sold_count: int, total_active: int) -> None:
        stat = DailyStat(stat_date, new_count, sold_count, total_active)
        try:
            conn = self._conn()
            try:
                upsert_daily_stat(stat, conn=conn)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreWriteError(f"Failed to write daily stats for {stat_date}: {e}") from e

    def get_daily_stats(self, limit: int = 30) -> list[DailyStat]:
        try:
            conn = self._conn()
            try:
                return get_daily_stats(limit, conn=conn)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreReadError(f"Failed to read daily stats: {e}") from e
