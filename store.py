"""Snapshot store contract shared by the SQLite and Airtable backends."""

from datetime import date
from typing import Iterable, Optional, Protocol

from models import DailyStat, ListingRecord


class StoreError(Exception):
    """Base class for persistence failures."""


class StoreReadError(StoreError):
    """A read against the backend failed or is not supported."""


class StoreWriteError(StoreError):
    """A write against the backend failed. Earlier writes are not rolled back."""


class Store(Protocol):
    def get_all_records(self) -> list[ListingRecord]: ...

    def get_active_keys(self) -> set[str]: ...

    def insert_batch(self, records: Iterable[ListingRecord]) -> None: ...

    def update_fields(self, key: str, fields: dict) -> None: ...

    def upsert_daily_stat(self, stat_date: date, new_count: int,
                          sold_count: int, total_active: int) -> None: ...

    def get_daily_stats(self, limit: int = 30) -> list[DailyStat]: ...


def build_store(settings: Optional[dict] = None) -> Store:
    """Instantiate the backend named by the ``store_backend`` setting."""
    settings = settings or {}
    backend = (settings.get("store_backend") or "sqlite").strip().lower()

    if backend == "airtable":
        from airtable import AirtableStore
        from config import AirtableConfig
        return AirtableStore(AirtableConfig.from_env())
    if backend == "sqlite":
        from db import SqliteStore
        return SqliteStore()
    raise ValueError(f"Unknown store backend: {backend}")
