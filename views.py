"""Filtering and sorting of listing sets for the dashboard and CLI."""

from datetime import date, timedelta
from typing import Iterable, Optional

from models import ListingRecord
from parsing import normalize_date, normalize_postal

SORT_OPTIONS = (
    "date_desc",
    "date_asc",
    "price_asc",
    "price_desc",
    "city",
    "postal",
)


def filter_listings(records: Iterable[ListingRecord], city: Optional[str] = None,
                    postal_prefix: Optional[str] = None) -> list[ListingRecord]:
    """Exact city match and case/space-insensitive postal-code prefix match."""
    prefix = normalize_postal(postal_prefix)
    result = []
    for record in records:
        if city and record.city != city:
            continue
        if prefix and not normalize_postal(record.postal_code).startswith(prefix):
            continue
        result.append(record)
    return result


def _date_key(record: ListingRecord) -> date:
    return record.listing_date or date.min


def _text_last(value: str) -> tuple:
    # Empty values sort after every non-empty one.
    return (value == "", value.lower())


def sort_listings(records: Iterable[ListingRecord], sort_by: str = "date_desc") -> list[ListingRecord]:
    records = list(records)
    if sort_by == "date_desc":
        return sorted(records, key=_date_key, reverse=True)
    if sort_by == "date_asc":
        return sorted(records, key=_date_key)
    if sort_by == "price_asc":
        return sorted(records, key=lambda r: r.price)
    if sort_by == "price_desc":
        return sorted(records, key=lambda r: r.price, reverse=True)
    if sort_by == "city":
        return sorted(records, key=lambda r: _text_last(r.city or ""))
    if sort_by == "postal":
        return sorted(records, key=lambda r: _text_last(normalize_postal(r.postal_code)))
    raise ValueError(f"Unknown sort option: {sort_by}")


def recently_added(collections: Iterable[Iterable[ListingRecord]], now=None,
                   days: int = 7) -> list[ListingRecord]:
    """Active listings from any collection listed within ``days``, newest first."""
    cutoff = (normalize_date(now) if now else date.today()) - timedelta(days=days)
    by_key: dict[str, ListingRecord] = {}
    for collection in collections:
        for record in collection:
            by_key.setdefault(record.key, record)

    recent = [
        r for r in by_key.values()
        if r.is_active and r.listing_date and r.listing_date >= cutoff
    ]
    return sorted(recent, key=_date_key, reverse=True)
