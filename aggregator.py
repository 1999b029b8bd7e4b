"""Read-side statistics over the reconciled listing set."""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from models import ListingRecord, ListingStatus, Stats, TransactionKind
from parsing import normalize_date

AGE_BUCKET_DAYS = (7, 30, 90, 365)


def _today(now: Union[date, datetime, str, None]) -> date:
    if now is None:
        return date.today()
    return normalize_date(now)


def new_last_n_days(records: Iterable[ListingRecord], n: int, now=None) -> int:
    """Listings first seen on or after ``today - n`` days."""
    cutoff = _today(now) - timedelta(days=n)
    return sum(1 for r in records if r.first_seen and r.first_seen >= cutoff)


def older_than(records: Iterable[ListingRecord], days: int, now=None) -> list[ListingRecord]:
    """Active listings whose listing date is at least ``days`` old, oldest first."""
    cutoff = _today(now) - timedelta(days=days)
    aged = [r for r in records if r.is_active and r.listing_date and r.listing_date <= cutoff]
    aged.sort(key=lambda r: (r.listing_date, r.key))
    return aged


def age_buckets(records: Iterable[ListingRecord], now=None) -> dict[int, list[ListingRecord]]:
    records = list(records)
    return {days: older_than(records, days, now) for days in AGE_BUCKET_DAYS}


def compute_stats(records: Iterable[ListingRecord], now=None) -> Stats:
    records = list(records)
    today = _today(now)
    active = [r for r in records if r.is_active]
    buckets = age_buckets(active, today)

    return Stats(
        as_of=today,
        new_today=sum(1 for r in records if r.first_seen == today),
        new_last_7_days=new_last_n_days(records, 7, today),
        new_last_7_weeks=new_last_n_days(records, 49, today),
        new_last_30_days=new_last_n_days(records, 30, today),
        new_last_90_days=new_last_n_days(records, 90, today),
        new_last_365_days=new_last_n_days(records, 365, today),
        sold_today=sum(1 for r in records
                       if r.status == ListingStatus.SOLD and r.last_seen == today),
        total_active=len(active),
        sale_count=sum(1 for r in active if r.transaction_kind == TransactionKind.SALE),
        rent_count=sum(1 for r in active if r.transaction_kind == TransactionKind.RENT),
        older_than_7_days=buckets[7],
        older_than_30_days=buckets[30],
        older_than_90_days=buckets[90],
        older_than_365_days=buckets[365],
    )


def bucket_for(stats: Stats, days: int) -> Optional[list[ListingRecord]]:
    return {
        7: stats.older_than_7_days,
        30: stats.older_than_30_days,
        90: stats.older_than_90_days,
        365: stats.older_than_365_days,
    }.get(days)
