"""Incremental reconciliation of scraped batches against the snapshot store.

A *cycle* is one complete scrape, delivered as one or more batches. Each
batch is applied as soon as it arrives (insert / touch / relist), but sold
detection waits for the final batch: only then is the union of every key
observed during the cycle known, and only keys absent from that union are
marked sold. The reconciler keeps an in-memory index of the store, loaded
once per cycle and kept in step with every write, so the daily counters can
be derived without a second full read.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Iterable, Optional

from models import DailyStat, ListingRecord, ListingStatus, ReconcileResult
from parsing import normalize_date, normalize_key, parse_price
from store import Store, StoreError

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(self, store: Store):
        self.store = store
        self._cycle_date: Optional[date] = None
        self._index: Optional[dict[str, ListingRecord]] = None
        self._observed: set[str] = set()
        self._baseline_active: set[str] = set()

    @property
    def cycle_date(self) -> Optional[date]:
        return self._cycle_date

    @property
    def observed_keys(self) -> frozenset[str]:
        return frozenset(self._observed)

    def abandon(self):
        """Drop the in-flight cycle. Writes already applied stay; nothing is marked sold."""
        if self._cycle_date is not None:
            logger.warning(
                f"Abandoning cycle {self._cycle_date} after {len(self._observed)} observed keys; "
                f"sold detection skipped"
            )
        self._reset()

    def _reset(self):
        self._cycle_date = None
        self._index = None
        self._observed = set()
        self._baseline_active = set()

    def _ensure_index(self) -> dict[str, ListingRecord]:
        if self._index is None:
            self._index = {record.key: record for record in self.store.get_all_records()}
            logger.debug(f"Loaded {len(self._index)} stored listings")
        return self._index

    def reconcile(self, current_batch: Iterable[ListingRecord], cycle_date,
                  is_final_batch: bool,
                  prior_active_keys: Optional[Iterable[str]] = None) -> ReconcileResult:
        """Apply one batch of the cycle dated ``cycle_date``.

        Pass ``prior_active_keys=None`` when the store could not report its
        active keys; the batch is then applied as insert-or-touch and sold
        detection is skipped (``sold_detection_skipped`` is set).
        """
        cycle_date = normalize_date(cycle_date)
        if cycle_date is None:
            raise ValueError("cycle_date is required")

        if self._cycle_date is not None and self._cycle_date != cycle_date:
            self.abandon()
        self._cycle_date = cycle_date

        degraded = prior_active_keys is None
        prior_active: set[str] = set()
        if not degraded:
            prior_active = {k for k in (normalize_key(k) for k in prior_active_keys) if k}
            self._baseline_active |= prior_active

        result = ReconcileResult(
            cycle_date=cycle_date,
            is_final_batch=is_final_batch,
            sold_detection_skipped=degraded,
        )

        try:
            index = self._ensure_index()
            self._apply_batch(current_batch, cycle_date, index, degraded, result)

            if is_final_batch:
                if degraded:
                    logger.warning(
                        f"Active keys unavailable for cycle {cycle_date}; "
                        f"sold detection deferred to the next cycle"
                    )
                else:
                    self._mark_sold(cycle_date, index, result)
                result.daily_stat = self._write_daily_stat(cycle_date, index)
        except StoreError:
            # The store may now hold writes the index doesn't; reload on the next batch.
            self._index = None
            raise

        if is_final_batch:
            logger.info(
                f"Cycle {cycle_date} complete: {len(self._observed)} observed, "
                f"{result.sold} sold"
            )
            self._reset()
        return result

    def _apply_batch(self, current_batch: Iterable[ListingRecord], cycle_date: date,
                     index: dict[str, ListingRecord], degraded: bool,
                     result: ReconcileResult):
        inserts: list[ListingRecord] = []
        updates: list[tuple[str, dict]] = []
        batch_keys: set[str] = set()

        for incoming in current_batch:
            key = normalize_key(getattr(incoming, "key", None))
            if key is None:
                result.rejected += 1
                logger.warning(f"Skipping listing without a key: {incoming!r}")
                continue
            if key in batch_keys:
                logger.debug(f"Duplicate key {key} in batch, keeping first occurrence")
                continue
            batch_keys.add(key)

            recount = key not in self._observed
            existing = index.get(key)
            if existing is None:
                inserts.append(replace(
                    incoming,
                    key=key,
                    price=parse_price(incoming.price),
                    first_seen=cycle_date,
                    last_seen=cycle_date,
                    status=ListingStatus.ACTIVE,
                ))
                continue

            fields = incoming.refreshable_fields()
            fields["price"] = parse_price(incoming.price)
            fields["last_seen"] = _last_seen_for(existing, cycle_date)
            # Stored status, not the caller's active-key set, decides touch vs relist.
            was_active = existing.is_active
            if not was_active:
                fields["status"] = ListingStatus.ACTIVE
            if recount:
                if was_active or degraded:
                    result.touched += 1
                else:
                    result.relisted += 1
            updates.append((key, fields))

        if inserts:
            self.store.insert_batch(inserts)
            for record in inserts:
                index[record.key] = record
                self._observed.add(record.key)
                result.inserted_keys.append(record.key)
            result.inserted = len(inserts)

        for key, fields in updates:
            self.store.update_fields(key, fields)
            index[key] = replace(index[key], **fields)
            self._observed.add(key)

        logger.debug(
            f"Batch for {cycle_date}: +{result.inserted} new, {result.touched} touched, "
            f"{result.relisted} relisted, {result.rejected} rejected"
        )

    def _mark_sold(self, cycle_date: date, index: dict[str, ListingRecord],
                   result: ReconcileResult):
        active_now = {key for key, record in index.items() if record.is_active}
        candidates = (self._baseline_active | active_now) - self._observed

        for key in sorted(candidates):
            existing = index.get(key)
            if existing is None:
                logger.warning(f"Active key {key} has no stored listing; not marking sold")
                continue
            fields = {"status": ListingStatus.SOLD, "last_seen": _last_seen_for(existing, cycle_date)}
            self.store.update_fields(key, fields)
            index[key] = replace(existing, **fields)
            result.sold_keys.append(key)
        result.sold = len(result.sold_keys)

    def _write_daily_stat(self, cycle_date: date, index: dict[str, ListingRecord]) -> DailyStat:
        # Derived from store state, so re-running a cycle rewrites the same numbers.
        records = index.values()
        stat = DailyStat(
            date=cycle_date,
            new_listings=sum(1 for r in records if r.first_seen == cycle_date),
            sold_count=sum(1 for r in records
                           if r.status == ListingStatus.SOLD and r.last_seen == cycle_date),
            total_active=sum(1 for r in records if r.is_active),
        )
        self.store.upsert_daily_stat(stat.date, stat.new_listings, stat.sold_count, stat.total_active)
        return stat

    def run_cycle(self, batches: Iterable[tuple[list[ListingRecord], bool]], cycle_date,
                  prior_active_keys: Optional[Iterable[str]] = None) -> ReconcileResult:
        """Reconcile every ``(batch, is_last)`` pair and return the cycle totals.

        If the iterable ends without a batch flagged last, the cycle is
        abandoned and no sold detection happens.
        """
        cycle_date = normalize_date(cycle_date)
        prior = None if prior_active_keys is None else set(prior_active_keys)
        totals = ReconcileResult(cycle_date=cycle_date, sold_detection_skipped=prior is None)

        for batch, is_last in batches:
            batch_result = self.reconcile(batch, cycle_date, is_last, prior)
            accumulate(totals, batch_result)
            if is_last:
                return totals

        self.abandon()
        return totals


def _last_seen_for(existing: ListingRecord, cycle_date: date) -> date:
    if existing.first_seen and existing.first_seen > cycle_date:
        return existing.first_seen
    return cycle_date


def accumulate(totals: ReconcileResult, batch: ReconcileResult):
    totals.inserted += batch.inserted
    totals.touched += batch.touched
    totals.relisted += batch.relisted
    totals.sold += batch.sold
    totals.rejected += batch.rejected
    totals.inserted_keys.extend(batch.inserted_keys)
    totals.sold_keys.extend(batch.sold_keys)
    totals.is_final_batch = batch.is_final_batch
    totals.sold_detection_skipped = totals.sold_detection_skipped or batch.sold_detection_skipped
    if batch.daily_stat is not None:
        totals.daily_stat = batch.daily_stat
