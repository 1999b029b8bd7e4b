"""Airtable-backed snapshot store."""

import logging
import time
from datetime import date
from typing import Iterable, Optional

import requests

from config import AirtableConfig
from models import DailyStat, ListingRecord, ListingStatus, TransactionKind
from parsing import normalize_key, parse_optional_date, parse_price
from store import StoreError, StoreReadError, StoreWriteError

logger = logging.getLogger(__name__)

# Airtable accepts at most 10 records per create/update request.
WRITE_CHUNK_SIZE = 10

FIELD_NAMES = {
    "key": "MLS_Number",
    "price": "Price",
    "address": "Address",
    "transaction_kind": "Type",
    "first_seen": "First_Seen",
    "last_seen": "Last_Seen",
    "status": "Status",
    "bedrooms": "Bedrooms",
    "bathrooms": "Bathrooms",
    "parking": "Parking",
    "sqft": "Sqft",
    "lot_size": "Lot_Size",
    "property_type": "Property_Type",
    "url": "URL",
    "listed_date": "Posted_Date",
    "street_address": "Street_Address",
    "city": "City",
    "province": "Province",
    "postal_code": "Postal_Code",
}
_ATTRIBUTES = {column: name for name, column in FIELD_NAMES.items()}


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def to_airtable_fields(fields: dict) -> dict:
    result = {}
    for name, value in fields.items():
        if name not in FIELD_NAMES:
            raise ValueError(f"Unknown listing field: {name}")
        if isinstance(value, (TransactionKind, ListingStatus)):
            value = value.value
        elif isinstance(value, date):
            value = value.isoformat()
        result[FIELD_NAMES[name]] = value
    return result


def from_airtable_fields(fields: dict) -> Optional[ListingRecord]:
    data = {_ATTRIBUTES[k]: v for k, v in fields.items() if k in _ATTRIBUTES}
    key = normalize_key(data.pop("key", None))
    if key is None:
        return None

    kind = str(data.pop("transaction_kind", "sale") or "sale").lower()
    status = str(data.pop("status", "active") or "active").lower()
    record = ListingRecord(
        key=key,
        price=parse_price(data.pop("price", 0)),
        transaction_kind=TransactionKind(kind) if kind in ("sale", "rent") else TransactionKind.SALE,
        status=ListingStatus(status) if status in ("active", "sold") else ListingStatus.ACTIVE,
        first_seen=parse_optional_date(data.pop("first_seen", None)),
        last_seen=parse_optional_date(data.pop("last_seen", None)),
        listed_date=parse_optional_date(data.pop("listed_date", None)),
    )
    for name, value in data.items():
        setattr(record, name, "" if value is None else str(value))
    return record


class AirtableStore:
    """Store backed by an Airtable base with Listings and Daily_Stats tables."""

    name = "airtable"

    def __init__(self, config: AirtableConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        })
        self._record_ids: dict[str, str] = {}

    def _delay(self):
        if self.config.request_delay:
            time.sleep(self.config.request_delay)

    def _request(self, method: str, table: str, error_cls: type[StoreError],
                 params=None, payload: Optional[dict] = None) -> dict:
        if not self.config.configured:
            raise error_cls("Airtable not configured")

        url = f"{self.config.api_url}/{self.config.base_id}/{table}"
        try:
            resp = self.session.request(method, url, params=params, json=payload,
                                        timeout=self.config.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise error_cls(f"Airtable {method} {table} failed: {e}") from e
        finally:
            self._delay()
        return data

    def _list(self, table: str, params: Optional[list] = None) -> list[dict]:
        records = []
        offset = None
        while True:
            page_params = list(params or [])
            if offset:
                page_params.append(("offset", offset))
            data = self._request("GET", table, StoreReadError, params=page_params)
            records.extend(data.get("records", []))
            offset = data.get("offset")
            if not offset:
                return records

    def _remember(self, raw: dict) -> Optional[ListingRecord]:
        record = from_airtable_fields(raw.get("fields", {}))
        if record is not None and raw.get("id"):
            self._record_ids[record.key] = raw["id"]
        return record

    def get_all_records(self) -> list[ListingRecord]:
        records = []
        for raw in self._list(self.config.listings_table):
            record = self._remember(raw)
            if record is None:
                logger.warning(f"Airtable row {raw.get('id')} has no MLS number, ignoring")
                continue
            records.append(record)
        return records

    def get_active_keys(self) -> set[str]:
        rows = self._list(self.config.listings_table, [
            ("filterByFormula", "{Status}='active'"),
            ("fields[]", FIELD_NAMES["key"]),
        ])
        keys = set()
        for raw in rows:
            record = self._remember(raw)
            if record is not None:
                keys.add(record.key)
        return keys

    def insert_batch(self, records: Iterable[ListingRecord]) -> None:
        records = list(records)
        for start in range(0, len(records), WRITE_CHUNK_SIZE):
            chunk = records[start:start + WRITE_CHUNK_SIZE]
            payload = {
                "records": [
                    {"fields": to_airtable_fields({name: getattr(r, name) for name in FIELD_NAMES})}
                    for r in chunk
                ],
                "typecast": True,
            }
            data = self._request("POST", self.config.listings_table, StoreWriteError, payload=payload)
            for raw in data.get("records", []):
                self._remember(raw)

    def _record_id(self, key: str) -> str:
        record_id = self._record_ids.get(key)
        if record_id:
            return record_id
        rows = self._list(self.config.listings_table, [
            ("filterByFormula", f"{{{FIELD_NAMES['key']}}}='{_escape(key)}'"),
            ("maxRecords", "1"),
        ])
        if not rows:
            raise StoreWriteError(f"Listing {key} not found in Airtable")
        self._remember(rows[0])
        return rows[0]["id"]

    def update_fields(self, key: str, fields: dict) -> None:
        if "key" in fields:
            raise ValueError("The listing key cannot be updated")
        payload = {
            "records": [{"id": self._record_id(key), "fields": to_airtable_fields(fields)}],
            "typecast": True,
        }
        self._request("PATCH", self.config.listings_table, StoreWriteError, payload=payload)

    def upsert_daily_stat(self, stat_date: date, new_count: int,
                          sold_count: int, total_active: int) -> None:
        day = stat_date.isoformat()
        existing = self._list(self.config.stats_table, [
            ("filterByFormula", f"{{Date}}='{day}'"),
            ("maxRecords", "1"),
        ])
        fields = {"New_Listings": new_count, "Sold_Count": sold_count, "Total_Active": total_active}
        if existing:
            payload = {"records": [{"id": existing[0]["id"], "fields": fields}]}
            self._request("PATCH", self.config.stats_table, StoreWriteError, payload=payload)
        else:
            payload = {"records": [{"fields": {"Date": day, **fields}}]}
            self._request("POST", self.config.stats_table, StoreWriteError, payload=payload)

    def get_daily_stats(self, limit: int = 30) -> list[DailyStat]:
        rows = self._list(self.config.stats_table, [
            ("sort[0][field]", "Date"),
            ("sort[0][direction]", "desc"),
            ("maxRecords", str(limit)),
        ])
        stats = []
        for raw in rows:
            fields = raw.get("fields", {})
            stat_date = parse_optional_date(fields.get("Date"))
            if stat_date is None:
                continue
            stats.append(DailyStat(
                date=stat_date,
                new_listings=int(fields.get("New_Listings") or 0),
                sold_count=int(fields.get("Sold_Count") or 0),
                total_active=int(fields.get("Total_Active") or 0),
            ))
        return stats
