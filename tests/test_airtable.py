from datetime import date

import pytest
import requests

from airtable import AirtableStore, from_airtable_fields, to_airtable_fields
from config import AirtableConfig
from conftest import D1, make_listing
from models import ListingStatus, TransactionKind
from store import StoreReadError, StoreWriteError


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload if payload is not None else {}
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, responses=()):
        self.headers = {}
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, params=None, json=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "json": json})
        if not self.responses:
            return FakeResponse({"records": []})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_store(*responses, configured=True):
    config = AirtableConfig(
        api_key="key" if configured else "",
        base_id="app123",
        request_delay=0,
    )
    session = FakeSession(responses)
    return AirtableStore(config, session=session), session


def row(record_id, **fields):
    return {"id": record_id, "fields": fields}


def test_auth_header_is_set():
    store, session = make_store()
    assert session.headers["Authorization"] == "Bearer key"


def test_get_all_records_follows_pagination():
    store, session = make_store(
        FakeResponse({"records": [row("rec1", MLS_Number="A", Price="$500,000", Status="active")],
                      "offset": "next"}),
        FakeResponse({"records": [row("rec2", MLS_Number="B", Type="rent", Status="sold",
                                      First_Seen="2024-03-01")]}),
    )

    records = store.get_all_records()

    assert [r.key for r in records] == ["A", "B"]
    assert records[0].price == 500000
    assert records[1].transaction_kind == TransactionKind.RENT
    assert records[1].status == ListingStatus.SOLD
    assert records[1].first_seen == D1
    assert ("offset", "next") in session.calls[1]["params"]
    assert session.calls[0]["url"] == "https://api.airtable.com/v0/app123/Listings"


def test_rows_without_key_are_ignored():
    store, _ = make_store(FakeResponse({"records": [row("rec1", Price=1), row("rec2", MLS_Number="A")]}))
    assert [r.key for r in store.get_all_records()] == ["A"]


def test_get_active_keys_filters_by_status():
    store, session = make_store(FakeResponse({"records": [row("rec1", MLS_Number="A")]}))

    assert store.get_active_keys() == {"A"}
    assert ("filterByFormula", "{Status}='active'") in session.calls[0]["params"]


def test_insert_batch_is_chunked():
    records = [make_listing(f"K{i}", first_seen=D1, last_seen=D1) for i in range(23)]
    store, session = make_store()

    store.insert_batch(records)

    sizes = [len(call["json"]["records"]) for call in session.calls]
    assert sizes == [10, 10, 3]
    first = session.calls[0]["json"]["records"][0]["fields"]
    assert first["MLS_Number"] == "K0"
    assert first["First_Seen"] == "2024-03-01"
    assert first["Status"] == "active"


def test_update_uses_cached_record_id():
    store, session = make_store(
        FakeResponse({"records": [row("rec1", MLS_Number="A")]}),
        FakeResponse({"records": []}),
    )
    store.get_all_records()

    store.update_fields("A", {"status": ListingStatus.SOLD, "last_seen": date(2024, 3, 2)})

    patch = session.calls[-1]
    assert patch["method"] == "PATCH"
    assert patch["json"]["records"] == [
        {"id": "rec1", "fields": {"Status": "sold", "Last_Seen": "2024-03-02"}}
    ]


def test_update_looks_up_unknown_record_id():
    store, session = make_store(
        FakeResponse({"records": [row("rec9", MLS_Number="Z")]}),
        FakeResponse({"records": []}),
    )

    store.update_fields("Z", {"price": 1})

    assert session.calls[0]["method"] == "GET"
    assert session.calls[1]["json"]["records"][0]["id"] == "rec9"


def test_update_missing_listing_raises():
    store, _ = make_store(FakeResponse({"records": []}))
    with pytest.raises(StoreWriteError):
        store.update_fields("missing", {"price": 1})


def test_daily_stat_creates_then_updates():
    store, session = make_store(FakeResponse({"records": []}), FakeResponse({"records": []}))
    store.upsert_daily_stat(D1, 2, 1, 10)

    assert session.calls[1]["method"] == "POST"
    assert session.calls[1]["json"]["records"][0]["fields"]["Date"] == "2024-03-01"

    store, session = make_store(FakeResponse({"records": [row("recS", Date="2024-03-01")]}),
                                FakeResponse({"records": []}))
    store.upsert_daily_stat(D1, 3, 1, 10)

    assert session.calls[1]["method"] == "PATCH"
    assert session.calls[1]["json"]["records"][0] == {
        "id": "recS",
        "fields": {"New_Listings": 3, "Sold_Count": 1, "Total_Active": 10},
    }


def test_get_daily_stats():
    store, _ = make_store(FakeResponse({"records": [
        row("r1", Date="2024-03-02", New_Listings=1, Sold_Count=0, Total_Active=5),
        row("r2", Date="2024-03-01", New_Listings=5),
    ]}))

    stats = store.get_daily_stats()

    assert [s.date for s in stats] == [date(2024, 3, 2), D1]
    assert stats[1].total_active == 0


def test_read_failure_raises_store_read_error():
    store, _ = make_store(requests.ConnectionError("boom"))
    with pytest.raises(StoreReadError):
        store.get_active_keys()


def test_http_error_on_write_raises_store_write_error():
    store, _ = make_store(FakeResponse(status=422))
    with pytest.raises(StoreWriteError):
        store.insert_batch([make_listing("A", first_seen=D1, last_seen=D1)])


def test_unconfigured_store_refuses_requests():
    store, session = make_store(configured=False)
    with pytest.raises(StoreReadError):
        store.get_all_records()
    assert session.calls == []


def test_field_mapping():
    fields = to_airtable_fields({"transaction_kind": TransactionKind.RENT, "listed_date": D1})
    assert fields == {"Type": "rent", "Posted_Date": "2024-03-01"}
    with pytest.raises(ValueError):
        to_airtable_fields({"colour": "red"})

    record = from_airtable_fields({"MLS_Number": " X1 ", "Type": "Lease", "Bedrooms": 3})
    assert record.key == "X1"
    assert record.transaction_kind == TransactionKind.SALE
    assert record.bedrooms == "3"
