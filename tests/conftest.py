from datetime import date

import pytest

import db
from db import SqliteStore
from models import ListingRecord, TransactionKind


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "listings.db")
    monkeypatch.setattr(db, "DB_PATH", path)
    return path


@pytest.fixture
def store(db_path):
    return SqliteStore(db_path)


def make_listing(key, price=500000, kind=TransactionKind.SALE, **kwargs) -> ListingRecord:
    return ListingRecord(
        key=key,
        price=price,
        address=kwargs.pop("address", f"{key} MAIN STREET|Cambridge, Ontario N1R1A1"),
        transaction_kind=kind,
        **kwargs,
    )


D1 = date(2024, 3, 1)
D2 = date(2024, 3, 2)
D3 = date(2024, 3, 3)
