"""Data classes for the Realtor Listing Tracker."""

from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class TransactionKind(str, Enum):
    SALE = "sale"
    RENT = "rent"


class ListingStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"


# Carried through untouched; never used to decide insert/touch/sold.
DESCRIPTIVE_FIELDS = (
    "bedrooms",
    "bathrooms",
    "parking",
    "sqft",
    "lot_size",
    "property_type",
    "url",
    "listed_date",
    "street_address",
    "city",
    "province",
    "postal_code",
)

# Fields a fresh scrape is allowed to overwrite on an existing record.
REFRESHABLE_FIELDS = ("price", "address", "transaction_kind") + DESCRIPTIVE_FIELDS


@dataclass
class ListingRecord:
    """One real-world listing, identified by its upstream MLS number."""
    key: str
    price: int = 0
    address: str = ""
    transaction_kind: TransactionKind = TransactionKind.SALE
    first_seen: Optional[date] = None
    last_seen: Optional[date] = None
    status: ListingStatus = ListingStatus.ACTIVE
    bedrooms: str = ""
    bathrooms: str = ""
    parking: str = ""
    sqft: str = ""
    lot_size: str = ""
    property_type: str = ""
    url: str = ""
    listed_date: Optional[date] = None
    street_address: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE

    @property
    def listing_date(self) -> Optional[date]:
        """Upstream listed date when known, otherwise the first sighting."""
        return self.listed_date or self.first_seen

    def refreshable_fields(self) -> dict:
        return {name: getattr(self, name) for name in REFRESHABLE_FIELDS}

    def to_dict(self) -> dict:
        data = asdict(self)
        data["transaction_kind"] = self.transaction_kind.value
        data["status"] = self.status.value
        for name in ("first_seen", "last_seen", "listed_date"):
            value = data[name]
            data[name] = value.isoformat() if value else None
        return data


@dataclass
class DailyStat:
    """Counters for one calendar date. Rewritten, never appended, per date."""
    date: date
    new_listings: int = 0
    sold_count: int = 0
    total_active: int = 0

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "new_listings": self.new_listings,
            "sold_count": self.sold_count,
            "total_active": self.total_active,
        }


@dataclass
class ReconcileResult:
    """Outcome of reconciling one batch (and, on the final batch, the cycle)."""
    cycle_date: date
    inserted: int = 0
    touched: int = 0
    relisted: int = 0
    sold: int = 0
    rejected: int = 0
    is_final_batch: bool = False
    sold_detection_skipped: bool = False
    inserted_keys: list[str] = field(default_factory=list)
    sold_keys: list[str] = field(default_factory=list)
    daily_stat: Optional[DailyStat] = None

    def to_dict(self) -> dict:
        return {
            "cycle_date": self.cycle_date.isoformat(),
            "inserted": self.inserted,
            "touched": self.touched,
            "relisted": self.relisted,
            "sold": self.sold,
            "rejected": self.rejected,
            "is_final_batch": self.is_final_batch,
            "sold_detection_skipped": self.sold_detection_skipped,
            "daily_stat": self.daily_stat.to_dict() if self.daily_stat else None,
        }


@dataclass
class Stats:
    """Point-in-time dashboard statistics."""
    as_of: date
    new_today: int
    new_last_7_days: int
    new_last_7_weeks: int
    new_last_30_days: int
    new_last_90_days: int
    new_last_365_days: int
    sold_today: int
    total_active: int
    sale_count: int
    rent_count: int
    older_than_7_days: list[ListingRecord] = field(default_factory=list)
    older_than_30_days: list[ListingRecord] = field(default_factory=list)
    older_than_90_days: list[ListingRecord] = field(default_factory=list)
    older_than_365_days: list[ListingRecord] = field(default_factory=list)

    def summary(self) -> dict:
        """Counters only, without the bucket contents."""
        return {
            "as_of": self.as_of.isoformat(),
            "new_today": self.new_today,
            "new_last_7_days": self.new_last_7_days,
            "new_last_7_weeks": self.new_last_7_weeks,
            "new_last_30_days": self.new_last_30_days,
            "new_last_90_days": self.new_last_90_days,
            "new_last_365_days": self.new_last_365_days,
            "sold_today": self.sold_today,
            "total_active": self.total_active,
            "sale_count": self.sale_count,
            "rent_count": self.rent_count,
            "older_than_7_days_count": len(self.older_than_7_days),
            "older_than_30_days_count": len(self.older_than_30_days),
            "older_than_90_days_count": len(self.older_than_90_days),
            "older_than_365_days_count": len(self.older_than_365_days),
        }
