"""Configuration defaults for the Realtor Listing Tracker.

Runtime-configurable settings are stored in the DB (settings table).
These defaults are used for first-run seeding only. Adapter configuration
(scraper, Airtable) is built from the environment and passed explicitly.
"""

import os
from dataclasses import dataclass, field

# Database path
DB_PATH = os.environ.get("DB_PATH", "listings.db")

# Optional HTTP basic password protecting the settings API
SETTINGS_PASSWORD = os.environ.get("SETTINGS_PASSWORD", "")

# User agents to rotate (not user-configurable, just a static list)
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

# ── Defaults for first-run DB seeding ──────────────────────────

DEFAULT_SETTINGS = {
    "sync_interval_hours": 1,
    "store_backend": "sqlite",
    # Production-friendly default: start scheduler automatically with the server.
    "scheduler_enabled": True,
    "webhook_enabled": False,
    "webhook_url": "",
    "webhook_provider": "generic",
    "webhook_events": ["sync_completed", "sync_failed", "new_listings_detected"],
    "webhook_new_listings_batch_size": 5,
}

DEFAULT_CITIES = [
    "Cambridge, ON",
]


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(";") if item.strip()]


@dataclass
class ScraperConfig:
    """Request pacing and search scope for the listings API."""
    search_url: str = "https://api2.realtor.ca/Listing.svc/PropertySearch_Post"
    cities: list[str] = field(default_factory=lambda: list(DEFAULT_CITIES))
    transaction_kinds: tuple[str, ...] = ("sale", "rent")
    max_pages_per_city: int = 25
    records_per_page: int = 200
    delay_between_pages: float = 2.0
    delay_between_cities: float = 5.0
    max_retries: int = 3
    retry_delay: float = 5.0
    # Listing-API form fields; kept here so the scraper carries no request shape.
    extra_params: dict = field(default_factory=lambda: {
        "CultureId": "1",
        "ApplicationId": "1",
        "PropertySearchTypeId": "1",
        "Sort": "6-D",
    })

    @classmethod
    def from_env(cls) -> "ScraperConfig":
        return cls(
            search_url=os.environ.get("REALTOR_SEARCH_URL", cls.search_url),
            cities=_env_list("REALTOR_CITIES", DEFAULT_CITIES),
            max_pages_per_city=int(os.environ.get("REALTOR_MAX_PAGES", "25")),
            delay_between_pages=float(os.environ.get("REALTOR_PAGE_DELAY", "2.0")),
            delay_between_cities=float(os.environ.get("REALTOR_CITY_DELAY", "5.0")),
        )


@dataclass
class AirtableConfig:
    """Credentials and table names for the Airtable backend."""
    api_key: str = ""
    base_id: str = ""
    listings_table: str = "Listings"
    stats_table: str = "Daily_Stats"
    api_url: str = "https://api.airtable.com/v0"
    request_delay: float = 0.2
    timeout: float = 30.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.base_id)

    @classmethod
    def from_env(cls) -> "AirtableConfig":
        return cls(
            api_key=os.environ.get("AIRTABLE_API_KEY", ""),
            base_id=os.environ.get("AIRTABLE_BASE_ID", ""),
            listings_table=os.environ.get("AIRTABLE_LISTINGS_TABLE", "Listings"),
            stats_table=os.environ.get("AIRTABLE_STATS_TABLE", "Daily_Stats"),
        )
