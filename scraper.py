"""Listing search scraper. Produces reconciler batches, one per results page."""

import logging
import random
import time
from typing import Iterator, Optional

import requests

from config import USER_AGENTS, ScraperConfig
from models import ListingRecord, TransactionKind
from parsing import normalize_key, parse_address, parse_price, parse_realtor_date

logger = logging.getLogger(__name__)

_TRANSACTION_TYPE_IDS = {"sale": "2", "rent": "3"}


class RealtorScraper:
    def __init__(self, config: Optional[ScraperConfig] = None,
                 session: Optional[requests.Session] = None,
                 sleep=time.sleep):
        self.config = config or ScraperConfig()
        self.session = session or requests.Session()
        self._sleep = sleep
        self._seen_keys: set[str] = set()
        self.failed_segments: list[str] = []
        self._rotate_ua()

    @property
    def complete(self) -> bool:
        """False if any city/kind segment was cut short by request failures."""
        return not self.failed_segments

    def _rotate_ua(self):
        self.session.headers.update({
            "User-Agent": random.choice(USER_AGENTS),
            "Accept": "application/json",
        })

    def _delay(self, seconds: float):
        if seconds:
            self._sleep(seconds)

    def fetch_page(self, kind: str, page: int, city: Optional[str] = None) -> tuple[list[dict], int]:
        """Fetch one results page. Returns (results, total_pages)."""
        params = dict(self.config.extra_params)
        params.update({
            "RecordsPerPage": str(self.config.records_per_page),
            "TransactionTypeId": _TRANSACTION_TYPE_IDS[kind],
            "CurrentPage": str(page),
        })
        if city:
            params["LocationSearchString"] = city

        resp = self.session.post(self.config.search_url, data=params, timeout=30)
        resp.raise_for_status()
        data = resp.json()
        paging = data.get("Paging") or {}
        return data.get("Results") or [], int(paging.get("TotalPages") or 0)

    def parse_listing(self, item: dict, kind: str) -> ListingRecord:
        """Convert one API result into a ListingRecord (dates left for the reconciler)."""
        building = item.get("Building") or {}
        prop = item.get("Property") or {}
        land = item.get("Land") or {}
        address_text = (prop.get("Address") or {}).get("AddressText") or ""
        parsed = parse_address(address_text)
        relative_url = item.get("RelativeDetailsURL") or ""

        return ListingRecord(
            key=normalize_key(item.get("MlsNumber")) or "",
            price=parse_price(prop.get("Price")),
            address=address_text,
            transaction_kind=TransactionKind(kind),
            bedrooms=str(building.get("Bedrooms") or ""),
            bathrooms=str(building.get("BathroomTotal") or ""),
            parking=str(prop.get("ParkingSpaceTotal") or ""),
            sqft=str(building.get("SizeInterior") or ""),
            lot_size=str(land.get("SizeTotal") or ""),
            property_type=str(prop.get("Type") or ""),
            url=f"https://www.realtor.ca{relative_url}" if relative_url else "",
            listed_date=parse_realtor_date(item.get("InsertedDateUTC")),
            street_address=parsed["street"],
            city=parsed["city"],
            province=parsed["province"],
            postal_code=(item.get("PostalCode") or parsed["postal_code"]).replace(" ", "").upper(),
        )

    def _fetch_with_retry(self, kind: str, page: int, city: Optional[str]) -> Optional[tuple[list[dict], int]]:
        for attempt in range(self.config.max_retries + 1):
            try:
                return self.fetch_page(kind, page, city)
            except (requests.RequestException, ValueError) as e:
                logger.error(f"Error {city} {kind} page {page}: {e}")
                if attempt >= self.config.max_retries:
                    return None
                logger.info(f"Retry {attempt + 1}/{self.config.max_retries} in {self.config.retry_delay}s")
                self._rotate_ua()
                self._delay(self.config.retry_delay)
        return None

    def iter_pages(self) -> Iterator[list[ListingRecord]]:
        """Yield deduplicated listings page by page across every city and kind."""
        self._seen_keys = set()
        self.failed_segments = []
        cities = self.config.cities or [None]

        for city_idx, city in enumerate(cities):
            if city_idx:
                self._delay(self.config.delay_between_cities)
            for kind in self.config.transaction_kinds:
                segment_total = 0
                for page in range(1, self.config.max_pages_per_city + 1):
                    fetched = self._fetch_with_retry(kind, page, city)
                    if fetched is None:
                        logger.warning(f"Max retries, skipping rest of {city} {kind}")
                        self.failed_segments.append(f"{city or 'all'}:{kind}")
                        break
                    results, total_pages = fetched
                    if not results:
                        break

                    batch = []
                    for item in results:
                        record = self.parse_listing(item, kind)
                        if record.key and record.key in self._seen_keys:
                            continue
                        if record.key:
                            self._seen_keys.add(record.key)
                        batch.append(record)
                    segment_total += len(batch)
                    logger.info(
                        f"{city or 'all'} {kind} page {page}: +{len(batch)} "
                        f"(segment: {segment_total}, overall: {len(self._seen_keys)})"
                    )
                    if batch:
                        yield batch

                    if total_pages and page >= total_pages:
                        break
                    self._delay(self.config.delay_between_pages)

    def iter_batches(self) -> Iterator[tuple[list[ListingRecord], bool]]:
        """Yield ``(batch, is_last)``; the last page is held back until the scrape ends."""
        pending = None
        for batch in self.iter_pages():
            if pending is not None:
                yield pending, False
            pending = batch
        if pending is not None:
            yield pending, True
