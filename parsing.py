"""Normalization helpers applied at the ingestion boundary.

Everything that crosses into the tracker (scraper payloads, store rows,
API query strings) goes through these so the reconciler and aggregator only
ever compare ``datetime.date`` objects and plain strings.
"""

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

# .NET ticks are 100ns intervals since 0001-01-01.
_TICKS_PER_SECOND = 10_000_000
_TICKS_AT_UNIX_EPOCH = 621_355_968_000_000_000

_POSTAL_RE = re.compile(r"([A-Z]\d[A-Z]\s?\d[A-Z]\d)$", re.IGNORECASE)
_CITY_PROVINCE_RE = re.compile(r"^([^,]+),\s*(\w+)\s*$")
_MS_DATE_RE = re.compile(r"/Date\((-?\d+)")


def normalize_key(value) -> Optional[str]:
    """Return the canonical string form of a listing key, or None if blank."""
    if value is None or isinstance(value, bool):
        return None
    key = str(value).strip()
    return key or None


def normalize_date(value) -> Optional[date]:
    """Coerce a date-ish value to a calendar date.

    Accepts ``date``/``datetime`` objects, ISO strings with or without a time
    part, .NET tick counts and ``/Date(ms)/`` strings. Blank input yields None;
    anything else raises ValueError.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        # Wall-clock date as given; the time of day and any offset are dropped.
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    if re.fullmatch(r"\d{17,}", text):
        return _date_from_ticks(int(text))
    match = _MS_DATE_RE.search(text)
    if match:
        millis = int(match.group(1))
        return (datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=millis)).date()
    return date.fromisoformat(re.split(r"[T ]", text, maxsplit=1)[0])


def _date_from_ticks(ticks: int) -> date:
    seconds = (ticks - _TICKS_AT_UNIX_EPOCH) / _TICKS_PER_SECOND
    return (datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=seconds)).date()


def parse_optional_date(value) -> Optional[date]:
    """Like normalize_date, but unparseable input becomes None."""
    try:
        return normalize_date(value)
    except (ValueError, OverflowError):
        logger.debug(f"Unparseable date value: {value!r}")
        return None


def parse_realtor_date(value) -> Optional[date]:
    """Parse the InsertedDateUTC field (ticks or /Date(ms)/)."""
    return parse_optional_date(value)


def parse_price(value) -> int:
    """Parse a price into whole currency units. Unknown or garbage -> 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(int(round(value)), 0)
    match = re.search(r"\d[\d,]*", str(value))
    if not match:
        return 0
    try:
        return int(match.group(0).replace(",", ""))
    except ValueError:
        return 0


def normalize_postal(value: Optional[str]) -> str:
    """Upper-case a postal code and drop all whitespace."""
    if not value:
        return ""
    return re.sub(r"\s+", "", str(value)).upper()


def parse_address(address_text: Optional[str]) -> dict:
    """Split "408 FAIRALL STREET|Ajax (South West), Ontario L1S1R6" into parts."""
    result = {"street": "", "city": "", "province": "", "postal_code": ""}
    if not address_text:
        return result

    parts = address_text.split("|")
    result["street"] = parts[0].strip()
    if len(parts) < 2:
        return result

    location = parts[1].strip()
    postal = _POSTAL_RE.search(location)
    if postal:
        result["postal_code"] = normalize_postal(postal.group(1))
        location = location[:postal.start()].strip()

    city_province = _CITY_PROVINCE_RE.match(location)
    if city_province:
        # "Ajax (South West)" -> "Ajax"
        result["city"] = re.sub(r"\s*\([^)]+\)\s*$", "", city_province.group(1).strip()).strip()
        result["province"] = city_province.group(2).strip()

    return result
