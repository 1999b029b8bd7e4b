"""Outbound webhooks for sync results and newly detected listings."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

import requests

logger = logging.getLogger(__name__)

DEFAULT_EVENTS = {"sync_completed", "new_listings_detected", "sync_failed"}
WEBHOOK_TIMEOUT = 5
# Discord rejects message content over 2000 characters.
DISCORD_MAX_CHARS = 1900


def build_event(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    """Provider-neutral envelope; the generic provider posts it as-is."""
    return {
        "event": event_type,
        "source": "realtor-listing-tracker",
        "sent_at": datetime.now(timezone.utc).isoformat(),
        "schema_version": 1,
        "data": data,
    }


def _subscribed(event_type: str, settings: dict[str, Any]) -> bool:
    events = settings.get("webhook_events")
    if events is None:
        events = DEFAULT_EVENTS
    return isinstance(events, (list, set, tuple)) and event_type in events


def _summary_text(event_type: str, data: dict[str, Any]) -> str:
    if event_type == "sync_completed":
        text = (
            f"Sync completed: found={data.get('found', 0)}, new={data.get('new', 0)}, "
            f"relisted={data.get('relisted', 0)}, sold={data.get('sold', 0)}"
        )
        if data.get("sold_detection_skipped"):
            text += " (sold detection skipped)"
        return text
    if event_type == "sync_failed":
        return f"Sync failed: {data.get('error', 'Unknown error')}"
    if event_type == "new_listings_detected":
        listings = data.get("listings", [])
        lines = [f"New listings detected ({data.get('count', len(listings))}):"]
        for listing in listings:
            lines.append(f"- {listing.get('address')} (${listing.get('price')}) {listing.get('url')}")
        return "\n".join(lines)
    return f"Event: {event_type}"


_FORMATTERS: dict[str, Callable[[str], dict[str, Any]]] = {
    "discord": lambda text: {"content": text[:DISCORD_MAX_CHARS]},
    "google_chat": lambda text: {"text": text},
}


def _format_payload(provider: str, event: dict[str, Any]) -> dict[str, Any]:
    formatter = _FORMATTERS.get(provider)
    if formatter is None:
        return event
    return formatter(_summary_text(event["event"], event["data"]))


def send_webhook_event(event_type: str, data: dict[str, Any], settings: dict[str, Any],
                       session: Any = None, delays: tuple = (1, 3, 9)) -> bool:
    """POST one event to the configured webhook, retrying after each delay.

    Returns True once a request succeeds, False if webhooks are off, the
    event is not subscribed, or every attempt failed.
    """
    url = (settings.get("webhook_url") or "").strip()
    if not settings.get("webhook_enabled") or not url:
        return False
    if not _subscribed(event_type, settings):
        logger.debug(f"Webhook event {event_type} not subscribed")
        return False

    provider = (settings.get("webhook_provider") or "generic").strip().lower()
    payload = _format_payload(provider, build_event(event_type, data))
    http = session or requests

    attempts = len(delays) + 1
    for attempt in range(1, attempts + 1):
        try:
            http.post(url, json=payload, timeout=WEBHOOK_TIMEOUT).raise_for_status()
            return True
        except requests.RequestException as e:
            if attempt == attempts:
                logger.warning(f"Webhook {event_type} gave up after {attempts} attempts: {e}")
                return False
            logger.info(f"Webhook {event_type} attempt {attempt} failed, retrying: {e}")
            time.sleep(delays[attempt - 1])
    return False
