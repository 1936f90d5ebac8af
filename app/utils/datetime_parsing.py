"""Datetime parsing helpers for provider payloads and calendar events."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

# Epoch values above this are milliseconds (year 5138 in seconds).
_EPOCH_MS_THRESHOLD = 100_000_000_000

_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")


def parse_payload_datetime(value: Any) -> datetime | None:
    """
    Parse a provider timestamp into an aware UTC datetime.

    Accepts ISO 8601 strings (with or without "Z"), and epoch seconds or
    milliseconds as numbers or numeric strings. Naive values are treated
    as UTC. Returns None when the value is empty or unparseable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if _NUMERIC_RE.match(raw):
            return _from_epoch(float(raw))
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable payload datetime: %r", raw)
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        return _from_epoch(float(value))

    return None


def _from_epoch(ts: float) -> datetime | None:
    if ts > _EPOCH_MS_THRESHOLD:
        ts = ts / 1000
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def resolve_timezone(name: str | None, fallback: str = "UTC") -> ZoneInfo:
    """Return ZoneInfo for name, falling back when it is empty or unknown."""
    for candidate in (name, fallback, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, falling back", candidate)
    return ZoneInfo("UTC")


def parse_google_datetime(value: str | None) -> datetime | None:
    """Parse a Google Calendar dateTime (RFC 3339) into aware UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def all_day_window(
    start_date: str,
    end_date: str | None,
    tz: ZoneInfo,
    *,
    day_start: time = time(9, 0),
    day_end: time = time(17, 0),
) -> tuple[datetime, datetime] | None:
    """
    Map an all-day event to working hours in the org timezone.

    Google's end date is exclusive, so a one-day event ends at 17:00 on
    its start date and a multi-day event ends at 17:00 on its last day.
    """
    try:
        first = date.fromisoformat(start_date)
    except (TypeError, ValueError):
        return None
    last = first
    if end_date:
        try:
            last = date.fromisoformat(end_date) - timedelta(days=1)
        except ValueError:
            last = first
    if last < first:
        last = first
    start = datetime.combine(first, day_start, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(last, day_end, tzinfo=tz).astimezone(timezone.utc)
    return start, end
