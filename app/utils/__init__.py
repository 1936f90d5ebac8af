"""Utility modules."""

from app.utils.datetime_parsing import (
    all_day_window,
    parse_google_datetime,
    parse_payload_datetime,
    resolve_timezone,
)
from app.utils.normalization import (
    clean_string,
    normalize_caller_phone,
    normalize_email,
)

__all__ = [
    # Normalization
    "clean_string",
    "normalize_caller_phone",
    "normalize_email",
    # Datetimes
    "all_day_window",
    "parse_google_datetime",
    "parse_payload_datetime",
    "resolve_timezone",
]
