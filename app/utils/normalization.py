"""Data normalization utilities for consistent data quality."""

import re
from typing import Any, Optional

from app.core.config import settings


def clean_string(value: Any) -> Optional[str]:
    """Return a stripped non-empty string, or None for anything else."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def normalize_caller_phone(phone: Optional[str], country_code: Optional[str] = None) -> Optional[str]:
    """
    Normalize a phone number to national trunk format (digits only).

    - 021 555 1234 → 0215551234
    - +64 21 555 1234 → 0215551234 (country code replaced by trunk 0)
    - Anything else keeps its digits unchanged.

    Args:
        phone: Raw phone input
        country_code: Country calling code to fold into trunk format
            (defaults to DEFAULT_PHONE_COUNTRY_CODE)

    Returns:
        Digit string or None if there are no digits
    """
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None
    code = country_code if country_code is not None else settings.DEFAULT_PHONE_COUNTRY_CODE
    if digits.startswith("0"):
        return digits
    if code and digits.startswith(code):
        return "0" + digits[len(code):]
    return digits


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Args:
        email: Raw email input

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    return email.strip().lower() or None
