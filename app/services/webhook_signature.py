"""Voice webhook signature verification.

Providers sign the raw request body with HMAC-SHA256. The signature header
may carry a timestamp and one or more signatures:

    t=1718000000,v1=<hex or base64>,v1=<another>

A bare value (no "=", or only base64 padding after it) is also accepted
as a signature. Verification passes
when any candidate matches the expected digest in hex or base64, using a
constant-time comparison, and the timestamp (when present) is within the
replay window.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable

from app.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_SKEW_SECONDS = 300
_SIGNATURE_KEYS = {"v1", "sig", "signature"}


@dataclass
class ParsedSignatureHeader:
    timestamp: str | None = None
    signatures: list[str] = field(default_factory=list)


def parse_signature_header(header: str | None) -> ParsedSignatureHeader:
    """Split a signature header into its timestamp and signature candidates."""
    parsed = ParsedSignatureHeader()
    if not header:
        return parsed

    for part in header.split(","):
        part = part.strip()
        if not part:
            continue
        key, _, value = part.partition("=")
        key = key.strip().lower()
        value = value.strip()
        if not value.strip("="):
            # No value after "=": a bare digest, possibly base64 with padding
            parsed.signatures.append(part)
            continue
        if key == "t":
            parsed.timestamp = value
        elif key in _SIGNATURE_KEYS:
            parsed.signatures.append(value)

    if not parsed.signatures:
        # Unrecognized format: the whole header is the signature.
        parsed.signatures.append(header.strip())
    return parsed


def _parse_timestamp(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def expected_signatures(raw_body: bytes, secret: str) -> tuple[str, str]:
    """Return the (hex, base64) HMAC-SHA256 digests of the body."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return digest.hex(), base64.b64encode(digest).decode("ascii")


def verify_signature(
    raw_body: bytes,
    signature_header: str | None,
    timestamp_header: str | None,
    secret: str | None,
    *,
    now: float | None = None,
    max_skew_seconds: int = DEFAULT_MAX_SKEW_SECONDS,
) -> bool:
    """
    Verify an HMAC-SHA256 webhook signature.

    The timestamp comes from the header's t= field, else timestamp_header.
    A timestamp outside max_skew_seconds fails; a non-numeric timestamp is
    ignored. Missing header or secret fails.
    """
    if not signature_header or not secret:
        return False

    parsed = parse_signature_header(signature_header)
    ts = _parse_timestamp(parsed.timestamp or timestamp_header)
    if ts is not None:
        current = time.time() if now is None else now
        # Millisecond timestamps are normalized to seconds.
        if ts > 100_000_000_000:
            ts = ts / 1000
        if abs(current - ts) > max_skew_seconds:
            logger.info("Webhook signature timestamp outside replay window")
            return False

    hex_sig, b64_sig = expected_signatures(raw_body, secret)
    for candidate in parsed.signatures:
        candidate_bytes = candidate.encode("utf-8")
        if hmac.compare_digest(candidate_bytes, hex_sig.encode("ascii")):
            return True
        if hmac.compare_digest(candidate_bytes, b64_sig.encode("ascii")):
            return True
    return False


def verify_with_secrets(
    raw_body: bytes,
    signature_header: str | None,
    timestamp_header: str | None,
    secrets: Iterable[str],
    *,
    now: float | None = None,
) -> bool:
    """Try each secret in order (current first, then the rotation grace secret)."""
    max_skew = settings.VOICE_SIGNATURE_MAX_SKEW_SECONDS
    return any(
        verify_signature(
            raw_body,
            signature_header,
            timestamp_header,
            secret,
            now=now,
            max_skew_seconds=max_skew,
        )
        for secret in secrets
        if secret
    )
