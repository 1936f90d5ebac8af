"""Rate limiting configuration for the sync API."""

import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.config import settings

logger = logging.getLogger(__name__)

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")


def get_client_ip(request: Request) -> str:
    """Client IP for rate limiting; first X-Forwarded-For hop when behind a trusted proxy."""
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return get_remote_address(request) or "unknown"


def voice_webhook_limit() -> str:
    """Per-IP limit for voice webhooks (read at request time so tests can override)."""
    return f"{settings.RATE_LIMIT_VOICE_WEBHOOK}/minute"


# Configure rate limiter with Redis for multi-worker support
# Falls back to in-memory if Redis is not available (dev/test mode)
if IS_TESTING:
    limiter = Limiter(
        key_func=get_client_ip,
        storage_uri="memory://",
        strategy="moving-window",
    )
else:
    try:
        import redis

        r = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        r.ping()
        limiter = Limiter(
            key_func=get_client_ip,
            storage_uri=settings.REDIS_URL,
            strategy="moving-window",
        )
    except Exception as e:
        logger.warning("Redis unavailable for rate limiting, using in-memory: %s", e)
        limiter = Limiter(
            key_func=get_client_ip,
            storage_uri="memory://",
            strategy="moving-window",
        )
