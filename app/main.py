"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.core.config import settings
from app.core.telemetry import configure_telemetry
from app.db.session import engine

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

_SCRUBBED_HEADERS = {"x-internal-secret", "authorization", "cookie"}


def scrub_sentry_event(event: dict, hint: dict) -> dict:
    """Drop webhook bodies and signing headers; calls carry phones and transcripts."""
    request = event.get("request") or {}
    if request.get("data"):
        request["data"] = "[scrubbed]"
    headers = request.get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in _SCRUBBED_HEADERS or "signature" in name.lower():
                headers[name] = "[scrubbed]"
    return event


if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=settings.OTEL_SAMPLE_RATE,
        send_default_pii=False,
        before_send=scrub_sentry_event,
    )
    logging.info("Sentry enabled env=%s release=%s", settings.ENV, settings.VERSION)

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.core.rate_limit import limiter

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Booking Sync API",
    description="Calendar sync and voice call ingestion for the booking platform",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

configure_telemetry(app, engine)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Internal-Secret"],
)

# ============================================================================
# Routers
# ============================================================================

from app.routers import integrations, internal, webhooks

# Voice provider webhooks (signed, rate limited)
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# Google Calendar connect / status
app.include_router(integrations.router)

# Internal endpoints (scheduled/cron jobs - protected by INTERNAL_SECRET)
app.include_router(internal.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
