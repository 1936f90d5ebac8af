"""Google Calendar connection flow and status.

Handles the OAuth handshake for an organization's calendar, calendar
selection, disconnect, and the status summary shown on the settings page.
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.db.enums import IntegrationType
from app.schemas.integrations import CalendarConnectionStatus
from app.services import (
    calendar_settings_service,
    google_calendar_client,
    sync_state_service,
    token_vault,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_CALENDAR_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]


class InvalidOAuthState(ValueError):
    """OAuth state was tampered with, expired, or unreadable."""


# ============================================================================
# OAuth state
# ============================================================================


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _sign(payload: str) -> str:
    secret = settings.oauth_state_secret
    if not secret:
        raise RuntimeError("OAUTH_STATE_SECRET (or INTERNAL_SECRET) not configured")
    return _b64url(hmac.new(secret.encode(), payload.encode(), hashlib.sha256).digest())


def create_oauth_state(org_id: UUID) -> str:
    """Signed state: base64url({org_id, nonce, ts}).signature"""
    payload = _b64url(
        json.dumps(
            {"org_id": str(org_id), "nonce": secrets.token_urlsafe(16), "ts": int(time.time())},
            separators=(",", ":"),
        ).encode()
    )
    return f"{payload}.{_sign(payload)}"


def parse_oauth_state(state: str, *, now: float | None = None) -> UUID:
    """Verify a state value and return its organization id."""
    payload, _, signature = (state or "").partition(".")
    if not payload or not signature:
        raise InvalidOAuthState("Malformed state")
    if not hmac.compare_digest(signature, _sign(payload)):
        raise InvalidOAuthState("State signature mismatch")
    try:
        data = json.loads(_b64url_decode(payload))
        org_id = UUID(data["org_id"])
        issued_at = int(data["ts"])
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidOAuthState("Unreadable state") from exc
    current = time.time() if now is None else now
    if current - issued_at > settings.OAUTH_STATE_MAX_AGE_SECONDS:
        raise InvalidOAuthState("State expired")
    return org_id


def start_auth_url(org_id: UUID) -> str:
    """Google consent URL for connecting the org's calendar."""
    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": settings.GOOGLE_CALENDAR_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "state": create_oauth_state(org_id),
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


# ============================================================================
# Handshake
# ============================================================================


async def exchange_code(code: str) -> dict[str, Any]:
    """Exchange authorization code for tokens."""
    try:
        async with httpx.AsyncClient(timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS) as client:
            response = await client.post(
                token_vault.GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": settings.GOOGLE_CALENDAR_REDIRECT_URI,
                },
            )
            response.raise_for_status()
            return response.json()
    except httpx.HTTPError as exc:
        raise UpstreamUnavailable(f"Google code exchange failed: {exc}") from exc


async def get_user_email(access_token: str) -> str | None:
    """Email of the connected Google account (best effort)."""
    try:
        async with httpx.AsyncClient(timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS) as client:
            response = await client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            return response.json().get("email")
    except httpx.HTTPError as exc:
        logger.warning("Google userinfo lookup failed: %s", exc)
        return None


async def complete_oauth(db: Session, org_id: UUID, code: str) -> str | None:
    """
    Finish the OAuth callback: store tokens and mark the org connected.

    Returns the connected account email.
    """
    tokens = await exchange_code(code)
    access_token = tokens["access_token"]
    account_email = await get_user_email(access_token)

    token_vault.save_credential(
        db,
        org_id,
        access_token=access_token,
        refresh_token=tokens.get("refresh_token"),
        expires_in=tokens.get("expires_in"),
        account_email=account_email,
    )
    current = calendar_settings_service.get_calendar_settings(db, org_id)
    calendar_settings_service.update_calendar_settings(
        db,
        org_id,
        connected=True,
        account_email=account_email,
        calendar_id=(current.calendar_id if current else None) or "primary",
    )
    logger.info("Google Calendar connected org=%s", org_id)
    return account_email


# ============================================================================
# Calendar selection / disconnect
# ============================================================================


async def list_writable_calendars(db: Session, org_id: UUID) -> list[dict[str, Any]]:
    credential = await token_vault.get_valid_credential(db, org_id)
    return await google_calendar_client.list_calendars(credential.access_token)


def select_calendar(db: Session, org_id: UUID, calendar_id: str):
    return calendar_settings_service.update_calendar_settings(db, org_id, calendar_id=calendar_id)


def disconnect(db: Session, org_id: UUID) -> None:
    """Drop stored tokens and reset the connection fields."""
    token_vault.delete_credential(db, org_id)
    calendar_settings_service.reset_calendar_settings(db, org_id)
    logger.info("Google Calendar disconnected org=%s", org_id)


# ============================================================================
# Status
# ============================================================================


def connection_status(db: Session, org_id: UUID) -> CalendarConnectionStatus:
    """Summary for the settings page: connection, account, last sync and last error."""
    sync_settings = calendar_settings_service.get_calendar_settings(db, org_id)
    summary = token_vault.get_credential_summary(db, org_id)
    state = sync_state_service.get_sync_state(db, org_id, IntegrationType.GOOGLE_CALENDAR)

    connected = bool(
        sync_settings and sync_settings.connected and sync_settings.calendar_id and summary
    )
    account_email = None
    if sync_settings and sync_settings.account_email:
        account_email = sync_settings.account_email
    elif summary:
        account_email = summary["account_email"]

    return CalendarConnectionStatus(
        connected=connected,
        account_email=account_email,
        calendar_id=sync_settings.calendar_id if sync_settings else None,
        last_sync_at=state.last_success_at if state else None,
        last_error=state.last_error if state else None,
        needs_reconnect=bool(summary and summary["needs_reconnect"]),
    )
