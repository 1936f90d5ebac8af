"""Token vault - owns per-org OAuth credentials for calendar providers.

Tokens are Fernet-encrypted at rest. Callers ask for a valid credential and
get back an access token that is good for at least the refresh skew; the
vault refreshes it transparently and serializes concurrent refreshes with a
row lock so a rotated refresh token is never lost.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_token, encrypt_token, rotate_token
from app.core.exceptions import AuthExpired, NotConnected, UpstreamUnavailable
from app.db.enums import CalendarProvider
from app.db.models import IntegrationCredential, VoiceAgentConnection

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Used when the provider omits expires_in on refresh.
DEFAULT_REFRESHED_LIFETIME = timedelta(minutes=55)


@dataclass(frozen=True)
class GoogleCredential:
    """Opaque handle returned to sync code. Never contains the refresh token."""

    organization_id: UUID
    access_token: str
    expires_at: datetime | None
    account_email: str | None = None


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _needs_refresh(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """True when the token is expired or expires within the refresh skew."""
    if expires_at is None:
        return False
    now = now or _now_utc()
    skew = timedelta(seconds=settings.CALENDAR_TOKEN_REFRESH_SKEW_SECONDS)
    return _as_utc(expires_at) <= now + skew


def _to_handle(credential: IntegrationCredential) -> GoogleCredential:
    return GoogleCredential(
        organization_id=credential.organization_id,
        access_token=decrypt_token(credential.access_token_encrypted),
        expires_at=credential.token_expires_at,
        account_email=credential.account_email,
    )


# ============================================================================
# Credential CRUD
# ============================================================================


def get_credential(
    db: Session,
    org_id: UUID,
    provider: str = CalendarProvider.GOOGLE.value,
) -> IntegrationCredential | None:
    return (
        db.query(IntegrationCredential)
        .filter(
            IntegrationCredential.organization_id == org_id,
            IntegrationCredential.provider == provider,
        )
        .first()
    )


def save_credential(
    db: Session,
    org_id: UUID,
    access_token: str,
    refresh_token: str | None = None,
    expires_in: int | None = None,
    account_email: str | None = None,
    provider: str = CalendarProvider.GOOGLE.value,
) -> IntegrationCredential:
    """Save tokens from an OAuth handshake.

    Google only returns a refresh token on the first consent, so an existing
    refresh token is kept when the new grant omits one.
    """
    credential = get_credential(db, org_id, provider)

    token_expires_at = None
    if expires_in:
        token_expires_at = _now_utc() + timedelta(seconds=int(expires_in))

    if credential:
        credential.access_token_encrypted = encrypt_token(access_token)
        if refresh_token:
            credential.refresh_token_encrypted = encrypt_token(refresh_token)
        credential.token_expires_at = token_expires_at
        if account_email:
            credential.account_email = account_email
        credential.needs_reconnect = False
    else:
        credential = IntegrationCredential(
            organization_id=org_id,
            provider=provider,
            access_token_encrypted=encrypt_token(access_token),
            refresh_token_encrypted=encrypt_token(refresh_token) if refresh_token else None,
            token_expires_at=token_expires_at,
            account_email=account_email,
        )
        db.add(credential)

    db.commit()
    db.refresh(credential)
    return credential


def delete_credential(
    db: Session, org_id: UUID, provider: str = CalendarProvider.GOOGLE.value
) -> bool:
    credential = get_credential(db, org_id, provider)
    if not credential:
        return False
    db.delete(credential)
    db.commit()
    return True


def mark_needs_reconnect(
    db: Session, org_id: UUID, provider: str = CalendarProvider.GOOGLE.value
) -> None:
    """Flag the credential so status surfaces ask the user to reconnect."""
    credential = get_credential(db, org_id, provider)
    if credential and not credential.needs_reconnect:
        credential.needs_reconnect = True
        db.commit()
        logger.info("Credential marked needs_reconnect org=%s provider=%s", org_id, provider)


def get_credential_summary(
    db: Session, org_id: UUID, provider: str = CalendarProvider.GOOGLE.value
) -> dict[str, Any] | None:
    """Non-secret view of the credential for status pages."""
    credential = get_credential(db, org_id, provider)
    if not credential:
        return None
    return {
        "account_email": credential.account_email,
        "token_expires_at": credential.token_expires_at,
        "needs_reconnect": credential.needs_reconnect,
        "has_refresh_token": bool(credential.refresh_token_encrypted),
    }


def reencrypt_secrets(db: Session) -> dict[str, int]:
    """
    Re-encrypt every stored token and webhook secret under the primary key.

    Run after prepending a new key to FERNET_KEY; once it returns, the old
    key can be removed. One commit, so a bad ciphertext aborts the batch.
    """
    credentials = 0
    for credential in db.query(IntegrationCredential).all():
        credential.access_token_encrypted = rotate_token(credential.access_token_encrypted)
        credential.refresh_token_encrypted = rotate_token(credential.refresh_token_encrypted)
        credentials += 1

    connections = 0
    for connection in db.query(VoiceAgentConnection).all():
        connection.webhook_secret_encrypted = rotate_token(connection.webhook_secret_encrypted)
        connection.previous_webhook_secret_encrypted = rotate_token(
            connection.previous_webhook_secret_encrypted
        )
        connections += 1

    db.commit()
    logger.info(
        "Re-encrypted secrets credentials=%s voice_connections=%s", credentials, connections
    )
    return {"credentials": credentials, "voice_connections": connections}


# ============================================================================
# Refresh
# ============================================================================


async def refresh_google_token(refresh_token: str) -> dict[str, Any]:
    """Exchange a refresh token for a new access token.

    Raises AuthExpired when Google rejects the grant and UpstreamUnavailable
    for timeouts or server errors.
    """
    try:
        async with httpx.AsyncClient(timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS) as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
    except httpx.HTTPError as exc:
        raise UpstreamUnavailable(f"Google token refresh failed: {exc}") from exc

    if response.status_code in (400, 401):
        raise AuthExpired("Google rejected the refresh token; reconnect required")
    if response.status_code >= 400:
        raise UpstreamUnavailable(
            f"Google token refresh failed ({response.status_code})",
            status_code=response.status_code,
        )
    data = response.json()
    if not data.get("access_token"):
        raise AuthExpired("Google token refresh returned no access token")
    return data


async def get_valid_credential(
    db: Session,
    org_id: UUID,
    provider: str = CalendarProvider.GOOGLE.value,
) -> GoogleCredential:
    """
    Return a credential whose access token is valid for at least the skew.

    Raises:
        NotConnected: no credential, or it is flagged for reconnect
        AuthExpired: refresh was required and the provider rejected it
        UpstreamUnavailable: refresh was required and the provider was unreachable
    """
    credential = get_credential(db, org_id, provider)
    if not credential or credential.needs_reconnect:
        raise NotConnected(f"{provider} calendar is not connected")

    if not _needs_refresh(credential.token_expires_at):
        return _to_handle(credential)

    # Serialize refreshes: lock the row, then re-check in case another
    # worker refreshed while we waited.
    db.refresh(credential, with_for_update=True)
    if not _needs_refresh(credential.token_expires_at):
        db.commit()
        return _to_handle(credential)

    if not credential.refresh_token_encrypted:
        db.rollback()
        raise AuthExpired("No refresh token stored; reconnect required")

    try:
        data = await refresh_google_token(decrypt_token(credential.refresh_token_encrypted))
    except Exception:
        db.rollback()
        raise

    credential.access_token_encrypted = encrypt_token(data["access_token"])
    if data.get("refresh_token"):
        credential.refresh_token_encrypted = encrypt_token(data["refresh_token"])
    if data.get("expires_in"):
        credential.token_expires_at = _now_utc() + timedelta(seconds=int(data["expires_in"]))
    else:
        credential.token_expires_at = _now_utc() + DEFAULT_REFRESHED_LIFETIME
    credential.needs_reconnect = False
    db.commit()

    logger.info("Refreshed %s access token org=%s", provider, org_id)
    return _to_handle(credential)
