"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron (Render/Railway/GH Actions).
"""
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_db, verify_internal_secret
from app.db.enums import VoiceProvider
from app.db.models import Organization
from app.schemas.integrations import (
    CalendarPullRequest,
    CalendarPullResponse,
    SecretReencryptResponse,
)
from app.schemas.voice import VoiceConnectionRotateRequest, VoiceConnectionRotateResponse
from app.services import calendar_pull_service, token_vault, voice_connection_service

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)
logger = logging.getLogger(__name__)


@router.post("/scheduled/google-calendar-pull", response_model=CalendarPullResponse)
async def run_google_calendar_pull(body: CalendarPullRequest | None = None):
    """
    Pull remote calendar events for every sync-ready organization.

    Defaults to today through 30 days ahead.
    """
    body = body or CalendarPullRequest()
    default_start, default_end = calendar_pull_service.default_pull_window()
    range_start = body.range_start or default_start
    range_end = body.range_end or (range_start + (default_end - default_start))
    if range_end <= range_start:
        raise HTTPException(400, "range_end must be after range_start")

    counts = await calendar_pull_service.pull_all_organizations(
        range_start, range_end, org_id=body.organization_id
    )
    return CalendarPullResponse(**counts)


@router.post("/voice-connections/rotate", response_model=VoiceConnectionRotateResponse)
def rotate_voice_connection_secret(
    body: VoiceConnectionRotateRequest,
    db: Session = Depends(get_db),
):
    """Create or rotate a voice agent's webhook secret (returned once)."""
    provider = body.provider.lower()
    if provider not in {p.value for p in VoiceProvider}:
        raise HTTPException(400, f"Unsupported provider: {body.provider}")
    if not db.get(Organization, body.organization_id):
        raise HTTPException(404, "Organization not found")

    connection, secret = voice_connection_service.rotate_webhook_secret(
        db, body.organization_id, provider, body.agent_id
    )
    valid_until = None
    if connection.previous_webhook_secret_encrypted and connection.secret_rotated_at:
        valid_until = connection.secret_rotated_at + timedelta(
            seconds=settings.WEBHOOK_SECRET_GRACE_SECONDS
        )
    return VoiceConnectionRotateResponse(
        connection_id=connection.id,
        agent_id=connection.agent_id,
        webhook_secret=secret,
        previous_secret_valid_until=valid_until,
    )


@router.post("/encryption/reencrypt", response_model=SecretReencryptResponse)
def reencrypt_secrets(db: Session = Depends(get_db)):
    """
    Re-encrypt stored secrets under the first FERNET_KEY.

    Step two of key rotation: prepend the new key, deploy, call this, then
    drop the old key.
    """
    try:
        counts = token_vault.reencrypt_secrets(db)
    except ValueError as exc:
        db.rollback()
        logger.error("Secret re-encryption aborted: %s", exc)
        raise HTTPException(409, "A stored secret could not be decrypted with any configured key")
    return SecretReencryptResponse(**counts)
