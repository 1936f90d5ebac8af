"""Webhooks router - inbound provider events."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.core.rate_limit import limiter, voice_webhook_limit
from app.services.webhooks.registry import get_handler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/voice/{provider}/{org_id}")
@limiter.limit(voice_webhook_limit)
async def receive_voice_webhook(
    request: Request,
    provider: str,
    org_id: UUID,
    db: Session = Depends(get_db),
):
    """
    Receive a voice agent call event.

    Responses:
    - 200 {"ok": true} once the call is reconciled (redeliveries included)
    - 400 empty/invalid body, unsupported provider, missing agentId/callId
    - 401 unknown agent or bad signature
    - 413 payload too large, 429 rate limited
    - 500 processing failed (provider should retry)
    """
    try:
        handler = get_handler(provider.lower())
    except KeyError:
        logger.info("Voice webhook for unsupported provider: %s", provider)
        raise HTTPException(400, f"Unsupported provider: {provider}")
    return await handler.handle(request, db, org_id=org_id)
