"""Voice agent call webhook handler."""

from __future__ import annotations

import json
import logging
from uuid import UUID

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import MalformedPayload, UnknownAgent
from app.core.structured_logging import build_log_context
from app.db.enums import IntegrationType
from app.services import (
    call_reconciliation_service,
    sync_state_service,
    voice_connection_service,
    voice_payload,
    webhook_signature,
)

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE = 300


async def _read_body_safe(request: Request, max_bytes: int) -> bytes:
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > max_bytes:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


class VoiceWebhookHandler:
    def __init__(self, provider: str):
        self.provider = provider

    def _signature_headers(self, request: Request) -> tuple[str | None, str | None]:
        signature = request.headers.get(f"x-{self.provider}-signature") or request.headers.get(
            f"{self.provider}-signature"
        )
        timestamp = request.headers.get(f"x-{self.provider}-timestamp")
        return signature, timestamp

    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive a voice agent call event for an organization.

        Security:
        - Payload size capped, body must be a JSON object
        - Agent must have an active connection for the org (401 otherwise)
        - HMAC signature checked against the agent's secret (and the previous
          secret during the rotation grace window)

        Processing:
        - Normalizes the payload, then reconciles Customer / Appointment /
          CallLog in one transaction; redeliveries update the same CallLog
        """
        org_id: UUID = kwargs["org_id"]

        body = await _read_body_safe(request, settings.VOICE_WEBHOOK_MAX_PAYLOAD_BYTES)
        if not body.strip():
            raise HTTPException(400, "Empty body")
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise HTTPException(400, "Invalid JSON")
        if not isinstance(payload, dict):
            raise HTTPException(400, "Payload must be a JSON object")

        try:
            event = voice_payload.normalize_call_payload(
                payload, request.headers, provider=self.provider
            )
        except MalformedPayload as exc:
            raise HTTPException(400, str(exc))

        log_ctx = build_log_context(
            org_id=org_id, provider=self.provider, agent_id=event.agent_id, call_id=event.call_id
        )

        try:
            connection = voice_connection_service.resolve_agent_connection(
                db, org_id, self.provider, event.agent_id
            )
        except UnknownAgent:
            logger.warning("Voice webhook for unknown agent", extra=log_ctx)
            raise HTTPException(401, "Unknown agent")

        self._check_signature(request, body, connection, log_ctx)

        try:
            call_log = call_reconciliation_service.reconcile_call_event(db, org_id, event)
            voice_connection_service.touch_last_webhook(db, connection)
            if await request.is_disconnected():
                db.rollback()
                logger.info("Voice webhook client disconnected; rolled back", extra=log_ctx)
                raise HTTPException(503, "Client disconnected")
            db.commit()
            sync_state_service.record_success(db, org_id, IntegrationType.VOICE_WEBHOOK)
        except HTTPException:
            raise
        except Exception as exc:
            db.rollback()
            logger.exception("Voice webhook processing failed", extra=log_ctx)
            self._record_failure(db, org_id, exc, log_ctx)
            raise HTTPException(500, "Internal error")

        logger.info("Voice webhook processed outcome=%s", call_log.outcome, extra=log_ctx)
        return {"ok": True}

    def _record_failure(self, db: Session, org_id: UUID, exc: Exception, log_ctx: dict) -> None:
        # Error tracking must not mask the 500 the provider retries on.
        try:
            sync_state_service.record_error(
                db,
                org_id,
                IntegrationType.VOICE_WEBHOOK,
                (str(exc) or exc.__class__.__name__)[:MAX_ERROR_MESSAGE],
            )
        except Exception:
            db.rollback()
            logger.exception("Failed to record voice webhook error", extra=log_ctx)

    def _check_signature(self, request: Request, body: bytes, connection, log_ctx: dict) -> None:
        enforced = settings.voice_signature_enforced
        secrets = voice_connection_service.verification_secrets(connection)
        signature, timestamp = self._signature_headers(request)

        if not secrets:
            if enforced:
                logger.warning("Voice webhook rejected: no secret configured", extra=log_ctx)
                raise HTTPException(401, "Invalid signature")
            logger.warning("Voice webhook accepted without secret (not enforced)", extra=log_ctx)
            return

        if webhook_signature.verify_with_secrets(body, signature, timestamp, secrets):
            return

        if enforced:
            logger.warning("Voice webhook invalid signature", extra=log_ctx)
            raise HTTPException(401, "Invalid signature")
        logger.warning(
            "Voice webhook signature mismatch accepted (VOICE_SIGNATURE_ENFORCEMENT=%s)",
            settings.VOICE_SIGNATURE_ENFORCEMENT,
            extra=log_ctx,
        )
