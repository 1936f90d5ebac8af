"""Voice call schemas - normalized webhook events."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import CallDirection, CallOutcome


class NormalizedCallEvent(BaseModel):
    """A provider call webhook reduced to the fields reconciliation needs."""
    provider: str
    agent_id: str
    call_id: str
    started_at: datetime
    ended_at: datetime | None = None
    caller_phone: str | None = None
    business_phone: str | None = None
    direction: CallDirection = CallDirection.INBOUND
    transcript: str | None = None
    recording_url: str | None = None
    outcome: CallOutcome = CallOutcome.COMPLETED
    appointment_id: UUID | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class VoiceWebhookAck(BaseModel):
    ok: bool = True


class VoiceConnectionRotateRequest(BaseModel):
    """Rotate (or create) the webhook secret for a voice agent."""
    organization_id: UUID
    agent_id: str = Field(..., min_length=1, max_length=255)
    provider: str = "retell"


class VoiceConnectionRotateResponse(BaseModel):
    """The new secret is returned once and never readable again."""
    connection_id: UUID
    agent_id: str
    webhook_secret: str
    previous_secret_valid_until: datetime | None
