"""Pydantic schemas for API request/response models."""

from app.schemas.integrations import (
    CalendarAuthStartResponse,
    CalendarConnectionStatus,
    CalendarListItem,
    CalendarPullRequest,
    CalendarPullResponse,
    CalendarSelectRequest,
)
from app.schemas.voice import (
    NormalizedCallEvent,
    VoiceConnectionRotateRequest,
    VoiceConnectionRotateResponse,
    VoiceWebhookAck,
)
