"""Calendar integration schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class CalendarConnectionStatus(BaseModel):
    """Connection status for the calendar settings page."""
    connected: bool
    account_email: str | None = None
    calendar_id: str | None = None
    last_sync_at: datetime | None = None
    last_error: str | None = None
    needs_reconnect: bool = False


class CalendarAuthStartResponse(BaseModel):
    auth_url: str


class CalendarListItem(BaseModel):
    id: str
    summary: str
    primary: bool = False


class CalendarSelectRequest(BaseModel):
    calendar_id: str = Field(..., min_length=1, max_length=255)


class CalendarPullRequest(BaseModel):
    """Window for a scheduled pull; defaults to today through 30 days ahead."""
    range_start: datetime | None = None
    range_end: datetime | None = None
    organization_id: UUID | None = None


class CalendarPullResponse(BaseModel):
    organizations: int
    succeeded: int
    failed: int
    skipped: int


class SecretReencryptResponse(BaseModel):
    credentials: int
    voice_connections: int
