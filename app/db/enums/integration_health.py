"""Integration health enums."""

from enum import Enum


class IntegrationType(str, Enum):
    """Types of integrations tracked for sync health."""

    GOOGLE_CALENDAR = "google_calendar"
    VOICE_WEBHOOK = "voice_webhook"


class IntegrationStatus(str, Enum):
    """Health status of an integration."""

    HEALTHY = "healthy"
    ERROR = "error"


class SyncOutcome(str, Enum):
    """Result of a single push or pull attempt."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
