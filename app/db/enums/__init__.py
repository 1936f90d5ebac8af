"""Enum definitions for application constants."""

from app.db.enums.appointments import (
    AppointmentSource,
    AppointmentStatus,
    CalendarProvider,
    DEFAULT_APPOINTMENT_STATUS,
)
from app.db.enums.calls import CallDirection, CallOutcome, VoiceProvider
from app.db.enums.integration_health import (
    IntegrationStatus,
    IntegrationType,
    SyncOutcome,
)

__all__ = [
    "AppointmentSource",
    "AppointmentStatus",
    "CalendarProvider",
    "CallDirection",
    "CallOutcome",
    "DEFAULT_APPOINTMENT_STATUS",
    "IntegrationStatus",
    "IntegrationType",
    "SyncOutcome",
    "VoiceProvider",
]
