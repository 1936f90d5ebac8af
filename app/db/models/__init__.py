"""SQLAlchemy ORM models."""

from app.db.models.appointments import Appointment
from app.db.models.calls import CallLog, VoiceAgentConnection
from app.db.models.integration_health import IntegrationErrorRollup, IntegrationHealth
from app.db.models.integrations import CalendarSyncSettings, IntegrationCredential
from app.db.models.organizations import Customer, Organization

__all__ = [
    "Appointment",
    "CalendarSyncSettings",
    "CallLog",
    "Customer",
    "IntegrationCredential",
    "IntegrationErrorRollup",
    "IntegrationHealth",
    "Organization",
    "VoiceAgentConnection",
]
