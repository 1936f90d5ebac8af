"""Appointment enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: scheduled → completed
              ↘ cancelled
              ↘ no_show
    """

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class AppointmentSource(str, Enum):
    """Where an appointment row came from."""

    LOCAL = "local"  # Booked in the platform
    CALENDAR_BUSY = "calendar_busy"  # Placeholder for a foreign calendar event
    VOICE = "voice"  # Created from a voice agent call


class CalendarProvider(str, Enum):
    GOOGLE = "google"


DEFAULT_APPOINTMENT_STATUS = AppointmentStatus.SCHEDULED
