"""Appointment model with external calendar provenance."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import AppointmentSource, AppointmentStatus
from app.db.types import GUID, utcnow

if TYPE_CHECKING:
    from app.db.models import Customer, Organization


class Appointment(Base):
    """
    A booked appointment or a busy placeholder mirrored from a calendar.

    The provenance tuple (external_provider, external_calendar_id,
    external_calendar_event_id, synced_at) links the row to a remote
    calendar event. A remote event id is held by at most one row per org,
    so a busy block and a platform appointment never share an event.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint(
            "external_calendar_event_id IS NULL OR external_provider IS NOT NULL",
            name="event_requires_provider",
        ),
        UniqueConstraint(
            "organization_id",
            "external_provider",
            "external_calendar_event_id",
            name="uq_appointments_org_external_event",
        ),
        Index("idx_appointments_org_range", "organization_id", "starts_at", "ends_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )

    # Contact snapshot (kept even if the customer row changes)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    service_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    starts_at: Mapped[datetime] = mapped_column(nullable=False)
    ends_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.SCHEDULED.value, nullable=False
    )
    source: Mapped[str] = mapped_column(
        String(20), default=AppointmentSource.LOCAL.value, nullable=False
    )

    # External calendar provenance
    external_provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    external_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_calendar_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    organization: Mapped["Organization"] = relationship()
    customer: Mapped["Customer | None"] = relationship()

    @property
    def is_busy_block(self) -> bool:
        return self.source == AppointmentSource.CALENDAR_BUSY.value
