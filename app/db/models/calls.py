"""Voice call logs and voice agent webhook connections."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import CallDirection, CallOutcome
from app.db.types import GUID, JSONType, utcnow

if TYPE_CHECKING:
    from app.db.models import Appointment


class VoiceAgentConnection(Base):
    """
    Webhook trust record for a voice agent.

    Requests are accepted for (organization, provider, agent_id) only while
    is_active. The previous secret stays valid for a grace window after
    rotation so in-flight deliveries still verify.
    """

    __tablename__ = "voice_agent_connections"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "provider", "agent_id", name="uq_voice_agent_connection"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(255), nullable=False)
    webhook_secret_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_webhook_secret_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    secret_rotated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_webhook_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class CallLog(Base):
    """
    One row per provider call, keyed by (organization_id, call_id).

    Redelivered webhooks update the row in place; raw_payload keeps the
    last delivered body verbatim.
    """

    __tablename__ = "call_logs"
    __table_args__ = (
        UniqueConstraint("organization_id", "call_id", name="uq_call_logs_org_call"),
        Index("idx_call_logs_org_started", "organization_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(255), nullable=False)
    call_id: Mapped[str] = mapped_column(String(255), nullable=False)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(nullable=True)
    caller_phone: Mapped[str] = mapped_column(String(50), default="unknown", nullable=False)
    business_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    direction: Mapped[str] = mapped_column(
        String(10), default=CallDirection.INBOUND.value, nullable=False
    )
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[str] = mapped_column(
        String(20), default=CallOutcome.COMPLETED.value, nullable=False
    )
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )
    raw_payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    appointment: Mapped["Appointment | None"] = relationship()
