"""Sync health records (last success / last error per integration)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import IntegrationStatus
from app.db.types import GUID, utcnow


class IntegrationHealth(Base):
    """
    Per-org, per-integration sync status.

    Written after every calendar push/pull and voice webhook failure so the
    status page can show the last success and the last readable error.
    """

    __tablename__ = "integration_health"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "integration_type", name="uq_integration_health_org_type"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    integration_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=IntegrationStatus.HEALTHY.value, nullable=False
    )
    last_success_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class IntegrationErrorRollup(Base):
    """
    Hourly error counts per integration.

    Used to compute "errors in last 24h" as SUM(error_count) WHERE period_start > now() - 24h.
    """

    __tablename__ = "integration_error_rollup"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "integration_type",
            "period_start",
            name="uq_integration_error_rollup",
        ),
        Index(
            "ix_integration_error_rollup_lookup",
            "organization_id",
            "integration_type",
            "period_start",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    integration_type: Mapped[str] = mapped_column(String(50), nullable=False)
    period_start: Mapped[datetime] = mapped_column(nullable=False)  # Hour bucket
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
