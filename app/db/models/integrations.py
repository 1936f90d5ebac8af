"""Per-org calendar credentials and sync settings."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import CalendarProvider
from app.db.types import GUID, utcnow


class IntegrationCredential(Base):
    """
    Encrypted OAuth tokens for an org's calendar provider.

    Only the token vault reads or writes these columns; everything else
    receives a short-lived access token.
    """

    __tablename__ = "integration_credentials"
    __table_args__ = (
        UniqueConstraint("organization_id", "provider", name="uq_integration_credential_org"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    account_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    needs_reconnect: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class CalendarSyncSettings(Base):
    """
    Calendar sync configuration, one row per organization.

    version is the optimistic-concurrency counter: a write based on a stale
    read fails with StaleDataError instead of clobbering a concurrent update.
    """

    __tablename__ = "calendar_sync_settings"
    __table_args__ = (
        UniqueConstraint("organization_id", name="uq_calendar_sync_settings_org"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(
        String(30), default=CalendarProvider.GOOGLE.value, nullable=False
    )
    connected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    __mapper_args__ = {"version_id_col": version}
