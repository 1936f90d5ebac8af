"""Sync core: tenants, appointments, call logs, calendar credentials, sync health

Revision ID: 0001_sync_core
Revises:
Create Date: 2026-10-17

Tables:
- organizations: Tenants (with IANA timezone)
- customers: Per-org customers keyed by normalized phone
- appointments: Bookings and busy placeholders with calendar provenance
- voice_agent_connections: Voice agent webhook secrets
- call_logs: One row per provider call
- integration_credentials: Encrypted OAuth tokens
- calendar_sync_settings: Per-org calendar selection (versioned)
- integration_health: Last success / last error per integration
- integration_error_rollup: Hourly error counts
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision = "0001_sync_core"
down_revision = None
branch_labels = None
depends_on = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _org_column() -> sa.Column:
    return sa.Column(
        "organization_id",
        UUID(as_uuid=True),
        sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")  # For gen_random_uuid()

    # ==========================================================================
    # Tenants and customers
    # ==========================================================================
    op.create_table(
        "organizations",
        _id_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column(
            "timezone", sa.String(64), nullable=False, server_default="Pacific/Auckland"
        ),
        _timestamp("created_at"),
        sa.UniqueConstraint("slug", name="uq_organizations_slug"),
    )

    op.create_table(
        "customers",
        _id_column(),
        _org_column(),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("organization_id", "phone", name="uq_customers_org_phone"),
    )
    op.create_index("idx_customers_org", "customers", ["organization_id"])

    # ==========================================================================
    # Appointments (bookings + busy placeholders)
    # ==========================================================================
    op.create_table(
        "appointments",
        _id_column(),
        _org_column(),
        sa.Column(
            "customer_id",
            UUID(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("service_name", sa.String(255), nullable=True),
        sa.Column("staff_name", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status", sa.String(20), nullable=False, server_default="scheduled"
        ),  # scheduled, completed, cancelled, no_show
        sa.Column(
            "source", sa.String(20), nullable=False, server_default="local"
        ),  # local, calendar_busy, voice
        sa.Column("external_provider", sa.String(20), nullable=True),
        sa.Column("external_calendar_id", sa.String(255), nullable=True),
        sa.Column("external_calendar_event_id", sa.String(255), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "external_calendar_event_id IS NULL OR external_provider IS NOT NULL",
            name="ck_appointments_event_requires_provider",
        ),
        sa.UniqueConstraint(
            "organization_id",
            "external_provider",
            "external_calendar_event_id",
            name="uq_appointments_org_external_event",
        ),
    )
    op.create_index(
        "idx_appointments_org_range",
        "appointments",
        ["organization_id", "starts_at", "ends_at"],
    )

    # ==========================================================================
    # Voice calls
    # ==========================================================================
    op.create_table(
        "voice_agent_connections",
        _id_column(),
        _org_column(),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("agent_id", sa.String(255), nullable=False),
        sa.Column("webhook_secret_encrypted", sa.Text, nullable=True),
        sa.Column("previous_webhook_secret_encrypted", sa.Text, nullable=True),
        sa.Column("secret_rotated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_webhook_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint(
            "organization_id", "provider", "agent_id", name="uq_voice_agent_connection"
        ),
    )

    op.create_table(
        "call_logs",
        _id_column(),
        _org_column(),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("agent_id", sa.String(255), nullable=False),
        sa.Column("call_id", sa.String(255), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("caller_phone", sa.String(50), nullable=False, server_default="unknown"),
        sa.Column("business_phone", sa.String(50), nullable=True),
        sa.Column("direction", sa.String(10), nullable=False, server_default="inbound"),
        sa.Column("transcript", sa.Text, nullable=True),
        sa.Column("recording_url", sa.Text, nullable=True),
        sa.Column(
            "outcome", sa.String(20), nullable=False, server_default="completed"
        ),  # completed, no_answer, busy, failed, cancelled
        sa.Column(
            "appointment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("appointments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("raw_payload", JSONB, nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("organization_id", "call_id", name="uq_call_logs_org_call"),
    )
    op.create_index(
        "idx_call_logs_org_started", "call_logs", ["organization_id", "started_at"]
    )

    # ==========================================================================
    # Calendar credentials + settings
    # ==========================================================================
    op.create_table(
        "integration_credentials",
        _id_column(),
        _org_column(),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("access_token_encrypted", sa.Text, nullable=False),
        sa.Column("refresh_token_encrypted", sa.Text, nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("account_email", sa.String(255), nullable=True),
        sa.Column("needs_reconnect", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint(
            "organization_id", "provider", name="uq_integration_credential_org"
        ),
    )

    op.create_table(
        "calendar_sync_settings",
        _id_column(),
        _org_column(),
        sa.Column("provider", sa.String(30), nullable=False, server_default="google"),
        sa.Column("connected", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("calendar_id", sa.String(255), nullable=True),
        sa.Column("account_email", sa.String(255), nullable=True),
        sa.Column("sync_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("organization_id", name="uq_calendar_sync_settings_org"),
    )

    # ==========================================================================
    # Sync health
    # ==========================================================================
    op.create_table(
        "integration_health",
        _id_column(),
        _org_column(),
        sa.Column(
            "integration_type", sa.String(50), nullable=False
        ),  # google_calendar, voice_webhook
        sa.Column(
            "status", sa.String(20), nullable=False, server_default="healthy"
        ),  # healthy, error
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint(
            "organization_id", "integration_type", name="uq_integration_health_org_type"
        ),
    )

    # integration_error_rollup - hourly error counts for computing 24h totals
    op.create_table(
        "integration_error_rollup",
        _id_column(),
        _org_column(),
        sa.Column("integration_type", sa.String(50), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("error_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "organization_id",
            "integration_type",
            "period_start",
            name="uq_integration_error_rollup",
        ),
    )
    op.create_index(
        "ix_integration_error_rollup_lookup",
        "integration_error_rollup",
        ["organization_id", "integration_type", "period_start"],
    )


def downgrade() -> None:
    op.drop_index("ix_integration_error_rollup_lookup", table_name="integration_error_rollup")
    op.drop_table("integration_error_rollup")
    op.drop_table("integration_health")
    op.drop_table("calendar_sync_settings")
    op.drop_table("integration_credentials")
    op.drop_index("idx_call_logs_org_started", table_name="call_logs")
    op.drop_table("call_logs")
    op.drop_table("voice_agent_connections")
    op.drop_index("idx_appointments_org_range", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("idx_customers_org", table_name="customers")
    op.drop_table("customers")
    op.drop_table("organizations")
