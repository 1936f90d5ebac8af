"""
Sync state tracking.

Records the last success and last error per organization and integration
(calendar sync, voice webhook) plus hourly error rollups, so failures are
queryable instead of living only in logs.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.enums import IntegrationStatus, IntegrationType, SyncOutcome
from app.db.models import IntegrationErrorRollup, IntegrationHealth
from app.db.upsert import upsert_insert

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


@dataclass
class SyncResult:
    """Outcome of one push or pull attempt."""

    outcome: SyncOutcome
    message: str | None = None
    event_id: str | None = None
    touched: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome != SyncOutcome.FAILED

    @classmethod
    def skipped(cls, reason: str) -> "SyncResult":
        return cls(outcome=SyncOutcome.SKIPPED, message=reason)

    @classmethod
    def failed(cls, message: str) -> "SyncResult":
        return cls(outcome=SyncOutcome.FAILED, message=message)


def get_hour_bucket(dt: datetime | None = None) -> datetime:
    """Get the start of the hour for a given datetime."""
    if dt is None:
        dt = datetime.now(timezone.utc)
    return dt.replace(minute=0, second=0, microsecond=0)


def get_sync_state(
    db: Session,
    org_id: UUID,
    integration_type: IntegrationType,
) -> IntegrationHealth | None:
    return (
        db.query(IntegrationHealth)
        .filter(
            IntegrationHealth.organization_id == org_id,
            IntegrationHealth.integration_type == integration_type.value,
        )
        .first()
    )


def get_or_create_state(
    db: Session,
    org_id: UUID,
    integration_type: IntegrationType,
) -> IntegrationHealth:
    """Get or create the IntegrationHealth row (flushed, not committed)."""
    health = get_sync_state(db, org_id, integration_type)
    if not health:
        health = IntegrationHealth(
            organization_id=org_id,
            integration_type=integration_type.value,
            status=IntegrationStatus.HEALTHY.value,
        )
        db.add(health)
        db.flush()
    return health


def record_success(
    db: Session,
    org_id: UUID,
    integration_type: IntegrationType,
) -> IntegrationHealth:
    """Record a successful sync and clear the last error."""
    health = get_or_create_state(db, org_id, integration_type)
    health.last_success_at = datetime.now(timezone.utc)
    health.status = IntegrationStatus.HEALTHY.value
    health.last_error = None
    db.commit()
    return health


def record_error(
    db: Session,
    org_id: UUID,
    integration_type: IntegrationType,
    error_message: str,
) -> IntegrationHealth:
    """
    Record a sync error.

    Updates IntegrationHealth and increments the hourly error rollup.
    Commits on its own; callers roll back their failed work first.
    """
    now = datetime.now(timezone.utc)
    message = (error_message or "Unknown error")[:MAX_ERROR_LENGTH]

    health = get_or_create_state(db, org_id, integration_type)
    health.last_error_at = now
    health.last_error = message
    health.status = IntegrationStatus.ERROR.value

    stmt = upsert_insert(db, IntegrationErrorRollup).values(
        organization_id=org_id,
        integration_type=integration_type.value,
        period_start=get_hour_bucket(now),
        error_count=1,
        last_error=message,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["organization_id", "integration_type", "period_start"],
        set_={
            "error_count": IntegrationErrorRollup.error_count + 1,
            "last_error": message,
        },
    )
    db.execute(stmt)
    db.commit()

    logger.warning(
        "Sync error recorded org=%s integration=%s: %s",
        org_id,
        integration_type.value,
        message[:200],
    )
    return health


def get_error_count_24h(
    db: Session,
    org_id: UUID,
    integration_type: IntegrationType,
) -> int:
    """Get error count for last 24 hours from rollups."""
    cutoff = get_hour_bucket(datetime.now(timezone.utc) - timedelta(hours=24))
    total = (
        db.query(func.coalesce(func.sum(IntegrationErrorRollup.error_count), 0))
        .filter(
            IntegrationErrorRollup.organization_id == org_id,
            IntegrationErrorRollup.integration_type == integration_type.value,
            IntegrationErrorRollup.period_start > cutoff,
        )
        .scalar()
    )
    return int(total or 0)
