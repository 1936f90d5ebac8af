"""Calendar sync settings accessors.

Writes are targeted column updates guarded by the row's version counter, so
a concurrent OAuth callback and calendar selection cannot overwrite each
other's fields.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.db.models import CalendarSyncSettings

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {"provider", "connected", "calendar_id", "account_email", "sync_enabled"}
)


def get_calendar_settings(db: Session, org_id: UUID) -> CalendarSyncSettings | None:
    return (
        db.query(CalendarSyncSettings)
        .filter(CalendarSyncSettings.organization_id == org_id)
        .first()
    )


def _apply_patch(db: Session, org_id: UUID, patch: dict) -> CalendarSyncSettings:
    row = get_calendar_settings(db, org_id)
    if row is None:
        # Created with the patch applied so the insert is the only write.
        row = CalendarSyncSettings(organization_id=org_id, **patch)
        db.add(row)
    else:
        for field, value in patch.items():
            setattr(row, field, value)
    db.commit()
    db.refresh(row)
    return row


def update_calendar_settings(db: Session, org_id: UUID, **patch) -> CalendarSyncSettings:
    """
    Apply a partial update to the org's calendar settings and commit.

    Only the named fields change. A stale write (another request committed
    first) is retried once against a fresh read.
    """
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown calendar settings fields: {sorted(unknown)}")

    try:
        return _apply_patch(db, org_id, patch)
    except StaleDataError:
        db.rollback()
        logger.info("Calendar settings changed concurrently org=%s, retrying", org_id)
    return _apply_patch(db, org_id, patch)


def reset_calendar_settings(db: Session, org_id: UUID) -> CalendarSyncSettings:
    """Disconnect: clear connection fields, keep the row (and sync_enabled)."""
    return update_calendar_settings(
        db, org_id, connected=False, calendar_id=None, account_email=None
    )


def is_sync_ready(row: CalendarSyncSettings | None) -> bool:
    """True when pushes and pulls should run for this org."""
    return bool(row and row.sync_enabled and row.connected and row.calendar_id)
