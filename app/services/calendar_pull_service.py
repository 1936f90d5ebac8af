"""Calendar pull - bring remote Google Calendar events back into local state.

For each event in the window:

- Platform-created events (private extendedProperties.source matches our
  marker and carry a bookingId), or events already linked to a local
  appointment, update that appointment's times in place. Pull never
  creates a row for them, so push-then-pull cannot duplicate.
- Any other event becomes a busy placeholder keyed by its remote id.
  Unchanged ranges are a no-op; moved events are updated in place.

Busy placeholders whose remote event disappeared from the window are
removed, unless the listing was truncated.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import anyio
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import AuthExpired, SyncError
from app.core.structured_logging import build_log_context
from app.core.telemetry import mark_span_result, sync_span
from app.db.enums import AppointmentSource, AppointmentStatus, CalendarProvider, IntegrationType, SyncOutcome
from app.db.models import Appointment, CalendarSyncSettings, Organization
from app.db.session import SessionLocal
from app.db.upsert import upsert_insert
from app.services import google_calendar_client, sync_state_service, token_vault
from app.services.sync_state_service import SyncResult
from app.utils.datetime_parsing import all_day_window, parse_google_datetime, resolve_timezone

logger = logging.getLogger(__name__)

BUSY_PLACEHOLDER_NAME = "Busy"
DEFAULT_PULL_WINDOW_DAYS = 30


def _event_window(item: dict[str, Any], tz) -> tuple[datetime, datetime] | None:
    start = item.get("start") or {}
    end = item.get("end") or {}
    if "date" in start and "dateTime" not in start:
        return all_day_window(start.get("date"), end.get("date"), tz)
    start_dt = parse_google_datetime(start.get("dateTime"))
    end_dt = parse_google_datetime(end.get("dateTime"))
    if not start_dt or not end_dt:
        return None
    return start_dt, end_dt


def _platform_booking_id(item: dict[str, Any]) -> UUID | None:
    """bookingId from our provenance marker, or None for foreign events."""
    private = (item.get("extendedProperties") or {}).get("private") or {}
    if private.get("source") != settings.PROVENANCE_SOURCE:
        return None
    booking_id = private.get("bookingId")
    if not booking_id:
        return None
    try:
        return uuid.UUID(str(booking_id))
    except ValueError:
        return None


def _stamp_provenance(appointment: Appointment, calendar_id: str, event_id: str, now: datetime) -> None:
    appointment.external_provider = CalendarProvider.GOOGLE.value
    appointment.external_calendar_id = calendar_id
    appointment.external_calendar_event_id = event_id
    appointment.synced_at = now


def _set_times(appointment: Appointment, start: datetime, end: datetime) -> bool:
    if appointment.starts_at == start and appointment.ends_at == end:
        return False
    appointment.starts_at = start
    appointment.ends_at = end
    return True


def _load_linked(db: Session, org_id: UUID, event_ids: list[str]) -> dict[str, Appointment]:
    if not event_ids:
        return {}
    rows = (
        db.query(Appointment)
        .filter(
            Appointment.organization_id == org_id,
            Appointment.external_provider == CalendarProvider.GOOGLE.value,
            Appointment.external_calendar_event_id.in_(event_ids),
        )
        .all()
    )
    return {row.external_calendar_event_id: row for row in rows}


def _create_busy_block(
    db: Session,
    org_id: UUID,
    calendar_id: str,
    event_id: str,
    name: str,
    start: datetime,
    end: datetime,
    now: datetime,
) -> bool:
    """Insert a busy placeholder; False if a concurrent pull already created it."""
    stmt = (
        upsert_insert(db, Appointment)
        .values(
            id=uuid.uuid4(),
            organization_id=org_id,
            customer_name=name,
            starts_at=start,
            ends_at=end,
            status=AppointmentStatus.SCHEDULED.value,
            source=AppointmentSource.CALENDAR_BUSY.value,
            external_provider=CalendarProvider.GOOGLE.value,
            external_calendar_id=calendar_id,
            external_calendar_event_id=event_id,
            synced_at=now,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(
            index_elements=["organization_id", "external_provider", "external_calendar_event_id"]
        )
    )
    return db.execute(stmt).rowcount == 1


def _apply_events(
    db: Session,
    org_id: UUID,
    calendar_id: str,
    items: list[dict[str, Any]],
    tz,
    result: SyncResult,
) -> set[str]:
    """Merge remote events; returns the event ids seen (not cancelled)."""
    now = datetime.now(timezone.utc)
    active = [item for item in items if item.get("id") and item.get("status") != "cancelled"]
    linked = _load_linked(db, org_id, [item["id"] for item in active])
    seen: set[str] = set()

    for item in active:
        event_id = item["id"]
        window = _event_window(item, tz)
        if window is None:
            logger.debug("Skipping event %s with unparseable times", event_id)
            continue
        start, end = window
        seen.add(event_id)
        existing = linked.get(event_id)

        booking_id = _platform_booking_id(item)
        platform_appt: Appointment | None = None
        if booking_id:
            platform_appt = (
                db.query(Appointment)
                .filter(Appointment.id == booking_id, Appointment.organization_id == org_id)
                .first()
            )
            if platform_appt is None:
                logger.info("Platform event %s references a missing appointment", event_id)
                continue
        elif existing is not None and not existing.is_busy_block:
            platform_appt = existing

        if platform_appt is not None:
            if existing is not None and existing.id != platform_appt.id:
                if not existing.is_busy_block:
                    logger.warning("Event %s is linked to two appointments; skipping", event_id)
                    continue
                # A busy block was mirrored before push stamped the event id.
                db.delete(existing)
                db.flush()
                result.deleted += 1
            _set_times(platform_appt, start, end)
            _stamp_provenance(platform_appt, calendar_id, event_id, now)
            result.touched += 1
            continue

        name = (item.get("summary") or "").strip() or BUSY_PLACEHOLDER_NAME
        if existing is not None:
            changed = _set_times(existing, start, end)
            if existing.customer_name != name:
                existing.customer_name = name
                changed = True
            if existing.external_calendar_id != calendar_id:
                existing.external_calendar_id = calendar_id
                changed = True
            if changed:
                existing.synced_at = now
                result.updated += 1
            continue

        if _create_busy_block(db, org_id, calendar_id, event_id, name, start, end, now):
            result.created += 1

    return seen


def _prune_stale_busy_blocks(
    db: Session,
    org_id: UUID,
    calendar_id: str,
    range_start: datetime,
    range_end: datetime,
    seen: set[str],
) -> int:
    stale = (
        db.query(Appointment)
        .filter(
            Appointment.organization_id == org_id,
            Appointment.source == AppointmentSource.CALENDAR_BUSY.value,
            Appointment.external_provider == CalendarProvider.GOOGLE.value,
            Appointment.external_calendar_id == calendar_id,
            Appointment.starts_at < range_end,
            Appointment.ends_at > range_start,
        )
        .all()
    )
    removed = 0
    for block in stale:
        if block.external_calendar_event_id not in seen:
            db.delete(block)
            removed += 1
    return removed


async def pull_range(
    db: Session,
    org_id: UUID,
    calendar_id: str,
    range_start: datetime,
    range_end: datetime,
) -> SyncResult:
    """
    Pull events in [range_start, range_end) from a calendar.

    Never raises. Success clears the last sync error; any failure rolls
    back the partial merge and records a readable error.
    """
    with sync_span(
        "pull",
        org_id,
        calendar_id=calendar_id,
        range_start=range_start.isoformat(),
        range_end=range_end.isoformat(),
    ) as span:
        result = await _pull_range(db, org_id, calendar_id, range_start, range_end)
        mark_span_result(span, result)
    return result


async def _pull_range(
    db: Session,
    org_id: UUID,
    calendar_id: str,
    range_start: datetime,
    range_end: datetime,
) -> SyncResult:
    log_ctx = build_log_context(org_id=org_id, integration="google_calendar")
    result = SyncResult(outcome=SyncOutcome.SUCCESS)

    try:
        organization = db.get(Organization, org_id)
        if organization is None:
            return SyncResult.skipped("Organization not found")
        tz = resolve_timezone(organization.timezone, settings.DEFAULT_ORG_TIMEZONE)

        credential = await token_vault.get_valid_credential(db, org_id)
        listing = await google_calendar_client.list_events(
            credential.access_token,
            calendar_id,
            range_start.isoformat(),
            range_end.isoformat(),
        )

        seen = _apply_events(db, org_id, calendar_id, listing["items"], tz, result)
        if listing["truncated"]:
            logger.warning("Skipping busy block cleanup: listing truncated", extra=log_ctx)
        else:
            result.deleted += _prune_stale_busy_blocks(
                db, org_id, calendar_id, range_start, range_end, seen
            )
        db.commit()
    except Exception as exc:
        message = str(exc) or exc.__class__.__name__
        if isinstance(exc, SyncError):
            logger.warning("Calendar pull failed: %s", message, extra=log_ctx)
        else:
            logger.exception("Calendar pull crashed", extra=log_ctx)
        db.rollback()
        if isinstance(exc, AuthExpired):
            token_vault.mark_needs_reconnect(db, org_id)
        sync_state_service.record_error(db, org_id, IntegrationType.GOOGLE_CALENDAR, message)
        return SyncResult.failed(message)

    sync_state_service.record_success(db, org_id, IntegrationType.GOOGLE_CALENDAR)
    logger.info(
        "Calendar pull ok touched=%s created=%s updated=%s deleted=%s",
        result.touched,
        result.created,
        result.updated,
        result.deleted,
        extra=log_ctx,
    )
    return result


def default_pull_window(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Start of today (UTC) through DEFAULT_PULL_WINDOW_DAYS ahead."""
    now = now or datetime.now(timezone.utc)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=DEFAULT_PULL_WINDOW_DAYS)


def _sync_ready_targets(db: Session, org_id: UUID | None = None) -> list[tuple[UUID, str]]:
    query = db.query(CalendarSyncSettings).filter(
        CalendarSyncSettings.sync_enabled.is_(True),
        CalendarSyncSettings.connected.is_(True),
        CalendarSyncSettings.calendar_id.isnot(None),
    )
    if org_id:
        query = query.filter(CalendarSyncSettings.organization_id == org_id)
    return [(row.organization_id, row.calendar_id) for row in query.all()]


async def pull_all_organizations(
    range_start: datetime,
    range_end: datetime,
    *,
    org_id: UUID | None = None,
    max_concurrency: int | None = None,
) -> dict[str, int]:
    """
    Pull every sync-ready organization with bounded concurrency.

    Each organization gets its own session; one failure never stops the sweep.
    """
    with SessionLocal() as db:
        targets = _sync_ready_targets(db, org_id)

    limiter = anyio.CapacityLimiter(max_concurrency or settings.CALENDAR_SYNC_MAX_CONCURRENCY)
    counts = {"organizations": len(targets), "succeeded": 0, "failed": 0, "skipped": 0}

    async def _pull_one(target_org_id: UUID, calendar_id: str) -> None:
        async with limiter:
            with SessionLocal() as org_db:
                result = await pull_range(org_db, target_org_id, calendar_id, range_start, range_end)
        if result.outcome == SyncOutcome.SUCCESS:
            counts["succeeded"] += 1
        elif result.outcome == SyncOutcome.SKIPPED:
            counts["skipped"] += 1
        else:
            counts["failed"] += 1

    async with anyio.create_task_group() as tg:
        for target_org_id, calendar_id in targets:
            tg.start_soon(_pull_one, target_org_id, calendar_id)

    logger.info("Calendar pull sweep finished: %s", counts)
    return counts
