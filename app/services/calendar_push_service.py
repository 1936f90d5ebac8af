"""Calendar push - mirror local appointments onto the org's Google Calendar.

The remote event body is rebuilt from local state on every push, so a
PATCH always converges the remote copy onto the platform's version.
Push never raises: failures are logged, recorded in the sync state and
returned in the SyncResult so booking flows are never blocked.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, SessionTransaction

from app.core.async_utils import run_async
from app.core.config import settings
from app.core.exceptions import AuthExpired, NotConnected, SyncError
from app.core.structured_logging import build_log_context
from app.core.telemetry import mark_span_result, sync_span
from app.db.enums import CalendarProvider, IntegrationType, SyncOutcome
from app.db.models import Appointment, Organization
from app.services import (
    calendar_settings_service,
    google_calendar_client,
    sync_state_service,
    token_vault,
)
from app.services.sync_state_service import SyncResult
from app.utils.datetime_parsing import resolve_timezone

logger = logging.getLogger(__name__)


# =============================================================================
# Event body
# =============================================================================

def build_event_summary(appointment: Appointment) -> str:
    summary = f"{appointment.service_name or 'Appointment'} — {appointment.customer_name}"
    if appointment.staff_name:
        summary = f"{summary} · {appointment.staff_name}"
    return summary


def build_event_description(appointment: Appointment, organization: Organization) -> str:
    lines: list[str] = []
    if appointment.notes:
        lines.append(appointment.notes)
        lines.append("")
    lines.append(f"Created by {settings.APP_NAME}")
    lines.append(f"Booking ID: {appointment.id}")
    lines.append(f"Organization: {organization.name}")
    return "\n".join(lines)


def _event_time(value: datetime, tz_name: str) -> dict[str, str]:
    tz = resolve_timezone(tz_name, settings.DEFAULT_ORG_TIMEZONE)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return {"dateTime": value.astimezone(tz).isoformat(), "timeZone": tz.key}


def build_event_body(appointment: Appointment, organization: Organization) -> dict[str, Any]:
    """Google event resource for an appointment, tagged with the provenance marker."""
    body: dict[str, Any] = {
        "summary": build_event_summary(appointment),
        "description": build_event_description(appointment, organization),
        "start": _event_time(appointment.starts_at, organization.timezone),
        "end": _event_time(appointment.ends_at, organization.timezone),
        "extendedProperties": {
            "private": {
                "source": settings.PROVENANCE_SOURCE,
                "bookingId": str(appointment.id),
            }
        },
    }
    if appointment.customer_email:
        body["attendees"] = [{"email": appointment.customer_email}]
    return body


# =============================================================================
# Push / delete
# =============================================================================

def _undo(db: Session, savepoint: SessionTransaction | None) -> None:
    if savepoint is not None and savepoint.is_active:
        savepoint.rollback()
    else:
        # No savepoint, or a token refresh committed mid-push and closed it.
        db.rollback()


def _record_failure(
    db: Session, savepoint: SessionTransaction | None, org_id: UUID, exc: Exception
) -> SyncResult:
    """Undo the push's own writes, keeping whatever the caller had pending."""
    message = str(exc) or exc.__class__.__name__
    try:
        _undo(db, savepoint)
        if isinstance(exc, AuthExpired):
            token_vault.mark_needs_reconnect(db, org_id)
        sync_state_service.record_error(db, org_id, IntegrationType.GOOGLE_CALENDAR, message)
    except Exception:
        db.rollback()
        logger.exception("Failed to record calendar sync error org=%s", org_id)
    return SyncResult.failed(message)


async def _run_in_savepoint(db: Session, org_id: UUID, operation, log_ctx: dict) -> SyncResult:
    """
    Run one push step inside a SAVEPOINT and turn every failure into a SyncResult.

    Push runs on the booking flow's session, so a failure must only discard
    the push's writes. Success commits the session.
    """
    savepoint = None
    try:
        savepoint = db.begin_nested()
        result = await operation()
        if savepoint.is_active:
            savepoint.commit()
        if result.outcome == SyncOutcome.SUCCESS:
            db.commit()
            sync_state_service.record_success(db, org_id, IntegrationType.GOOGLE_CALENDAR)
    except NotConnected:
        _undo(db, savepoint)
        return SyncResult.skipped("No calendar credential")
    except SyncError as exc:
        logger.warning("Calendar push failed: %s", exc, extra=log_ctx)
        return _record_failure(db, savepoint, org_id, exc)
    except Exception as exc:
        logger.exception("Calendar push crashed", extra=log_ctx)
        return _record_failure(db, savepoint, org_id, exc)
    return result


async def push_appointment(db: Session, org_id: UUID, appointment_id: UUID) -> SyncResult:
    """
    Create or update the remote event for an appointment.

    Skips when sync is disabled, not connected, no calendar is selected or
    the appointment does not exist. Busy placeholders are never pushed.
    Never raises.
    """
    log_ctx = build_log_context(
        org_id=org_id, integration="google_calendar", appointment_id=appointment_id
    )
    with sync_span("push", org_id, appointment_id=appointment_id) as span:
        result = await _run_in_savepoint(
            db, org_id, lambda: _push_appointment(db, org_id, appointment_id), log_ctx
        )
        mark_span_result(span, result)
    if result.outcome == SyncOutcome.SUCCESS:
        logger.info("Calendar push ok event=%s", result.event_id, extra=log_ctx)
    return result


async def delete_appointment_event(db: Session, org_id: UUID, appointment_id: UUID) -> SyncResult:
    """Remove the remote event for a cancelled appointment and clear provenance."""
    log_ctx = build_log_context(
        org_id=org_id, integration="google_calendar", appointment_id=appointment_id
    )
    with sync_span("delete", org_id, appointment_id=appointment_id) as span:
        result = await _run_in_savepoint(
            db, org_id, lambda: _delete_appointment_event(db, org_id, appointment_id), log_ctx
        )
        mark_span_result(span, result)
    return result


async def _push_appointment(db: Session, org_id: UUID, appointment_id: UUID) -> SyncResult:
    sync_settings = calendar_settings_service.get_calendar_settings(db, org_id)
    if not calendar_settings_service.is_sync_ready(sync_settings):
        return SyncResult.skipped("Calendar sync not configured")

    appointment = (
        db.query(Appointment)
        .filter(Appointment.id == appointment_id, Appointment.organization_id == org_id)
        .first()
    )
    if not appointment:
        return SyncResult.skipped("Appointment not found")
    if appointment.is_busy_block:
        return SyncResult.skipped("Busy placeholders are not pushed")

    credential = await token_vault.get_valid_credential(db, org_id)
    body = build_event_body(appointment, db.get(Organization, org_id))

    if (
        appointment.external_calendar_event_id
        and appointment.external_provider == CalendarProvider.GOOGLE.value
    ):
        calendar_id = appointment.external_calendar_id or sync_settings.calendar_id
        await google_calendar_client.patch_event(
            credential.access_token,
            calendar_id,
            appointment.external_calendar_event_id,
            body,
        )
        event_id = appointment.external_calendar_event_id
    else:
        calendar_id = sync_settings.calendar_id
        created = await google_calendar_client.insert_event(
            credential.access_token, calendar_id, body
        )
        event_id = created["id"]
        appointment.external_provider = CalendarProvider.GOOGLE.value
        appointment.external_calendar_event_id = event_id
    appointment.external_calendar_id = calendar_id
    appointment.synced_at = datetime.now(timezone.utc)
    db.flush()
    return SyncResult(outcome=SyncOutcome.SUCCESS, event_id=event_id, touched=1)


async def _delete_appointment_event(db: Session, org_id: UUID, appointment_id: UUID) -> SyncResult:
    appointment = (
        db.query(Appointment)
        .filter(Appointment.id == appointment_id, Appointment.organization_id == org_id)
        .first()
    )
    if not appointment or not appointment.external_calendar_event_id:
        return SyncResult.skipped("No remote event")
    if appointment.external_provider != CalendarProvider.GOOGLE.value:
        return SyncResult.skipped("Remote event belongs to another provider")

    sync_settings = calendar_settings_service.get_calendar_settings(db, org_id)
    calendar_id = appointment.external_calendar_id or (
        sync_settings.calendar_id if sync_settings else None
    )
    if not calendar_id:
        return SyncResult.skipped("No calendar selected")

    credential = await token_vault.get_valid_credential(db, org_id)
    event_id = appointment.external_calendar_event_id
    await google_calendar_client.delete_event(credential.access_token, calendar_id, event_id)
    appointment.external_provider = None
    appointment.external_calendar_id = None
    appointment.external_calendar_event_id = None
    appointment.synced_at = None
    db.flush()
    return SyncResult(outcome=SyncOutcome.SUCCESS, event_id=event_id, deleted=1)


# =============================================================================
# Sync wrappers (for sync booking flows)
# =============================================================================

def _run_bounded(db: Session, org_id: UUID, coro) -> SyncResult:
    try:
        return run_async(coro, timeout=settings.CALENDAR_PUSH_TIMEOUT_SECONDS)
    except TimeoutError:
        logger.warning(
            "Calendar push timed out after %ss org=%s",
            settings.CALENDAR_PUSH_TIMEOUT_SECONDS,
            org_id,
        )
        return _record_failure(
            db, db.get_nested_transaction(), org_id, TimeoutError("Calendar push timed out")
        )


def push_appointment_sync(db: Session, org_id: UUID, appointment_id: UUID) -> SyncResult:
    """Best-effort push from sync code, bounded by CALENDAR_PUSH_TIMEOUT_SECONDS."""
    return _run_bounded(db, org_id, push_appointment(db, org_id, appointment_id))


def delete_appointment_event_sync(db: Session, org_id: UUID, appointment_id: UUID) -> SyncResult:
    return _run_bounded(db, org_id, delete_appointment_event(db, org_id, appointment_id))
