from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.core.config import settings
from app.core.exceptions import AuthExpired, UpstreamUnavailable
from app.db.enums import AppointmentSource, IntegrationStatus, IntegrationType, SyncOutcome
from app.db.models import Appointment
from app.services import (
    calendar_pull_service,
    calendar_push_service,
    google_calendar_client,
    sync_state_service,
    token_vault,
)


def _event(event_id, start, end, summary="Dentist", booking_id=None, status="confirmed"):
    item = {
        "id": event_id,
        "status": status,
        "summary": summary,
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
    }
    if booking_id:
        item["extendedProperties"] = {
            "private": {"source": settings.PROVENANCE_SOURCE, "bookingId": str(booking_id)}
        }
    return item


class FakeListing:
    def __init__(self, items=None, truncated=False):
        self.items = items or []
        self.truncated = truncated
        self.calls = 0

    async def list_events(self, access_token, calendar_id, time_min, time_max, **_kwargs):
        self.calls += 1
        return {"items": list(self.items), "truncated": self.truncated}


@pytest.fixture
def listing(monkeypatch):
    fake = FakeListing()
    monkeypatch.setattr(google_calendar_client, "list_events", fake.list_events)
    return fake


@pytest.fixture
def window():
    start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=7)


def _tomorrow(hour: int) -> datetime:
    return datetime.now(timezone.utc).replace(
        hour=hour, minute=0, second=0, microsecond=0
    ) + timedelta(days=1)


def _busy_blocks(db, org_id):
    return (
        db.query(Appointment)
        .filter(
            Appointment.organization_id == org_id,
            Appointment.source == AppointmentSource.CALENDAR_BUSY.value,
        )
        .all()
    )


@pytest.mark.asyncio
async def test_foreign_event_becomes_busy_block(db, test_org, connected_calendar, listing, window):
    listing.items = [_event("remote_1", _tomorrow(14), _tomorrow(15), summary="School run")]

    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.outcome == SyncOutcome.SUCCESS
    assert result.created == 1
    blocks = _busy_blocks(db, test_org.id)
    assert len(blocks) == 1
    assert blocks[0].customer_name == "School run"
    assert blocks[0].external_calendar_event_id == "remote_1"
    assert blocks[0].starts_at == _tomorrow(14)


@pytest.mark.asyncio
async def test_repeated_pull_does_not_duplicate_busy_block(db, test_org, connected_calendar, listing, window):
    listing.items = [_event("remote_1", _tomorrow(14), _tomorrow(15))]

    await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)
    second = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert second.created == 0
    assert second.updated == 0
    assert len(_busy_blocks(db, test_org.id)) == 1


@pytest.mark.asyncio
async def test_moved_remote_event_updates_busy_block_in_place(
    db, test_org, connected_calendar, listing, window
):
    listing.items = [_event("remote_1", _tomorrow(14), _tomorrow(15))]
    await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)
    original_id = _busy_blocks(db, test_org.id)[0].id

    listing.items = [_event("remote_1", _tomorrow(16), _tomorrow(17))]
    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.updated == 1
    blocks = _busy_blocks(db, test_org.id)
    assert [b.id for b in blocks] == [original_id]
    assert blocks[0].starts_at == _tomorrow(16)
    assert blocks[0].ends_at == _tomorrow(17)


@pytest.mark.asyncio
async def test_push_then_pull_never_duplicates(
    db, test_org, connected_calendar, listing, window, make_appointment, monkeypatch
):
    async def _insert(access_token, calendar_id, body):
        return {"id": "evt_pushed", **body}

    monkeypatch.setattr(google_calendar_client, "insert_event", _insert)
    appointment = make_appointment(test_org)
    await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    listing.items = [
        _event(
            "evt_pushed",
            appointment.starts_at,
            appointment.ends_at,
            summary="Haircut — Jane Doe",
            booking_id=appointment.id,
        )
    ]
    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.touched == 1
    assert result.created == 0
    assert db.query(Appointment).filter(Appointment.organization_id == test_org.id).count() == 1


@pytest.mark.asyncio
async def test_remote_move_of_platform_event_updates_appointment_times(
    db, test_org, connected_calendar, listing, window, make_appointment
):
    appointment = make_appointment(test_org)
    listing.items = [
        _event("evt_unlinked", _tomorrow(12), _tomorrow(13), booking_id=appointment.id)
    ]

    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.touched == 1
    db.refresh(appointment)
    assert appointment.starts_at == _tomorrow(12)
    assert appointment.ends_at == _tomorrow(13)
    assert appointment.external_calendar_event_id == "evt_unlinked"
    assert appointment.source == AppointmentSource.LOCAL.value
    assert _busy_blocks(db, test_org.id) == []


@pytest.mark.asyncio
async def test_mixed_pull_touches_platform_and_creates_busy(
    db, test_org, connected_calendar, listing, window, make_appointment
):
    appointment = make_appointment(test_org)
    listing.items = [
        _event("evt_platform", appointment.starts_at, appointment.ends_at, booking_id=appointment.id),
        _event("evt_foreign", _tomorrow(15), _tomorrow(16), summary="Lunch"),
    ]

    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.outcome == SyncOutcome.SUCCESS
    assert result.touched == 1
    assert result.created == 1
    assert db.query(Appointment).filter(Appointment.organization_id == test_org.id).count() == 2


@pytest.mark.asyncio
async def test_platform_event_for_missing_booking_is_skipped(
    db, test_org, connected_calendar, listing, window
):
    import uuid

    listing.items = [_event("evt_orphan", _tomorrow(9), _tomorrow(10), booking_id=uuid.uuid4())]

    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.ok
    assert db.query(Appointment).count() == 0


@pytest.mark.asyncio
async def test_all_day_event_maps_to_working_hours(db, test_org, connected_calendar, listing, window):
    day = (datetime.now(timezone.utc) + timedelta(days=2)).date()
    listing.items = [
        {
            "id": "allday_1",
            "status": "confirmed",
            "summary": "Public holiday",
            "start": {"date": day.isoformat()},
            "end": {"date": (day + timedelta(days=1)).isoformat()},
        }
    ]

    await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    tz = ZoneInfo("Pacific/Auckland")
    block = _busy_blocks(db, test_org.id)[0]
    assert block.starts_at == datetime.combine(day, time(9, 0), tzinfo=tz).astimezone(timezone.utc)
    assert block.ends_at == datetime.combine(day, time(17, 0), tzinfo=tz).astimezone(timezone.utc)


@pytest.mark.asyncio
async def test_cancelled_events_are_ignored(db, test_org, connected_calendar, listing, window):
    listing.items = [_event("remote_x", _tomorrow(14), _tomorrow(15), status="cancelled")]

    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.created == 0
    assert _busy_blocks(db, test_org.id) == []


@pytest.mark.asyncio
async def test_stale_busy_blocks_are_pruned(db, test_org, connected_calendar, listing, window):
    listing.items = [_event("remote_1", _tomorrow(14), _tomorrow(15))]
    await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    listing.items = []
    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.deleted == 1
    assert _busy_blocks(db, test_org.id) == []


@pytest.mark.asyncio
async def test_truncated_listing_skips_pruning(db, test_org, connected_calendar, listing, window):
    listing.items = [_event("remote_1", _tomorrow(14), _tomorrow(15))]
    await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    listing.items = []
    listing.truncated = True
    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.deleted == 0
    assert len(_busy_blocks(db, test_org.id)) == 1


@pytest.mark.asyncio
async def test_upstream_failure_recorded_and_rolled_back(
    db, test_org, connected_calendar, window, monkeypatch
):
    async def _fail(*_args, **_kwargs):
        raise UpstreamUnavailable("Google Calendar list failed (500)", status_code=500)

    monkeypatch.setattr(google_calendar_client, "list_events", _fail)

    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.outcome == SyncOutcome.FAILED
    state = sync_state_service.get_sync_state(db, test_org.id, IntegrationType.GOOGLE_CALENDAR)
    assert state.status == IntegrationStatus.ERROR.value
    assert "500" in state.last_error
    assert token_vault.get_credential(db, test_org.id).needs_reconnect is False


@pytest.mark.asyncio
async def test_auth_expired_marks_reconnect(db, test_org, connected_calendar, window, monkeypatch):
    async def _fail(*_args, **_kwargs):
        raise AuthExpired("Google rejected access token during list")

    monkeypatch.setattr(google_calendar_client, "list_events", _fail)

    result = await calendar_pull_service.pull_range(db, test_org.id, "primary", *window)

    assert result.outcome == SyncOutcome.FAILED
    assert token_vault.get_credential(db, test_org.id).needs_reconnect is True


@pytest.mark.asyncio
async def test_pull_all_organizations_uses_sync_ready_orgs(
    db, test_org, connected_calendar, listing, window, monkeypatch
):
    class _TestSession:
        def __enter__(self):
            return db

        def __exit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr(calendar_pull_service, "SessionLocal", lambda: _TestSession())
    listing.items = [_event("remote_1", _tomorrow(14), _tomorrow(15))]

    counts = await calendar_pull_service.pull_all_organizations(*window)

    assert counts == {"organizations": 1, "succeeded": 1, "failed": 0, "skipped": 0}
    assert len(_busy_blocks(db, test_org.id)) == 1
