import anyio
import pytest
from cryptography.fernet import Fernet

from app.core import encryption
from app.core.config import settings
from app.core.exceptions import AuthExpired, UpstreamUnavailable
from app.db.enums import AppointmentSource, IntegrationStatus, IntegrationType, SyncOutcome
from app.services import (
    calendar_push_service,
    calendar_settings_service,
    google_calendar_client,
    sync_state_service,
    token_vault,
)


class FakeCalendar:
    """Records calls made through google_calendar_client."""

    def __init__(self):
        self.inserted: list[tuple[str, dict]] = []
        self.patched: list[tuple[str, str, dict]] = []
        self.deleted: list[tuple[str, str]] = []
        self.next_id = 0

    async def insert_event(self, access_token, calendar_id, body):
        self.next_id += 1
        self.inserted.append((calendar_id, body))
        return {"id": f"evt_{self.next_id}", **body}

    async def patch_event(self, access_token, calendar_id, event_id, body):
        self.patched.append((calendar_id, event_id, body))
        return {"id": event_id, **body}

    async def delete_event(self, access_token, calendar_id, event_id):
        self.deleted.append((calendar_id, event_id))
        return True


@pytest.fixture
def fake_calendar(monkeypatch):
    fake = FakeCalendar()
    monkeypatch.setattr(google_calendar_client, "insert_event", fake.insert_event)
    monkeypatch.setattr(google_calendar_client, "patch_event", fake.patch_event)
    monkeypatch.setattr(google_calendar_client, "delete_event", fake.delete_event)
    return fake


@pytest.mark.asyncio
async def test_first_push_inserts_and_stamps_provenance(
    db, test_org, connected_calendar, fake_calendar, make_appointment
):
    appointment = make_appointment(test_org, staff_name="Alex")

    result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.SUCCESS
    assert result.event_id == "evt_1"
    assert len(fake_calendar.inserted) == 1
    calendar_id, body = fake_calendar.inserted[0]
    assert calendar_id == "primary"
    assert body["summary"] == "Haircut — Jane Doe · Alex"
    assert body["extendedProperties"]["private"] == {
        "source": settings.PROVENANCE_SOURCE,
        "bookingId": str(appointment.id),
    }
    assert body["start"]["timeZone"] == "Pacific/Auckland"
    assert body["attendees"] == [{"email": "jane@example.com"}]
    assert f"Booking ID: {appointment.id}" in body["description"]

    db.refresh(appointment)
    assert appointment.external_provider == "google"
    assert appointment.external_calendar_id == "primary"
    assert appointment.external_calendar_event_id == "evt_1"
    assert appointment.synced_at is not None


@pytest.mark.asyncio
async def test_second_push_patches_same_event(
    db, test_org, connected_calendar, fake_calendar, make_appointment
):
    appointment = make_appointment(test_org)
    await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    appointment.notes = "Bring reference photos"
    db.commit()
    result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    assert result.ok
    assert len(fake_calendar.inserted) == 1
    assert len(fake_calendar.patched) == 1
    _, event_id, body = fake_calendar.patched[0]
    assert event_id == "evt_1"
    assert body["description"].startswith("Bring reference photos")


@pytest.mark.asyncio
async def test_push_skipped_when_sync_disabled(
    db, test_org, connected_calendar, fake_calendar, make_appointment
):
    calendar_settings_service.update_calendar_settings(db, test_org.id, sync_enabled=False)
    appointment = make_appointment(test_org)

    result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.SKIPPED
    assert fake_calendar.inserted == []


@pytest.mark.asyncio
async def test_push_skipped_without_settings(db, test_org, fake_calendar, make_appointment):
    appointment = make_appointment(test_org)

    result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.SKIPPED


@pytest.mark.asyncio
async def test_push_skipped_for_busy_block(
    db, test_org, connected_calendar, fake_calendar, make_appointment
):
    block = make_appointment(
        test_org,
        customer_name="Busy",
        source=AppointmentSource.CALENDAR_BUSY.value,
        external_provider="google",
        external_calendar_id="primary",
        external_calendar_event_id="remote_1",
    )

    result = await calendar_push_service.push_appointment(db, test_org.id, block.id)

    assert result.outcome == SyncOutcome.SKIPPED
    assert fake_calendar.inserted == []
    assert fake_calendar.patched == []


@pytest.mark.asyncio
async def test_push_skipped_when_credential_missing(db, test_org, connected_calendar, fake_calendar, make_appointment):
    token_vault.delete_credential(db, test_org.id)
    appointment = make_appointment(test_org)

    result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.SKIPPED


@pytest.mark.asyncio
async def test_push_failure_is_recorded_not_raised(
    db, test_org, connected_calendar, make_appointment, monkeypatch
):
    async def _fail(*_args, **_kwargs):
        raise UpstreamUnavailable("Google Calendar insert failed (503)", status_code=503)

    monkeypatch.setattr(google_calendar_client, "insert_event", _fail)
    appointment = make_appointment(test_org)

    result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.FAILED
    db.refresh(appointment)
    assert appointment.external_calendar_event_id is None
    state = sync_state_service.get_sync_state(db, test_org.id, IntegrationType.GOOGLE_CALENDAR)
    assert state.status == IntegrationStatus.ERROR.value
    assert "503" in state.last_error
    assert sync_state_service.get_error_count_24h(db, test_org.id, IntegrationType.GOOGLE_CALENDAR) == 1


@pytest.mark.asyncio
async def test_auth_expired_marks_credential_for_reconnect(
    db, test_org, connected_calendar, make_appointment, monkeypatch
):
    async def _fail(*_args, **_kwargs):
        raise AuthExpired("Google rejected access token during insert")

    monkeypatch.setattr(google_calendar_client, "insert_event", _fail)
    appointment = make_appointment(test_org)

    result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.FAILED
    assert token_vault.get_credential(db, test_org.id).needs_reconnect is True


@pytest.mark.asyncio
async def test_success_clears_last_error(
    db, test_org, connected_calendar, fake_calendar, make_appointment
):
    sync_state_service.record_error(db, test_org.id, IntegrationType.GOOGLE_CALENDAR, "boom")
    appointment = make_appointment(test_org)

    await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    state = sync_state_service.get_sync_state(db, test_org.id, IntegrationType.GOOGLE_CALENDAR)
    assert state.status == IntegrationStatus.HEALTHY.value
    assert state.last_error is None
    assert state.last_success_at is not None


@pytest.mark.asyncio
async def test_delete_event_clears_provenance(
    db, test_org, connected_calendar, fake_calendar, make_appointment
):
    appointment = make_appointment(test_org)
    await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    result = await calendar_push_service.delete_appointment_event(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.SUCCESS
    assert fake_calendar.deleted == [("primary", "evt_1")]
    db.refresh(appointment)
    assert appointment.external_calendar_event_id is None
    assert appointment.external_provider is None


def test_push_appointment_sync_wrapper(db, test_org, connected_calendar, fake_calendar, make_appointment):
    appointment = make_appointment(test_org)

    result = calendar_push_service.push_appointment_sync(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.SUCCESS
    assert len(fake_calendar.inserted) == 1


@pytest.mark.asyncio
async def test_undecryptable_credential_is_recorded_not_raised(
    db, test_org, connected_calendar, fake_calendar, make_appointment, monkeypatch
):
    appointment = make_appointment(test_org)
    original_key = settings.FERNET_KEY
    # Key rotated without re-encrypting the stored tokens.
    monkeypatch.setattr(settings, "FERNET_KEY", Fernet.generate_key().decode())
    encryption.reset_fernet()
    try:
        result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)
    finally:
        monkeypatch.setattr(settings, "FERNET_KEY", original_key)
        encryption.reset_fernet()

    assert result.outcome == SyncOutcome.FAILED
    assert fake_calendar.inserted == []
    state = sync_state_service.get_sync_state(db, test_org.id, IntegrationType.GOOGLE_CALENDAR)
    assert state.status == IntegrationStatus.ERROR.value
    assert "encrypted token" in state.last_error


@pytest.mark.asyncio
async def test_failed_push_keeps_callers_pending_changes(
    db, test_org, connected_calendar, make_appointment, monkeypatch
):
    async def _fail(*_args, **_kwargs):
        raise UpstreamUnavailable("Google Calendar insert failed (503)", status_code=503)

    monkeypatch.setattr(google_calendar_client, "insert_event", _fail)
    appointment = make_appointment(test_org)
    appointment.notes = "rescheduled by customer"
    db.flush()

    result = await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.FAILED
    db.refresh(appointment)
    assert appointment.notes == "rescheduled by customer"
    assert appointment.external_calendar_event_id is None


@pytest.mark.asyncio
async def test_failed_delete_keeps_provenance(
    db, test_org, connected_calendar, fake_calendar, make_appointment, monkeypatch
):
    appointment = make_appointment(test_org)
    await calendar_push_service.push_appointment(db, test_org.id, appointment.id)

    async def _fail(*_args, **_kwargs):
        raise UpstreamUnavailable("Google Calendar delete failed (500)", status_code=500)

    monkeypatch.setattr(google_calendar_client, "delete_event", _fail)

    result = await calendar_push_service.delete_appointment_event(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.FAILED
    db.refresh(appointment)
    assert appointment.external_calendar_event_id == "evt_1"


def test_push_sync_wrapper_timeout_is_recorded(
    db, test_org, connected_calendar, make_appointment, monkeypatch
):
    async def _hang(*_args, **_kwargs):
        await anyio.sleep(5)

    monkeypatch.setattr(google_calendar_client, "insert_event", _hang)
    monkeypatch.setattr(settings, "CALENDAR_PUSH_TIMEOUT_SECONDS", 0.05)
    appointment = make_appointment(test_org)

    result = calendar_push_service.push_appointment_sync(db, test_org.id, appointment.id)

    assert result.outcome == SyncOutcome.FAILED
    assert "timed out" in result.message
    db.refresh(appointment)
    assert appointment.external_calendar_event_id is None
    state = sync_state_service.get_sync_state(db, test_org.id, IntegrationType.GOOGLE_CALENDAR)
    assert state.status == IntegrationStatus.ERROR.value
