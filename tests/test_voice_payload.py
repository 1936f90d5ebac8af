import uuid
from datetime import datetime, timezone

import pytest

from app.core.exceptions import MalformedPayload
from app.db.enums import CallDirection, CallOutcome
from app.services.voice_payload import map_outcome, normalize_call_payload
from app.utils.normalization import normalize_caller_phone


def test_snake_case_payload():
    event = normalize_call_payload(
        {
            "agent_id": "agent_1",
            "call_id": "call_1",
            "start_time": "2026-03-01T09:00:00Z",
            "end_time": "2026-03-01T09:05:00Z",
            "from_number": "+64 21 555 1234",
            "to_number": "+6495550000",
            "direction": "inbound",
            "transcript": "Hi, I'd like to book",
            "status": "ended",
        },
        {},
    )
    assert event.agent_id == "agent_1"
    assert event.call_id == "call_1"
    assert event.started_at == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert event.ended_at == datetime(2026, 3, 1, 9, 5, tzinfo=timezone.utc)
    assert event.caller_phone == "0215551234"
    assert event.business_phone == "095550000"
    assert event.direction == CallDirection.INBOUND
    assert event.outcome == CallOutcome.COMPLETED


def test_nested_call_object_and_epoch_ms():
    event = normalize_call_payload(
        {
            "event": "call_analyzed",
            "call": {
                "agent_id": "agent_2",
                "call_id": "call_2",
                "start_time": 1772355600000,
                "from_number": "021 555 9999",
                "direction": "outbound",
                "recording_url": "https://example.com/rec.wav",
            },
        },
        {},
    )
    assert event.agent_id == "agent_2"
    assert event.call_id == "call_2"
    assert event.started_at == datetime.fromtimestamp(1772355600, tz=timezone.utc)
    assert event.caller_phone == "0215559999"
    assert event.direction == CallDirection.OUTBOUND
    assert event.recording_url == "https://example.com/rec.wav"


def test_top_level_field_wins_over_nested():
    event = normalize_call_payload(
        {"agentId": "top", "callId": "call_3", "call": {"agent_id": "nested"}},
        {},
    )
    assert event.agent_id == "top"


def test_empty_value_falls_through_to_next_path():
    event = normalize_call_payload(
        {"agent_id": "  ", "agentId": "camel", "call_id": "call_4"},
        {},
    )
    assert event.agent_id == "camel"


def test_agent_id_from_header():
    event = normalize_call_payload({"call_id": "call_5"}, {"x-retell-agent-id": "hdr_agent"})
    assert event.agent_id == "hdr_agent"


def test_missing_call_id_raises():
    with pytest.raises(MalformedPayload) as exc:
        normalize_call_payload({"agent_id": "agent_1"}, {})
    assert exc.value.field == "callId"


def test_missing_agent_id_raises():
    with pytest.raises(MalformedPayload) as exc:
        normalize_call_payload({"call_id": "call_1"}, {})
    assert exc.value.field == "agentId"


def test_missing_start_defaults_to_now():
    now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
    event = normalize_call_payload({"agent_id": "a", "call_id": "c"}, {}, now=now)
    assert event.started_at == now
    assert event.ended_at is None


def test_appointment_reference_paths():
    appointment_id = uuid.uuid4()
    event = normalize_call_payload(
        {"agent_id": "a", "call_id": "c", "metadata": {"bookingId": str(appointment_id)}},
        {},
    )
    assert event.appointment_id == appointment_id


def test_non_uuid_appointment_reference_is_ignored():
    event = normalize_call_payload(
        {"agent_id": "a", "call_id": "c", "appointmentId": "not-a-uuid"},
        {},
    )
    assert event.appointment_id is None


def test_customer_fields():
    event = normalize_call_payload(
        {
            "agent_id": "a",
            "call_id": "c",
            "customer": {"name": "Sam Lee", "email": " Sam@Example.COM "},
        },
        {},
    )
    assert event.customer_name == "Sam Lee"
    assert event.customer_email == "sam@example.com"


def test_raw_payload_is_kept():
    payload = {"agent_id": "a", "call_id": "c", "extra": {"k": 1}}
    event = normalize_call_payload(payload, {})
    assert event.raw == payload


@pytest.mark.parametrize(
    "status, expected",
    [
        ("no_answer", CallOutcome.NO_ANSWER),
        ("no-answer", CallOutcome.NO_ANSWER),
        ("missed", CallOutcome.NO_ANSWER),
        ("line_busy", CallOutcome.BUSY),
        ("error", CallOutcome.FAILED),
        ("dial_failed", CallOutcome.FAILED),
        ("user_hangup", CallOutcome.FAILED),
        ("cancelled", CallOutcome.CANCELLED),
        ("ended", CallOutcome.COMPLETED),
        (None, CallOutcome.COMPLETED),
    ],
)
def test_map_outcome(status, expected):
    assert map_outcome(status) == expected


def test_phone_normalization():
    assert normalize_caller_phone("+64 21 555 1234") == "0215551234"
    assert normalize_caller_phone("021-555-1234") == "0215551234"
    assert normalize_caller_phone("+1 415 555 0000") == "14155550000"
    assert normalize_caller_phone("n/a") is None
    assert normalize_caller_phone(None) is None
