"""Voice call payload normalization.

Providers send call events with drifting field names (snake_case, camelCase,
nested under "call", "data" or "metadata"). Each logical field has an
ordered tuple of dotted paths; the first present, non-empty value wins.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

from app.core.exceptions import MalformedPayload
from app.db.enums import CallDirection, CallOutcome
from app.schemas.voice import NormalizedCallEvent
from app.utils.datetime_parsing import parse_payload_datetime
from app.utils.normalization import clean_string, normalize_caller_phone, normalize_email

logger = logging.getLogger(__name__)

_AGENT_ID_PATHS = ("agent_id", "agentId", "agent.id", "call.agent_id", "call.agentId")
_CALL_ID_PATHS = ("call_id", "callId", "id", "call.id", "call.call_id")
_STARTED_AT_PATHS = (
    "started_at",
    "start_time",
    "startTime",
    "call.started_at",
    "call.start_time",
)
_ENDED_AT_PATHS = ("ended_at", "end_time", "endTime", "call.ended_at", "call.end_time")
_CALLER_PHONE_PATHS = (
    "caller_phone",
    "callerPhone",
    "from_number",
    "from",
    "phone",
    "call.from_number",
    "call.caller_phone",
)
_BUSINESS_PHONE_PATHS = ("to_number", "to", "called_number", "call.to_number", "call.to")
_DIRECTION_PATHS = ("direction", "call.direction")
_TRANSCRIPT_PATHS = ("transcript", "call.transcript", "call.summary")
_RECORDING_URL_PATHS = ("recording_url", "recordingUrl", "call.recording_url")
_OUTCOME_PATHS = ("outcome", "status", "call.status", "call.outcome")
_APPOINTMENT_ID_PATHS = (
    "appointmentId",
    "appointment_id",
    "bookingId",
    "booking_id",
    "data.appointmentId",
    "data.bookingId",
    "metadata.appointmentId",
    "metadata.bookingId",
    "metadata.appointment_id",
    "metadata.booking_id",
)
_CUSTOMER_NAME_PATHS = ("caller_name", "callerName", "customer.name", "customer_name", "customerName")
_CUSTOMER_EMAIL_PATHS = ("customer.email", "customer_email", "customerEmail")

# Checked in order; first match wins.
_OUTCOME_RULES: tuple[tuple[re.Pattern[str], CallOutcome], ...] = (
    (re.compile(r"no[_\s-]?answer|missed"), CallOutcome.NO_ANSWER),
    (re.compile(r"busy"), CallOutcome.BUSY),
    (re.compile(r"fail|error|hangup|dropped"), CallOutcome.FAILED),
    (re.compile(r"cancel"), CallOutcome.CANCELLED),
)


def _get_path(payload: Mapping[str, Any], path: str) -> Any:
    current: Any = payload
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def first_string(payload: Mapping[str, Any], paths: tuple[str, ...]) -> str | None:
    """First path whose value is a non-empty string (numbers are stringified)."""
    for path in paths:
        value = _get_path(payload, path)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        cleaned = clean_string(value)
        if cleaned:
            return cleaned
    return None


def first_truthy(payload: Mapping[str, Any], paths: tuple[str, ...]) -> Any:
    """First path whose value is truthy, of any type."""
    for path in paths:
        value = _get_path(payload, path)
        if value:
            return value
    return None


def map_outcome(value: Any) -> CallOutcome:
    """Map a provider status string onto CallOutcome (default COMPLETED)."""
    if not value:
        return CallOutcome.COMPLETED
    lowered = str(value).lower()
    for pattern, outcome in _OUTCOME_RULES:
        if pattern.search(lowered):
            return outcome
    return CallOutcome.COMPLETED


def map_direction(value: str | None) -> CallDirection:
    if value and "out" in value.lower():
        return CallDirection.OUTBOUND
    return CallDirection.INBOUND


def extract_agent_id(
    payload: Mapping[str, Any], headers: Mapping[str, str], provider: str = "retell"
) -> str | None:
    """Agent id from the body, else the x-<provider>-agent-id header."""
    agent_id = first_string(payload, _AGENT_ID_PATHS)
    if agent_id:
        return agent_id
    return clean_string(headers.get(f"x-{provider}-agent-id"))


def _parse_uuid(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        logger.info("Ignoring non-UUID appointment reference in call payload")
        return None


def normalize_call_payload(
    payload: Mapping[str, Any],
    headers: Mapping[str, str],
    *,
    provider: str = "retell",
    now: datetime | None = None,
) -> NormalizedCallEvent:
    """
    Reduce a provider call webhook to a NormalizedCallEvent.

    Raises:
        MalformedPayload: agent_id or call_id is missing
    """
    if not isinstance(payload, Mapping):
        raise MalformedPayload("body", "Payload must be a JSON object")

    agent_id = extract_agent_id(payload, headers, provider)
    if not agent_id:
        raise MalformedPayload("agentId")

    call_id = first_string(payload, _CALL_ID_PATHS)
    if not call_id:
        raise MalformedPayload("callId")

    started_at = parse_payload_datetime(first_truthy(payload, _STARTED_AT_PATHS))
    if started_at is None:
        started_at = now or datetime.now(timezone.utc)
    ended_at = parse_payload_datetime(first_truthy(payload, _ENDED_AT_PATHS))

    return NormalizedCallEvent(
        provider=provider,
        agent_id=agent_id,
        call_id=call_id,
        started_at=started_at,
        ended_at=ended_at,
        caller_phone=normalize_caller_phone(first_string(payload, _CALLER_PHONE_PATHS)),
        business_phone=normalize_caller_phone(first_string(payload, _BUSINESS_PHONE_PATHS)),
        direction=map_direction(first_string(payload, _DIRECTION_PATHS)),
        transcript=first_string(payload, _TRANSCRIPT_PATHS),
        recording_url=first_string(payload, _RECORDING_URL_PATHS),
        outcome=map_outcome(first_truthy(payload, _OUTCOME_PATHS)),
        appointment_id=_parse_uuid(first_string(payload, _APPOINTMENT_ID_PATHS)),
        customer_name=first_string(payload, _CUSTOMER_NAME_PATHS),
        customer_email=normalize_email(first_string(payload, _CUSTOMER_EMAIL_PATHS)),
        raw=dict(payload),
    )
