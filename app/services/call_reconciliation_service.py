"""Call reconciliation - merge a normalized call event into local state once.

Runs inside the caller's transaction and only flushes; the webhook handler
decides whether to commit. Delivery is at-least-once, so every write here is
keyed on a unique constraint:

- Customer on (organization_id, phone)
- CallLog on (organization_id, call_id) via INSERT ... ON CONFLICT DO UPDATE
"""

import logging
import uuid
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.models import Appointment, CallLog, Customer
from app.db.upsert import upsert_insert
from app.schemas.voice import NormalizedCallEvent

logger = logging.getLogger(__name__)

UNKNOWN_CALLER = "unknown"


def _match_customer(db: Session, org_id: UUID, event: NormalizedCallEvent) -> Customer | None:
    """
    Find or create the customer for the caller's phone.

    Existing customers only get name/email patched with non-empty values.
    A new customer is created only when the payload carries a name.
    """
    if not event.caller_phone:
        return None

    customer = (
        db.query(Customer)
        .filter(Customer.organization_id == org_id, Customer.phone == event.caller_phone)
        .first()
    )
    if customer:
        if event.customer_name:
            customer.name = event.customer_name
        if event.customer_email:
            customer.email = event.customer_email
        return customer

    if not event.customer_name:
        return None

    # A concurrent delivery may insert the same customer first; keep theirs.
    now = datetime.now(timezone.utc)
    stmt = (
        upsert_insert(db, Customer)
        .values(
            id=uuid.uuid4(),
            organization_id=org_id,
            phone=event.caller_phone,
            name=event.customer_name,
            email=event.customer_email,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["organization_id", "phone"])
    )
    db.execute(stmt)
    return (
        db.query(Customer)
        .filter(Customer.organization_id == org_id, Customer.phone == event.caller_phone)
        .one()
    )


def _link_appointment(
    db: Session, org_id: UUID, event: NormalizedCallEvent, customer: Customer | None
) -> Appointment | None:
    """Resolve the referenced appointment within the org; re-point its customer if needed."""
    if not event.appointment_id:
        return None

    appointment = (
        db.query(Appointment)
        .filter(Appointment.id == event.appointment_id, Appointment.organization_id == org_id)
        .first()
    )
    if not appointment:
        logger.info(
            "Call references appointment outside org; link dropped",
            extra=build_log_context(org_id=org_id, call_id=event.call_id),
        )
        return None

    if customer and appointment.customer_id != customer.id:
        appointment.customer_id = customer.id
        appointment.customer_name = customer.name or appointment.customer_name
        appointment.customer_phone = customer.phone
        appointment.customer_email = customer.email or appointment.customer_email
    return appointment


def _upsert_call_log(
    db: Session,
    org_id: UUID,
    event: NormalizedCallEvent,
    appointment: Appointment | None,
) -> CallLog:
    now = datetime.now(timezone.utc)
    values = {
        "id": uuid.uuid4(),
        "organization_id": org_id,
        "provider": event.provider,
        "agent_id": event.agent_id,
        "call_id": event.call_id,
        "started_at": event.started_at,
        "ended_at": event.ended_at,
        "caller_phone": event.caller_phone or UNKNOWN_CALLER,
        "business_phone": event.business_phone,
        "direction": event.direction.value,
        "transcript": event.transcript,
        "recording_url": event.recording_url,
        "outcome": event.outcome.value,
        "appointment_id": appointment.id if appointment else None,
        "raw_payload": event.raw,
        "created_at": now,
        "updated_at": now,
    }
    stmt = upsert_insert(db, CallLog).values(**values)
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["organization_id", "call_id"],
        set_={
            "agent_id": excluded.agent_id,
            "started_at": excluded.started_at,
            # Later deliveries (e.g. call_started then call_analyzed) may omit
            # fields an earlier one carried.
            "ended_at": func.coalesce(excluded.ended_at, CallLog.ended_at),
            "caller_phone": case(
                (excluded.caller_phone == UNKNOWN_CALLER, CallLog.caller_phone),
                else_=excluded.caller_phone,
            ),
            "business_phone": func.coalesce(excluded.business_phone, CallLog.business_phone),
            "direction": excluded.direction,
            "transcript": func.coalesce(excluded.transcript, CallLog.transcript),
            "recording_url": func.coalesce(excluded.recording_url, CallLog.recording_url),
            "outcome": excluded.outcome,
            "appointment_id": func.coalesce(excluded.appointment_id, CallLog.appointment_id),
            "raw_payload": excluded.raw_payload,
            "updated_at": excluded.updated_at,
        },
    )
    db.execute(stmt)

    return (
        db.query(CallLog)
        .filter(CallLog.organization_id == org_id, CallLog.call_id == event.call_id)
        .execution_options(populate_existing=True)
        .one()
    )


def reconcile_call_event(db: Session, org_id: UUID, event: NormalizedCallEvent) -> CallLog:
    """
    Merge a call event into Customers, Appointments and CallLogs.

    Flushes but does not commit. Replaying the same event leaves exactly one
    CallLog for (org, call_id).
    """
    customer = _match_customer(db, org_id, event)
    db.flush()
    appointment = _link_appointment(db, org_id, event, customer)
    db.flush()
    call_log = _upsert_call_log(db, org_id, event, appointment)

    logger.info(
        "Call reconciled outcome=%s customer=%s appointment=%s",
        call_log.outcome,
        "matched" if customer else "none",
        "linked" if appointment else "none",
        extra=build_log_context(
            org_id=org_id, provider=event.provider, agent_id=event.agent_id, call_id=event.call_id
        ),
    )
    return call_log
