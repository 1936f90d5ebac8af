"""Structured logging helpers (PII-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    org_id: UUID | str | None = None,
    provider: str | None = None,
    agent_id: str | None = None,
    call_id: str | None = None,
    integration: str | None = None,
    appointment_id: UUID | str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (identifiers only, never phone/email/body)."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if provider:
        context["provider"] = provider
    if agent_id:
        context["agent_id"] = agent_id
    if call_id:
        context["call_id"] = call_id
    if integration:
        context["integration"] = integration
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    return context
