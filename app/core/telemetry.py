"""OpenTelemetry tracing setup and sync spans."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.semconv.resource import ResourceAttributes
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from app.core.config import settings

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer("app.sync")


def parse_otlp_headers(value: str) -> dict[str, str]:
    """Parse "key=value,key2=value2" into a header dict, skipping junk."""
    headers: dict[str, str] = {}
    for item in (value or "").split(","):
        key, sep, val = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = val.strip()
    return headers


def configure_telemetry(app, engine) -> bool:
    """
    Initialize OpenTelemetry tracing when enabled.

    Traces inbound webhook/API requests, SQL, and the outbound httpx calls
    to Google. Returns True when tracing was installed.
    """
    if not settings.OTEL_ENABLED or not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        provider = TracerProvider(
            resource=Resource.create(
                {
                    ResourceAttributes.SERVICE_NAME: settings.OTEL_SERVICE_NAME,
                    ResourceAttributes.SERVICE_VERSION: settings.VERSION,
                    ResourceAttributes.DEPLOYMENT_ENVIRONMENT: settings.ENV,
                    "sync.provenance_source": settings.PROVENANCE_SOURCE,
                }
            ),
            sampler=ParentBased(TraceIdRatioBased(settings.OTEL_SAMPLE_RATE)),
        )
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(
                    endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
                    headers=parse_otlp_headers(settings.OTEL_EXPORTER_OTLP_HEADERS),
                )
            )
        )
        trace.set_tracer_provider(provider)

        # Google Calendar traffic goes through httpx only
        FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
        SQLAlchemyInstrumentor().instrument(engine=engine)
        HTTPXClientInstrumentor().instrument()
    except Exception:
        logger.exception("Failed to initialize OpenTelemetry tracing")
        return False

    logger.info("OpenTelemetry tracing enabled for %s", settings.OTEL_SERVICE_NAME)
    return True


@contextmanager
def sync_span(operation: str, org_id: UUID, **attributes) -> Iterator[Span]:
    """
    Wrap one calendar sync operation in a span.

    Without a configured provider the global tracer is a no-op, so callers
    can use this unconditionally. Exceptions are recorded and re-raised.
    """
    with _tracer.start_as_current_span(f"calendar_sync.{operation}") as span:
        span.set_attribute("sync.org_id", str(org_id))
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"sync.{key}", str(value))
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise


def mark_span_result(span: Span, result) -> None:
    """Record a SyncResult outcome and counters on the span."""
    span.set_attribute("sync.outcome", result.outcome.value)
    for counter in ("touched", "created", "updated", "deleted"):
        span.set_attribute(f"sync.{counter}", getattr(result, counter))
    if not result.ok:
        span.set_status(Status(StatusCode.ERROR, result.message or "sync failed"))
