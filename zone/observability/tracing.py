"""
OpenTelemetry tracing.

Off unless TRACING_ENABLED is set. When on, spans go to an OTLP collector
and both FastAPI requests and SQLAlchemy queries are instrumented; ledger
operations add their own spans through ``trace_operation``.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span
from sqlalchemy.ext.asyncio import AsyncEngine

from zone.config import settings

_tracer = trace.get_tracer("zone.ledger")


def setup_tracing(app: FastAPI) -> None:
    """Install the OTLP exporter and instrument the app."""
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "service.version": settings.api_version,
                "deployment.environment": settings.environment,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")


def instrument_engine(engine: AsyncEngine) -> None:
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def _attribute(value: Any) -> str | int | float | bool:
    # OTel only accepts primitives; UUIDs and datetimes are stringified.
    return value if isinstance(value, (str, int, float, bool)) else str(value)


@contextmanager
def trace_operation(name: str, **attributes: Any) -> Iterator[Span]:
    """
    Span around a unit of ledger work.

    ``None`` attributes are dropped. Without a configured provider the span
    is a no-op, so callers never need to check whether tracing is on.
    """
    with _tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, _attribute(value))
        yield span
