"""Lightweight helpers for configuring OpenTelemetry exporters."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Final

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

TRACER_NAME: Final = "specsync"

_telemetry_configured: Final[dict[str, bool]] = {"configured": False}


def configure_telemetry(*, service_name: str = "specsync", exporter: str = "console") -> None:
    """Install an SDK tracer provider once per process.

    Only the console exporter ships by default; any other exporter name is
    accepted so an OTLP exporter can be wired by the host application through
    the standard ``OTEL_*`` environment.
    """
    if _telemetry_configured["configured"]:
        return
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if exporter.lower() == "console":
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    _telemetry_configured["configured"] = True


@contextmanager
def sync_span(name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Span around a sync phase; a no-op tracer is used when telemetry is off."""
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"specsync.{key}", value)
        yield span


__all__ = ["configure_telemetry", "sync_span"]
