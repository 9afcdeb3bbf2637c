from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
import logging
import os
from typing import Any, Iterator

SERVICE_NAME = "branchchat"

LOGGER = logging.getLogger("observability.tracing")


def tracing_enabled() -> bool:
    return bool(os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "").strip())


@contextmanager
def start_span(name: str, *, attributes: dict[str, Any] | None = None) -> Iterator[Any]:
    """Open an OpenTelemetry span when an OTLP endpoint is configured; yield None otherwise."""
    tracer = _get_tracer()
    if tracer is None:
        yield None
        return
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is None:
                continue
            span.set_attribute(key, value if isinstance(value, (str, bool, int, float)) else str(value))
        yield span


@lru_cache(maxsize=1)
def _get_tracer():
    if not tracing_enabled():
        return None
    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        LOGGER.warning("OTEL endpoint set but opentelemetry packages are not installed")
        return None

    provider = trace.get_tracer_provider()
    if not isinstance(provider, TracerProvider):
        provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "").strip())
            )
        )
        trace.set_tracer_provider(provider)
    return trace.get_tracer(SERVICE_NAME)
