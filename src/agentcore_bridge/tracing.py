"""
OpenTelemetry tracing for the runtime.

Span creation and W3C trace-context propagation go through the
OpenTelemetry API, which records nothing until a provider is installed.
``setup_tracing`` installs the SDK provider with an OTLP exporter; the
SDK packages come with the optional ``tracing`` extra.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Iterator, Mapping, Optional

from opentelemetry import context as otel_context
from opentelemetry import propagate, trace

from .settings import Settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "agentcore-runtime"

TracingShutdown = Callable[[], Awaitable[None]]

tracer = trace.get_tracer("agentcore_bridge")


def inject_trace_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Return a copy of ``headers`` carrying the current span's trace context."""
    carrier = dict(headers)
    propagate.inject(carrier)
    return carrier


@contextmanager
def server_span(
    name: str, headers: Mapping[str, str], attributes: Optional[Dict[str, Any]] = None
) -> Iterator[trace.Span]:
    """Start a SERVER span that continues the trace found in inbound ``headers``.

    Without trace headers the span joins whatever context is already current.
    """
    parent = propagate.extract(headers, context=otel_context.get_current())
    with tracer.start_as_current_span(
        name, context=parent, kind=trace.SpanKind.SERVER, attributes=attributes
    ) as span:
        yield span


@contextmanager
def client_span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[trace.Span]:
    """Start a CLIENT span around one outbound call."""
    with tracer.start_as_current_span(name, kind=trace.SpanKind.CLIENT, attributes=attributes) as span:
        yield span


async def _noop_shutdown() -> None:
    return None


def setup_tracing(settings: Settings) -> TracingShutdown:
    """
    Configure OpenTelemetry span export if enabled.

    Tracing needs both OTEL_TRACING_ENABLED and OTEL_EXPORTER_OTLP_ENDPOINT.
    The SDK and exporter are imported only in that case, so they are
    required only for deployments that turn tracing on.

    Returns:
        Coroutine function that flushes and shuts down the exporter.
    """
    if not settings.tracing_enabled or not settings.otlp_endpoint:
        logger.info("tracing disabled")
        return _noop_shutdown

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    from . import __version__

    resource = Resource.create({"service.name": SERVICE_NAME, "service.version": __version__})
    provider = TracerProvider(resource=resource)
    endpoint = settings.otlp_endpoint.rstrip("/") + "/v1/traces"
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)

    logger.info("tracing enabled", extra={"endpoint": settings.otlp_endpoint})

    async def shutdown() -> None:
        # TracerProvider.shutdown blocks while the batch processor flushes.
        await asyncio.to_thread(provider.shutdown)
        logger.info("tracing shut down")

    return shutdown
