"""OpenTelemetry integration for tracing reconciliation calls.

Telemetry is optional: every helper here is a no-op until
``setup_telemetry(enabled=True)`` succeeds with the ``otel`` extra installed.

Usage:
    from grid_deployer.observability import setup_telemetry, traced_operation

    setup_telemetry()  # GRID_OTEL_* settings

    with traced_operation("deploy.node", {"grid.node_id": "10"}):
        await push(deployment)
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from ..config import settings

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer

logger = logging.getLogger(__name__)

# Module state
_initialized = False
_tracer: Tracer | None = None


def setup_telemetry(
    service_name: str | None = None,
    endpoint: str | None = None,
    enabled: bool | None = None,
) -> Tracer | None:
    """Configure OpenTelemetry tracing.

    Safe to call multiple times - subsequent calls are no-ops. Arguments left
    as None come from GRID_OTEL_SERVICE_NAME, GRID_OTEL_ENDPOINT and
    GRID_OTEL_ENABLED.

    Args:
        service_name: Name for this service in traces.
        endpoint: OTLP gRPC collector endpoint. None uses console exporter.
        enabled: Whether to enable telemetry. False returns immediately.

    Returns:
        Configured tracer, or None if disabled or dependencies missing.
    """
    global _initialized, _tracer

    if enabled is None:
        enabled = settings.otel_enabled
    service_name = service_name or settings.otel_service_name
    endpoint = endpoint or settings.otel_endpoint

    if not enabled:
        logger.debug("Telemetry disabled")
        return None

    if _initialized:
        return _tracer

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import SERVICE_NAME, Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
        )
    except ImportError:
        logger.warning(
            "OpenTelemetry not installed. Install with: pip install grid-deployer[otel]"
        )
        return None

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))

    if endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )

            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
            )
            logger.info(f"OTLP exporter configured: {endpoint}")
        except ImportError:
            logger.warning("OTLP exporter not installed, falling back to console")
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console span exporter configured (no endpoint specified)")

    trace.set_tracer_provider(provider)

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        logger.debug("HTTPX instrumentation enabled")
    except ImportError:
        pass

    _tracer = trace.get_tracer(__name__)
    _initialized = True

    logger.info(f"OpenTelemetry initialized for service: {service_name}")
    return _tracer


def get_tracer() -> Tracer | None:
    """Get the configured tracer, or None if telemetry is disabled."""
    return _tracer


def inject_context(headers: dict[str, str]) -> dict[str, str]:
    """Inject trace context into outgoing relay request headers.

    Args:
        headers: Existing headers dictionary (modified in place).

    Returns:
        The headers dictionary with trace context added.
    """
    if not _initialized:
        return headers

    try:
        from opentelemetry.propagate import inject

        inject(headers)
    except Exception as e:
        logger.debug(f"Failed to inject trace context: {e}")

    return headers


@contextmanager
def traced_operation(
    name: str,
    attributes: dict[str, str] | None = None,
) -> Generator[Span | None, None, None]:
    """Context manager for tracing an operation.

    Yields None when telemetry is disabled.

    Args:
        name: Name for this operation/span.
        attributes: Optional key-value attributes to attach to the span.

    Yields:
        The active span, or None if telemetry is disabled.
    """
    if not _tracer:
        yield None
        return

    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for k, v in attributes.items():
                span.set_attribute(k, v)
        yield span


def record_exception(exception: Exception) -> None:
    """Record an exception on the current span (no-op when disabled)."""
    if not _initialized:
        return

    try:
        from opentelemetry import trace

        span = trace.get_current_span()
        if span:
            span.record_exception(exception)
    except Exception as e:
        logger.debug(f"Failed to record exception on span: {e}")


def shutdown_telemetry() -> None:
    """Shutdown telemetry and flush pending spans."""
    global _initialized, _tracer

    if not _initialized:
        return

    try:
        from opentelemetry import trace

        provider = trace.get_tracer_provider()
        shutdown_fn = getattr(provider, "shutdown", None)
        if shutdown_fn is not None:
            shutdown_fn()
            logger.info("Telemetry shutdown complete")
    except Exception as e:
        logger.error(f"Error during telemetry shutdown: {e}")

    _initialized = False
    _tracer = None
