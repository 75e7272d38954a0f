"""Observability: logging and telemetry."""

from .logging import NodeLoggerAdapter, get_logger, setup_logging
from .telemetry import (
    get_tracer,
    inject_context,
    record_exception,
    setup_telemetry,
    shutdown_telemetry,
    traced_operation,
)

__all__ = [
    # Logging
    "NodeLoggerAdapter",
    "get_logger",
    "setup_logging",
    # Telemetry
    "get_tracer",
    "inject_context",
    "record_exception",
    "setup_telemetry",
    "shutdown_telemetry",
    "traced_operation",
]
