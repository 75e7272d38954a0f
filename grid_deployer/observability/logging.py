"""Centralized logging configuration for the grid deployer.

Provides consistent structured logging across all modules with support for
both human-readable console output and machine-parseable JSON format.
"""

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..config import settings

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging.

    Produces newline-delimited JSON logs suitable for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format.

        Returns:
            JSON string with log data.
        """
        log_record: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        # Node context stamped by NodeLoggerAdapter
        node_id = getattr(record, "node_id", None)
        if node_id is not None:
            log_record["node_id"] = node_id

        return json.dumps(log_record, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored console formatter for human-readable output."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        if sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"

        return super().format(record)


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
    log_file: Path | None = None,
) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Defaults to GRID_LOG_LEVEL.
        json_format: If True, use JSON format for console output.
            Defaults to GRID_LOG_JSON.
        log_file: Optional path to log file (always JSON).
    """
    level = (level or settings.log_level).upper()
    log_level = getattr(logging, level, logging.INFO)

    if json_format is None:
        json_format = settings.log_json

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)

    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            ConsoleFormatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)


class NodeLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that tags every record with the target node ID.

    Messages are prefixed with ``[node N]`` so interleaved per-node
    reconciliation output stays readable on the console.
    """

    def __init__(self, logger: logging.Logger, node_id: int):
        super().__init__(logger, {"node_id": node_id})

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.get("extra", {})
        node_id = self.extra.get("node_id") if self.extra is not None else None
        extra["node_id"] = node_id
        kwargs["extra"] = extra
        return f"[node {node_id}] {msg}", kwargs
