"""
Logging configuration for appgen.

Supports plain text logging for CLI use and structured JSON logging for
services, with a per-request correlation id.

Usage:
    from appgen.logging_config import configure_logging, setup_structured_logging, request_id_var

    # Text logging
    configure_logging(log_to_file=False)

    # Structured logging (for servers streaming SSE to clients)
    setup_structured_logging()
    request_id_var.set("req-123")

Environment Variables:
    APPGEN_LOG_DIR - Override default log directory
    APPGEN_LOG_LEVEL - Set log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Optional

# Set by the pipeline for the duration of one build request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_STANDARD_ATTRS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "exc_info",
    "exc_text",
    "stack_info",
    "message",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter carrying the current request id.

    Each entry includes timestamp, level, logger name, message, request id,
    and any extra fields attached to the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_structured_logging(log_level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    handler.setLevel(getattr(logging, log_level.upper()))
    root_logger.addHandler(handler)


def get_default_log_dir(workspace: Optional[Path] = None) -> Path:
    """Return the log directory: ``APPGEN_LOG_DIR`` or ``<workspace>/logs``."""
    if "APPGEN_LOG_DIR" in os.environ:
        return Path(os.environ["APPGEN_LOG_DIR"])
    if workspace is None:
        workspace = Path.cwd()
    return workspace / "logs"


def configure_logging(
    request_id: Optional[str] = None,
    workspace: Optional[Path] = None,
    log_dir: Optional[Path] = None,
    log_level: Optional[str] = None,
    log_to_console: bool = True,
    log_to_file: bool = False,
    log_filename: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``appgen`` logger.

    Args:
        request_id: Used in the log filename if ``log_filename`` is not given
        workspace: Directory the default log dir is resolved against
        log_dir: Log directory (overrides default)
        log_level: Log level (falls back to APPGEN_LOG_LEVEL, then INFO)
        log_to_console: Whether to log to stderr
        log_to_file: Whether to log to a file
        log_filename: Custom log filename

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("appgen")
    logger.handlers.clear()

    if log_level is None:
        log_level = os.environ.get("APPGEN_LOG_LEVEL", "INFO")
    logger.setLevel(getattr(logging, log_level.upper()))

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if log_to_console:
        # stderr so SSE output on stdout stays machine-readable
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_to_file:
        if log_dir is None:
            log_dir = get_default_log_dir(workspace)
        log_dir.mkdir(parents=True, exist_ok=True)

        if log_filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_filename = f"{request_id or 'appgen'}_{timestamp}.log"

        log_path = log_dir / log_filename
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        logger.info(f"Logging to: {log_path}")

    return logger
