"""Structured logging configuration with structlog.

Call :func:`configure_logging` once at process start; modules obtain their
loggers with ``structlog.get_logger(__name__)`` and log event names with
key/value context::

    log.info("phase_advanced", previous="round_1_tasks", state="round_1_kill")
"""

from __future__ import annotations

import logging
import os
import sys

import structlog
from structlog.typing import Processor

LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _get_log_level() -> int:
    level_name = os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(environment: str = "production") -> None:
    """Configure structlog for the process.

    Args:
        environment: 'production' renders JSON lines, 'development' renders
            coloured console output.
    """
    level = _get_log_level()
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if environment == "development":
        renderer: Processor = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def bind_session(correlation_id: str) -> None:
    """Attach the session's correlation id to every subsequent log entry."""

    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_session() -> None:
    structlog.contextvars.unbind_contextvars("correlation_id")
