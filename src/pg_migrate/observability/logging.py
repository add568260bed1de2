"""structlog configuration for the CLI."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

import structlog


class LogLevel(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def configure_logging(level: str = LogLevel.INFO, *, json: bool = False) -> None:
    """Configure structlog processors and the minimum log level.

    Raises ValueError for a level name outside :class:`LogLevel`.
    """
    min_level = logging.getLevelName(LogLevel(level.lower()).upper())
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        cache_logger_on_first_use=False,
    )
