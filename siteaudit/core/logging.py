"""
Structured logging using structlog.
Outputs JSON in production, colored console in development.
Logs go to stderr so command output on stdout stays machine-readable.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict

from siteaudit.core.config import get_settings


def add_severity(logger: Any, method: str, event_dict: EventDict) -> EventDict:
    """Map structlog levels to GCP/Datadog severity levels."""
    level_map = {
        "debug": "DEBUG",
        "info": "INFO",
        "warning": "WARNING",
        "error": "ERROR",
        "critical": "CRITICAL",
    }
    event_dict["severity"] = level_map.get(method, "INFO")
    return event_dict


def configure_logging(level: str | None = None) -> None:
    settings = get_settings()
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_severity,
    ]

    if settings.LOG_FORMAT == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("httpcore").setLevel(logging.WARNING)
