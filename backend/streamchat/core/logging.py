"""Structured logging setup."""

import logging
import sys
from typing import Optional

import structlog


def configure_logging(level: str = "INFO", json_logs: Optional[bool] = None) -> None:
    """Configure structlog for the application.

    Args:
        level: Minimum log level name
        json_logs: Force JSON rendering; auto-detected from the TTY when None
    """
    if json_logs is None:
        json_logs = not sys.stderr.isatty()

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )
