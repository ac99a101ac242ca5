"""Structured logging setup."""

import logging
import sys
from typing import Optional

import structlog

from portfolio_paths.config import settings


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None):
    """Configure structured logging.

    Args:
        level: Log level name, defaults to LOG_LEVEL
        json_logs: Render JSON lines instead of console output, defaults to LOG_JSON
    """
    level = (level or settings.logging.level).upper()
    if json_logs is None:
        json_logs = settings.logging.json_logs

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level, logging.INFO),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
