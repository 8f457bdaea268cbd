"""
Structured logging setup
"""
import logging
import sys

import structlog

from summarizer.core.config import settings


def setup_logging(level: str = None, json_format: bool = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        level: log level name, defaults to settings.LOG_LEVEL
        json_format: render JSON lines instead of console output,
            defaults to settings.LOG_JSON unless DEBUG is on
    """
    level = (level or settings.LOG_LEVEL).upper()
    if json_format is None:
        json_format = settings.LOG_JSON and not settings.DEBUG

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
