"""Structured logging configuration for docbox.

Logs go to stderr so that commands printing JSON results keep stdout clean.
"""

import logging
import sys
from typing import Any, Literal

import structlog

from docbox.config.settings import get_settings

_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
) -> None:
    """Configure structlog over stdlib logging.

    Safe to call more than once; the last call wins.

    Args:
        level: Log level. Defaults to ``DOCBOX_LOG_LEVEL``.
        format: ``json`` or ``console``. Defaults to ``DOCBOX_LOG_FORMAT``.
    """
    settings = get_settings()
    log_level = level or settings.log_level
    log_format = format or settings.log_format

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )

    if log_format == "json":
        processors = [*_PROCESSORS, structlog.processors.dict_tracebacks, _renderer(log_format)]
    else:
        processors = [*_PROCESSORS, _renderer(log_format)]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str, **initial: Any) -> structlog.stdlib.BoundLogger:
    """Module logger with optional initial context, e.g. ``component=``."""
    logger = structlog.get_logger(name)
    return logger.bind(**initial) if initial else logger
