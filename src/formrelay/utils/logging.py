"""
structlog setup for formrelay.

Production writes one JSON object per line to stderr. Development, or
``FORMRELAY_LOG_FORMAT=console``, renders colored key/value lines.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Any

import structlog
from structlog.types import Processor

from formrelay.core.config import get_settings

_SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def _renderers(json_format: bool) -> list[Processor]:
    if json_format:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name, defaults to FORMRELAY_LOG_LEVEL
        json_format: Force JSON (True) or console (False) output
    """
    settings = get_settings()
    numeric_level = getattr(logging, (level or settings.relay.log_level).upper())
    if json_format is None:
        json_format = settings.relay.log_format == "json" and not settings.is_development

    # uvicorn and httpx log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, *_renderers(json_format)],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


class RequestLogger:
    """
    Binds context for one relayed request and logs how it ended.

    Usage:
        with RequestLogger(logger, "upload_relay", email=email) as req:
            req.log("Token obtained")
    """

    def __init__(self, logger: structlog.BoundLogger, operation: str, **context: Any):
        self.operation = operation
        self.logger = logger.bind(operation=operation, **context)
        self._started = 0.0

    def __enter__(self) -> "RequestLogger":
        self._started = time.perf_counter()
        self.logger.info(f"{self.operation} started")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration_ms = round((time.perf_counter() - self._started) * 1000, 1)
        if exc_type is None:
            self.logger.info(f"{self.operation} finished", duration_ms=duration_ms)
        else:
            self.logger.error(
                f"{self.operation} failed",
                duration_ms=duration_ms,
                error=str(exc_val),
                error_type=exc_type.__name__,
            )

    def log(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, **kwargs)
