"""
Backoff and retry for the idempotent Marketo calls.

Token requests and lead updates are retried; asset uploads are not.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import structlog

from formrelay.core.errors import RelayError

logger = structlog.get_logger()

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Relay errors flagged retryable and connection-level httpx failures."""
    if isinstance(exc, RelayError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


@dataclass
class RetryConfig:
    """Backoff schedule for a retried call."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retry_on: Callable[[BaseException], bool] = field(default=is_retryable)


def calculate_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: float | None = None,
) -> float:
    """
    Seconds to sleep before retry number ``attempt + 1``.

    A server-provided ``retry_after`` replaces the exponential step. Both
    are capped at ``max_delay`` and jittered into [0.5x, 1.5x) when enabled.
    """
    delay = retry_after or config.base_delay * config.exponential_base ** attempt
    delay = min(delay, config.max_delay)
    if config.jitter:
        delay *= 0.5 + random.random()
    return delay


def with_retry(
    config: RetryConfig | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Retry an async callable while ``config.retry_on`` accepts the error."""
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not config.retry_on(e):
                        raise
                    if attempt >= config.max_retries:
                        logger.error(
                            "Marketo call failed after retries",
                            call=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise

                    delay = calculate_delay(attempt, config, getattr(e, "retry_after", None))
                    attempt += 1
                    logger.warning(
                        "Retrying Marketo call",
                        call=func.__name__,
                        attempt=attempt,
                        delay=round(delay, 3),
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> T:
    """Call ``func`` once with retries, without decorating it."""
    return await with_retry(config)(func)(*args, **kwargs)
