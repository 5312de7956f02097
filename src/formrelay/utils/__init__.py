"""Utility modules for formrelay."""

from formrelay.utils.logging import setup_logging, get_logger, RequestLogger
from formrelay.utils.retry import RetryConfig, is_retryable, retry_async, with_retry

__all__ = [
    "setup_logging",
    "get_logger",
    "RequestLogger",
    "with_retry",
    "retry_async",
    "RetryConfig",
    "is_retryable",
]
