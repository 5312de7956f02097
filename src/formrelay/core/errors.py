"""
Exceptions raised by the relay pipeline and the Marketo client.

Each error carries the HTTP status the API layer should answer with.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base exception for relay errors."""

    code = "RELAY_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retryable = retryable


class UploadRejected(RelayError):
    """Raised when a request cannot be relayed at all (no files, too many files)."""

    code = "UPLOAD_REJECTED"

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class MarketoError(RelayError):
    """Raised when a Marketo call fails."""

    code = "MARKETO_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        response: Any = None,
    ):
        super().__init__(message, status_code=status_code or 502, retryable=retryable)
        self.response = response


class MarketoAuthError(MarketoError):
    """Raised when an access token cannot be obtained."""

    code = "MARKETO_AUTH_ERROR"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, status_code=status_code, retryable=False)


class MarketoRateLimitError(MarketoError):
    """Raised when Marketo reports a rate or concurrency limit."""

    code = "MARKETO_RATE_LIMITED"

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429, retryable=True)
        self.retry_after = retry_after
