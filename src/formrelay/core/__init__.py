"""Core configuration, models and errors."""

from formrelay.core.config import Settings, get_settings, reload_settings
from formrelay.core.errors import (
    RelayError,
    UploadRejected,
    MarketoError,
    MarketoAuthError,
    MarketoRateLimitError,
)

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "RelayError",
    "UploadRejected",
    "MarketoError",
    "MarketoAuthError",
    "MarketoRateLimitError",
]
