"""File validation and name formatting shared by the relay and the upload client."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from formrelay.core.config import RelaySettings

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class UploadLimits:
    """Per-request upload limits."""

    max_files: int = 3
    max_file_size: int = 10 * 1024 * 1024
    allowed_extensions: tuple[str, ...] = field(
        default=(".png", ".pdf", ".jpeg", ".jpg")
    )

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "UploadLimits":
        return cls(
            max_files=settings.max_files,
            max_file_size=settings.max_file_size,
            allowed_extensions=tuple(settings.allowed_extensions),
        )

    @property
    def max_file_size_mb(self) -> float:
        return self.max_file_size / (1024 * 1024)


def file_extension(filename: str) -> str:
    """Lowercased extension including the dot, or an empty string."""
    dot = filename.rfind(".")
    if dot <= 0:
        return ""
    return filename[dot:].lower()


def format_file_name(filename: str) -> str:
    """
    Make a file name safe for storage.

    The extension is kept as is; every non-alphanumeric character of the
    stem becomes an underscore and the stem is lowercased.

    >>> format_file_name("My CV (final).PDF")
    'my_cv__final_.PDF'
    """
    dot = filename.rfind(".")
    if dot <= 0:
        return _UNSAFE_CHARS.sub("_", filename).lower()
    return _UNSAFE_CHARS.sub("_", filename[:dot]).lower() + filename[dot:]


def validate_upload(filename: str, size: int, limits: UploadLimits) -> str | None:
    """Return an error message for a file that breaks the limits, else None."""
    if file_extension(filename) not in limits.allowed_extensions:
        return (
            f"Invalid file type. Allowed types: {', '.join(limits.allowed_extensions)}"
        )
    if size > limits.max_file_size:
        return (
            f"File too large. Maximum size allowed is "
            f"{limits.max_file_size_mb:g}MB per file"
        )
    return None
