"""
Data models for the upload relay.

Response models serialize with the camelCase keys the form script reads.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, ConfigDict


@dataclass
class UploadedFile:
    """A file received from the form, held in memory for one request."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
    name: str | None = None  # Name to store in Marketo, defaults to filename

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def stored_name(self) -> str:
        return self.name or self.filename


@dataclass
class AccessToken:
    """Marketo bearer token with its absolute expiry (monotonic seconds)."""

    access_token: str
    expires_at: float
    scope: str | None = None

    @property
    def expires_in(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def is_expired(self, margin: float = 0.0) -> bool:
        return time.monotonic() >= self.expires_at - margin


class FileUploadResult(BaseModel):
    """Outcome of relaying one file."""

    model_config = ConfigDict(populate_by_name=True)

    original_name: str = Field(alias="originalName")
    name: str
    success: bool
    marketo_response: dict[str, Any] | None = Field(default=None, alias="marketoResponse")
    error: str | None = None


class LeadUpdateResult(BaseModel):
    """Outcome of the lead field update."""

    success: bool
    status_code: int | None = None
    message: str | None = None
    data: dict[str, Any] | None = None


class UploadResponse(BaseModel):
    """Response body for a relayed upload."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    files: list[FileUploadResult] = Field(default_factory=list)
    lead_updated: bool = Field(default=False, alias="leadUpdated")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ErrorDetails(BaseModel):
    """Machine-readable error payload."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Response body for a request that failed as a whole."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    error_details: ErrorDetails = Field(alias="errorDetails")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
