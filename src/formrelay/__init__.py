"""
formrelay - Marketing form upload relay

Accepts multi-file uploads from a marketing form, forwards them to the
Marketo asset API and records the stored file names on the lead.
"""

__version__ = "1.0.0"
__author__ = "formrelay Team"

from formrelay.queue.admission import AdmissionQueue
from formrelay.relay.service import UploadRelay
from formrelay.core.models import (
    UploadedFile,
    FileUploadResult,
    UploadResponse,
)

__all__ = [
    "AdmissionQueue",
    "UploadRelay",
    "UploadedFile",
    "FileUploadResult",
    "UploadResponse",
]
