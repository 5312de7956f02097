"""
Upload relay pipeline.

Validates uploaded files, forwards them to Marketo and updates the lead.
"""

from formrelay.relay.service import UploadRelay
from formrelay.relay.validation import (
    UploadLimits,
    format_file_name,
    file_extension,
    validate_upload,
)

__all__ = [
    "UploadRelay",
    "UploadLimits",
    "format_file_name",
    "file_extension",
    "validate_upload",
]
