"""
Upload relay pipeline.

One call relays one form submission: validate, authenticate, upload each
file to Marketo, then record the stored file names on the lead.
"""

from __future__ import annotations

from typing import Sequence

import httpx
import structlog

from formrelay.core.errors import MarketoError, UploadRejected
from formrelay.core.models import FileUploadResult, UploadedFile, UploadResponse
from formrelay.marketo.client import MarketoClient
from formrelay.relay.validation import UploadLimits, validate_upload
from formrelay.utils.logging import RequestLogger

logger = structlog.get_logger()

MESSAGE_ALL_UPLOADED = "All files uploaded successfully"
MESSAGE_SOME_FAILED = "Some files failed to upload"


class UploadRelay:
    """
    Relays form uploads to Marketo.

    Files are uploaded one after another with a single token. A file that
    fails validation or upload is reported in the result and does not stop
    the others. The lead is only updated when every file was stored.
    """

    def __init__(self, client: MarketoClient, limits: UploadLimits | None = None):
        self.client = client
        self.limits = limits or UploadLimits()

    async def process(
        self,
        files: Sequence[UploadedFile],
        email: str | None,
    ) -> UploadResponse:
        """
        Relay one submission.

        Raises:
            UploadRejected: If no files were sent or too many were sent
            MarketoAuthError: If no access token could be obtained
        """
        if not files:
            raise UploadRejected("No files uploaded")
        if len(files) > self.limits.max_files:
            raise UploadRejected(f"Maximum {self.limits.max_files} files allowed")

        with RequestLogger(logger, "upload_relay", email=email, file_count=len(files)) as req:
            results: list[FileUploadResult | None] = []
            to_upload: list[tuple[int, UploadedFile]] = []

            for index, file in enumerate(files):
                error = validate_upload(file.filename, file.size, self.limits)
                if error:
                    req.log("Rejected file", file=file.filename, error=error)
                    results.append(self._failed(file, error))
                else:
                    results.append(None)
                    to_upload.append((index, file))

            if to_upload:
                token = await self.client.get_token()
                for index, file in to_upload:
                    results[index] = await self._upload_one(token.access_token, file)

            items = [r for r in results if r is not None]
            all_succeeded = all(r.success for r in items)

            lead_updated = False
            if all_succeeded:
                lead_updated = await self._update_lead(email, items)

            req.log(
                "Relay finished",
                success=all_succeeded,
                uploaded=sum(1 for r in items if r.success),
                lead_updated=lead_updated,
            )

        return UploadResponse(
            success=all_succeeded,
            message=MESSAGE_ALL_UPLOADED if all_succeeded else MESSAGE_SOME_FAILED,
            files=items,
            lead_updated=lead_updated,
        )

    async def _upload_one(self, access_token: str, file: UploadedFile) -> FileUploadResult:
        try:
            ok, body = await self.client.upload_file(
                access_token,
                file.stored_name,
                file.content,
                file.content_type,
            )
        except (httpx.HTTPError, MarketoError) as e:
            logger.error("Upload error", file=file.filename, error=str(e))
            return self._failed(file, str(e))

        return FileUploadResult(
            original_name=file.filename,
            name=file.stored_name,
            success=ok,
            marketo_response=body,
        )

    async def _update_lead(self, email: str | None, items: list[FileUploadResult]) -> bool:
        if not email:
            logger.warning("No email submitted, skipping lead update")
            return False

        try:
            token = await self.client.get_token()
        except (httpx.HTTPError, MarketoError) as e:
            logger.error("No token for lead update", email=email, error=str(e))
            return False

        file_names = ", ".join(item.name for item in items)
        result = await self.client.update_lead_field(email, file_names, token.access_token)

        if not result.success:
            logger.error(
                "Failed to update lead field",
                email=email,
                status=result.status_code,
                error=result.message,
            )
        return result.success

    @staticmethod
    def _failed(file: UploadedFile, error: str) -> FileUploadResult:
        return FileUploadResult(
            original_name=file.filename,
            name=file.stored_name,
            success=False,
            error=error,
        )
