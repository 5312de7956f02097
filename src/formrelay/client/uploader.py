"""HTTP client that submits a FileSelection to the relay."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from formrelay.client.selection import FileSelection

logger = structlog.get_logger()


class RelayClient:
    """
    Posts selected files to a running relay.

    Transport failures are returned as a failed result rather than raised,
    so callers can always render an outcome.
    """

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http_client.aclose()

    async def upload(self, selection: FileSelection, email: str | None) -> dict[str, Any]:
        """Submit the selection with the submitter's email."""
        files = [
            ("files", (entry.original_name, entry.path.read_bytes(), entry.content_type))
            for entry in selection
        ]
        data: dict[str, Any] = {"names": [entry.formatted_name for entry in selection]}
        if email:
            data["email"] = email

        try:
            response = await self._http_client.post(
                f"{self.base_url}/api/upload",
                files=files,
                data=data,
            )
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Upload request failed", error=str(e))
            return {
                "success": False,
                "errorDetails": {"code": "UPLOAD_FAILED", "message": str(e)},
            }

        logger.info("Upload result", status=response.status_code, success=result.get("success"))
        return result

    async def test_token(self) -> dict[str, Any]:
        """Ask the relay to fetch a Marketo token."""
        try:
            response = await self._http_client.get(f"{self.base_url}/api/test-token")
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Token probe failed", error=str(e))
            return {"success": False, "error": str(e)}
