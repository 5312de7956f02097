"""
Async Marketo REST client.

Covers the three calls the relay makes: the client-credentials token, the
asset file upload and the lead field update.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

from formrelay.core.config import MarketoSettings
from formrelay.core.errors import MarketoAuthError, MarketoRateLimitError
from formrelay.core.models import AccessToken, LeadUpdateResult
from formrelay.utils.retry import RetryConfig, with_retry

logger = structlog.get_logger()

# Marketo API error codes
RATE_LIMIT_CODES = {"606", "615"}
TOKEN_INVALID_CODES = {"601", "602"}


def _first_error(payload: dict[str, Any]) -> tuple[str | None, str | None]:
    errors = payload.get("errors") or []
    if not errors:
        return None, None
    first = errors[0]
    return str(first.get("code")), first.get("message")


def _parse_json(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {"raw": response.text}
    return payload if isinstance(payload, dict) else {"result": payload}


class MarketoClient:
    """
    Client for the Marketo identity, asset and lead endpoints.

    The access token is cached and refreshed shortly before it expires.
    Token and lead calls are retried on transport errors and rate limits;
    file uploads are not, since a repeated upload may create a duplicate
    asset.

    Example:
        async with MarketoClient(settings.marketo) as client:
            token = await client.get_token()
            ok, body = await client.upload_file(token.access_token, "cv.pdf", data)
    """

    def __init__(
        self,
        settings: MarketoSettings,
        http_client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self.settings = settings
        self._http_client = http_client
        self._owns_client = http_client is None
        self._token: AccessToken | None = None
        self._token_lock = asyncio.Lock()

        retry_config = retry_config or RetryConfig()
        self._fetch_token = with_retry(retry_config)(self._request_token)
        self._post_lead = with_retry(retry_config)(self._request_lead_update)

    async def __aenter__(self) -> "MarketoClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def _url(self, path: str) -> str:
        return f"{self.settings.host}{path}"

    def invalidate_token(self) -> None:
        self._token = None

    async def get_token(self, force: bool = False) -> AccessToken:
        """
        Return a valid access token, fetching a new one when needed.

        Raises:
            MarketoAuthError: If Marketo refuses the credentials
        """
        async with self._token_lock:
            if (
                not force
                and self._token is not None
                and not self._token.is_expired(self.settings.token_expiry_margin)
            ):
                return self._token

            self._token = await self._fetch_token()
            return self._token

    async def _request_token(self) -> AccessToken:
        if not self.settings.is_configured:
            raise MarketoAuthError("Marketo credentials are not configured", status_code=500)

        client = await self._get_http_client()
        params = {
            "grant_type": "client_credentials",
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret.get_secret_value(),
        }

        logger.debug("Requesting Marketo token", host=self.settings.host)
        response = await client.get(
            self._url("/identity/oauth/token"),
            params=params,
            headers={"Accept": "application/json"},
        )
        payload = _parse_json(response)

        if response.status_code == 429:
            raise MarketoRateLimitError("Token request rate limited")

        if not response.is_success or "access_token" not in payload:
            message = payload.get("error_description") or "Unknown error"
            logger.error(
                "Failed to obtain Marketo token",
                status=response.status_code,
                error=message,
            )
            raise MarketoAuthError(message, status_code=response.status_code)

        expires_in = float(payload.get("expires_in", 0))
        logger.info("Obtained Marketo token", expires_in=expires_in)
        return AccessToken(
            access_token=payload["access_token"],
            expires_at=time.monotonic() + expires_in,
            scope=payload.get("scope"),
        )

    async def upload_file(
        self,
        access_token: str,
        name: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> tuple[bool, dict[str, Any]]:
        """
        Upload one file to the configured asset folder.

        Returns:
            Tuple of (success, Marketo response body)

        Raises:
            httpx.HTTPError: On transport failure
        """
        client = await self._get_http_client()

        response = await client.post(
            self._url("/rest/asset/v1/files.json"),
            params={"folder": self.settings.upload_folder},
            headers={"Authorization": f"Bearer {access_token}"},
            files={"file": (name, content, content_type)},
        )
        payload = _parse_json(response)

        code, _ = _first_error(payload)
        if code in TOKEN_INVALID_CODES:
            self.invalidate_token()

        ok = response.is_success and payload.get("success") is not False
        logger.info(
            "Marketo file upload",
            file=name,
            status=response.status_code,
            success=ok,
        )
        return ok, payload

    async def update_lead_field(
        self,
        email: str,
        file_names: str,
        access_token: str,
    ) -> LeadUpdateResult:
        """
        Store the uploaded file names on the lead identified by email.

        Failures are reported in the result rather than raised, once
        retries are exhausted.
        """
        try:
            return await self._post_lead(email, file_names, access_token)
        except MarketoRateLimitError as e:
            return LeadUpdateResult(success=False, status_code=429, message=str(e))
        except httpx.HTTPError as e:
            logger.error("Failed to update lead", error=str(e))
            return LeadUpdateResult(success=False, status_code=500, message=str(e))

    async def _request_lead_update(
        self,
        email: str,
        file_names: str,
        access_token: str,
    ) -> LeadUpdateResult:
        client = await self._get_http_client()
        body = {
            "action": "updateOnly",
            "lookupField": self.settings.lookup_field,
            "input": [
                {
                    self.settings.lookup_field: email,
                    self.settings.lead_field: file_names,
                }
            ],
        }

        response = await client.post(
            self._url("/rest/v1/leads.json"),
            json=body,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        payload = _parse_json(response)
        code, message = _first_error(payload)

        if response.status_code == 429 or code in RATE_LIMIT_CODES:
            raise MarketoRateLimitError(message or "Lead update rate limited")
        if code in TOKEN_INVALID_CODES:
            self.invalidate_token()

        if not (response.is_success and payload.get("success")):
            return LeadUpdateResult(
                success=False,
                status_code=response.status_code,
                message=message or "Unknown error",
                data=payload,
            )

        # updateOnly skips leads that do not exist
        for record in payload.get("result") or []:
            if record.get("status") == "skipped":
                reasons = record.get("reasons") or [{}]
                return LeadUpdateResult(
                    success=False,
                    status_code=response.status_code,
                    message=reasons[0].get("message", "Lead update skipped"),
                    data=payload,
                )

        return LeadUpdateResult(
            success=True,
            status_code=response.status_code,
            data=payload,
        )
