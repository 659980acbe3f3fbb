"""MapWatch — Epic API Client.

Handles bearer authentication, retries for server and transport errors, and
maps rate-limit responses to ``RateLimitedError``. A 429 is never retried
here: the collectors treat it as a per-island failure and the next scheduled
cycle picks the island up again.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from mapwatch.config import settings
from mapwatch.core.logging import get_logger

logger = get_logger("epic.client")

RETRY_BASE_DELAY = 2  # seconds


class EpicAPIError(Exception):
    """Raised when an Epic API returns an error."""

    def __init__(
        self, message: str, status_code: int = 0, error_code: str = ""
    ):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class RateLimitedError(EpicAPIError):
    """HTTP 429. Transient; retried by the next cycle, not by the client."""


class EpicAuthError(EpicAPIError):
    """Missing or rejected credentials. Systemic, stops the worker."""


class EpicClient:
    """Async HTTP client shared by the ecosystem and discovery endpoints."""

    def __init__(
        self,
        access_token: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_base_delay: float = RETRY_BASE_DELAY,
    ):
        self.access_token = access_token if access_token is not None else settings.epic_access_token
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = max_retries or settings.http_max_retries
        self.retry_base_delay = retry_base_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise EpicAuthError("Epic access token is not configured")
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if settings.epic_x_access_token:
            headers["X-Epic-Access-Token"] = settings.epic_x_access_token
        return headers

    # ── Core Request Method ──

    async def request(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
        json_body: Dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Make a request with retry handling. Returns the successful response."""
        headers = self._headers()
        client = await self._get_client()

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await client.request(
                    method, url, params=params, json=json_body, headers=headers
                )

                if resp.status_code == 429:
                    raise RateLimitedError("Rate limited (429)", 429)
                if resp.status_code in (401, 403):
                    raise EpicAuthError(
                        f"Authentication rejected ({resp.status_code})", resp.status_code
                    )

                resp.raise_for_status()
                return resp

            except httpx.HTTPStatusError as e:
                body = _json_body(e.response)
                error_msg = body.get("errorMessage") or str(e)
                error_code = body.get("errorCode", "")

                if attempt < self.max_retries and e.response.status_code >= 500:
                    wait = self.retry_base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"Server error {e.response.status_code}. Retrying in {wait}s"
                    )
                    await asyncio.sleep(wait)
                    continue

                raise EpicAPIError(error_msg, e.response.status_code, error_code) from e

            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    wait = self.retry_base_delay * (2 ** (attempt - 1))
                    logger.warning(f"Request error: {e}. Retrying in {wait}s")
                    await asyncio.sleep(wait)
                    continue
                raise EpicAPIError(
                    f"Connection failed after {self.max_retries} retries: {e}"
                ) from e

        raise EpicAPIError("Max retries exhausted")


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    if not response.headers.get("content-type", "").startswith("application/json"):
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
