"""
Async Microsoft Graph client with pagination and read-only enforcement.
Requests are issued one at a time and never retried: any failure surfaces
to the calling control, which reports it as ERROR.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    GRAPH_BETA_VERSION,
    DEFAULT_PAGE_SIZE,
    MAX_PAGES_PER_ENDPOINT,
    HTTP_TIMEOUT_SECONDS,
    HTTP_CONNECT_TIMEOUT_SECONDS,
)
from ..safety.guardian import ReadOnlyGuardian, SafetyViolation

logger = logging.getLogger("cis_m365_audit.graph")


class GraphAPIError(Exception):
    """Raised when Graph API returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")


class GraphClient:
    """
    Async Microsoft Graph API client.
    Features:
      - Safety-validated requests (read-only enforcement)
      - Automatic pagination with @odata.nextLink
      - v1.0 and beta endpoint support
      - 404 reported as an empty "_not_found" payload, so absent objects
        can be judged non-compliant instead of erroring
    """

    def __init__(
        self,
        access_token: str,
        guardian: ReadOnlyGuardian,
        base_url: str = GRAPH_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._request_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(HTTP_TIMEOUT_SECONDS, connect=HTTP_CONNECT_TIMEOUT_SECONDS),
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
                "ConsistencyLevel": "eventual",  # Required for advanced $filter
            },
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str, beta: bool = False) -> str:
        """Build full Graph URL from relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        endpoint = endpoint.lstrip("/")
        return f"{self.base_url}/{version}/{endpoint}"

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
    ) -> dict:
        """Execute a single GET request."""
        url = self._build_url(endpoint, beta=beta)
        self.guardian.validate_request("GET", url)
        return await self._execute("GET", url, params=params)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        skip_top: bool = False,
    ) -> list[dict]:
        """
        Fetch all pages of a paginated endpoint into a list.
        Set skip_top=True for endpoints that don't support $top.
        """
        items = []
        async for item in self.get_all_pages_stream(endpoint, params, beta, skip_top=skip_top):
            items.append(item)
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        skip_top: bool = False,
    ) -> AsyncGenerator[dict, None]:
        """Stream all pages of a paginated endpoint as an async generator."""
        params = dict(params or {})
        if not skip_top and "$top" not in params:
            params["$top"] = str(DEFAULT_PAGE_SIZE)

        url: Optional[str] = self._build_url(endpoint, beta=beta)
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guardian.validate_request("GET", url)
            data = await self._execute("GET", url, params=params)

            for item in data.get("value", []):
                yield item

            # nextLink carries all query parameters
            url = data.get("@odata.nextLink")
            params = None
            pages += 1

        if pages >= MAX_PAGES_PER_ENDPOINT:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for endpoint: {endpoint}"
            )

    async def _execute(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
    ) -> dict:
        """Execute a request once and translate the response."""
        if not self._client:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")
        if method != "GET":
            raise SafetyViolation(f"Unsupported method at raw level: {method}")

        logger.debug(f"GET {url} {params or ''}")
        response = await self._client.get(url, params=params)
        self._request_count += 1

        if response.status_code == 200:
            if not response.content or not response.content.strip():
                return {"value": []}
            return response.json()

        if response.status_code == 204:
            return {}

        if response.status_code == 404:
            logger.debug(f"404 Not Found: {url}")
            return {"value": [], "_not_found": True}

        raise GraphAPIError(response.status_code, _error_message(response), url)

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {"total_requests": self._request_count}


def _error_message(response: httpx.Response) -> str:
    """Extract the Graph error message, falling back to the raw body."""
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    return (body.get("error") or {}).get("message", response.text[:200])
