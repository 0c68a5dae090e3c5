"""
Async Exchange Online admin API client.

Exchange settings have no Graph surface. The admin REST endpoint used by the
ExchangeOnlineManagement module accepts a cmdlet name and parameters through
``POST /adminapi/beta/{tenant}/InvokeCommand`` and returns the cmdlet output
as OData JSON. Only ``Get-*`` cmdlets are allowed through the guardian.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import (
    EXCHANGE_BASE_URL,
    MAX_PAGES_PER_ENDPOINT,
    HTTP_TIMEOUT_SECONDS,
    HTTP_CONNECT_TIMEOUT_SECONDS,
)
from ..safety.guardian import ReadOnlyGuardian

logger = logging.getLogger("cis_m365_audit.exchange")

# Arbitration mailbox used to route admin API calls to the tenant's forest
ANCHOR_MAILBOX = "SystemMailbox{bb558c35-97f1-4cb9-8ff7-d53741dc928c}"


class ExchangeAPIError(Exception):
    """Raised when an Exchange cmdlet invocation fails."""
    def __init__(self, status_code: int, message: str, cmdlet: str):
        self.status_code = status_code
        self.cmdlet = cmdlet
        super().__init__(f"Exchange API Error {status_code} running {cmdlet}: {message}")


class ExchangeClient:
    """
    Async client for read-only Exchange Online cmdlets.

    ``tenant`` is the tenant ID (GUID) or an accepted domain; ``tenant_domain``
    is the initial ``*.onmicrosoft.com`` domain used for mailbox anchoring.
    """

    def __init__(
        self,
        access_token: str,
        guardian: ReadOnlyGuardian,
        tenant: str,
        tenant_domain: str = "",
        base_url: str = EXCHANGE_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self.tenant = tenant
        self.tenant_domain = tenant_domain
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._request_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-ResponseFormat": "json",
        }
        if self.tenant_domain:
            headers["X-AnchorMailbox"] = f"UPN:{ANCHOR_MAILBOX}@{self.tenant_domain}"
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(HTTP_TIMEOUT_SECONDS, connect=HTTP_CONNECT_TIMEOUT_SECONDS),
            transport=self._transport,
            headers=headers,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/adminapi/beta/{self.tenant}/InvokeCommand"

    async def invoke(self, cmdlet: str, parameters: Optional[dict[str, Any]] = None) -> list[dict]:
        """
        Run a Get-* cmdlet and return every object it emits.
        Follows @odata.nextLink for cmdlets with large result sets.
        """
        if not self._client:
            raise RuntimeError("ExchangeClient not initialized. Use 'async with' context.")

        body = {"CmdletInput": {"CmdletName": cmdlet, "Parameters": parameters or {}}}
        url: Optional[str] = self.endpoint
        items: list[dict] = []
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guardian.validate_request("POST", url, body)
            logger.debug(f"{cmdlet} {parameters or ''} -> {url}")
            response = await self._client.post(
                url, json=body, headers={"X-CmdletName": cmdlet}
            )
            self._request_count += 1

            if response.status_code != 200:
                raise ExchangeAPIError(response.status_code, _error_message(response), cmdlet)

            data = response.json() if response.content else {}
            items.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
            pages += 1

        if url:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for cmdlet: {cmdlet}"
            )
        return items

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {"total_requests": self._request_count}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    return (body.get("error") or {}).get("message", response.text[:200])
