"""
Audit session — the authenticated clients shared by every control in a run.

Each remote surface is connected on first use. A connection failure is
remembered and re-raised for every later control that needs the same surface,
so a tenant without Exchange access reports ERROR on Exchange controls while
Graph controls still run.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import httpx

from .auth.authenticator import Authenticator
from .config import EngineConfig, EXCHANGE_RESOURCE, GRAPH_RESOURCE
from .dnsquery.resolver import TxtResolver
from .exchange.client import ExchangeClient
from .graph.client import GraphClient
from .safety.guardian import ReadOnlyGuardian

logger = logging.getLogger("cis_m365_audit.session")

GRAPH = "graph"
EXCHANGE = "exchange"
DNS = "dns"


class AuditSession:
    """Lazily connected Graph, Exchange Online and DNS clients."""

    def __init__(
        self,
        config: EngineConfig,
        authenticator: Authenticator,
        guardian: Optional[ReadOnlyGuardian] = None,
        graph_transport: Optional[httpx.AsyncBaseTransport] = None,
        exchange_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.authenticator = authenticator
        self.guardian = guardian or ReadOnlyGuardian()
        self._graph_transport = graph_transport
        self._exchange_transport = exchange_transport
        self._graph: Optional[GraphClient] = None
        self._exchange: Optional[ExchangeClient] = None
        self._dns: Optional[TxtResolver] = None
        self._failures: dict[str, Exception] = {}
        self._tenant_domain = config.audit.tenant_domain

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def connect(self, services: Iterable[str]) -> None:
        """Make sure every surface in ``services`` is connected."""
        for service in services:
            if service == GRAPH:
                await self.graph()
            elif service == EXCHANGE:
                await self.exchange()
            elif service == DNS:
                self.dns()
            else:
                raise ValueError(f"Unknown service: {service}")

    async def graph(self) -> GraphClient:
        if self._graph is None:
            self._raise_previous_failure(GRAPH)
            try:
                token = await self.authenticator.acquire_token(GRAPH_RESOURCE)
                client = GraphClient(
                    access_token=token,
                    guardian=self.guardian,
                    base_url=self.config.audit.graph_url,
                    transport=self._graph_transport,
                )
                self._graph = await client.__aenter__()
            except Exception as e:
                self._failures[GRAPH] = e
                raise
            logger.info("Connected to Microsoft Graph")
        return self._graph

    async def exchange(self) -> ExchangeClient:
        if self._exchange is None:
            self._raise_previous_failure(EXCHANGE)
            try:
                tenant_domain = await self.tenant_domain()
                token = await self.authenticator.acquire_token(EXCHANGE_RESOURCE)
                client = ExchangeClient(
                    access_token=token,
                    guardian=self.guardian,
                    tenant=self.config.auth.tenant_id or tenant_domain,
                    tenant_domain=tenant_domain,
                    base_url=self.config.audit.exchange_url,
                    transport=self._exchange_transport,
                )
                self._exchange = await client.__aenter__()
            except Exception as e:
                self._failures[EXCHANGE] = e
                raise
            logger.info("Connected to Exchange Online")
        return self._exchange

    def dns(self) -> TxtResolver:
        if self._dns is None:
            self._dns = TxtResolver(self.config.audit.dns_nameservers or None)
        return self._dns

    async def tenant_domain(self) -> str:
        """The initial *.onmicrosoft.com domain, from config or Graph."""
        if not self._tenant_domain:
            graph = await self.graph()
            data = await graph.get("organization", params={"$select": "verifiedDomains"})
            for org in data.get("value", []):
                for domain in org.get("verifiedDomains") or []:
                    if domain.get("isInitial"):
                        self._tenant_domain = domain.get("name", "")
        return self._tenant_domain

    def _raise_previous_failure(self, service: str) -> None:
        if service in self._failures:
            raise self._failures[service]

    async def close(self) -> None:
        """Tear down clients; teardown failures are only logged."""
        for service, client in ((GRAPH, self._graph), (EXCHANGE, self._exchange)):
            if client is None:
                continue
            self.guardian.record_requests(service, client.get_stats()["total_requests"])
            try:
                await client.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing {type(client).__name__}: {e}")
        self._graph = None
        self._exchange = None
        self.authenticator.close()
