"""
In-memory stand-ins for the Graph, Exchange and DNS clients.

Controls only use the small read surface of each client, so the fakes serve
canned payloads keyed by endpoint, cmdlet or DNS name and record every call.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

import pytest

from cis_m365_audit.session import DNS, EXCHANGE, GRAPH


class FakeGraph:
    """
    ``routes`` maps an endpoint to either a list (a collection) or a dict
    (a single object). An Exception value is raised when the endpoint is read.
    Unknown endpoints behave like a Graph 404.
    """

    def __init__(self, routes: Optional[dict[str, Any]] = None):
        self.routes = dict(routes or {})
        self.calls: list[tuple[str, Optional[dict], bool]] = []

    def _lookup(self, endpoint: str, params: Optional[dict], beta: bool) -> Any:
        self.calls.append((endpoint, params, beta))
        value = self.routes.get(endpoint)
        if isinstance(value, Exception):
            raise value
        return value

    async def get(self, endpoint: str, params: Optional[dict] = None, beta: bool = False) -> dict:
        value = self._lookup(endpoint, params, beta)
        if value is None:
            return {"value": [], "_not_found": True}
        if isinstance(value, list):
            return {"value": list(value)}
        return dict(value)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        skip_top: bool = False,
    ) -> list[dict]:
        value = self._lookup(endpoint, params, beta)
        if value is None:
            return []
        return list(value)

    def requested(self, endpoint: str) -> int:
        return sum(1 for call in self.calls if call[0] == endpoint)


class FakeExchange:
    """``cmdlets`` maps a cmdlet name to the objects it emits."""

    def __init__(self, cmdlets: Optional[dict[str, Any]] = None):
        self.cmdlets = dict(cmdlets or {})
        self.calls: list[tuple[str, Optional[dict]]] = []

    async def invoke(self, cmdlet: str, parameters: Optional[dict] = None) -> list[dict]:
        self.calls.append((cmdlet, parameters))
        value = self.cmdlets.get(cmdlet, [])
        if isinstance(value, Exception):
            raise value
        if isinstance(value, dict):
            return [value]
        return list(value)


class FakeResolver:
    """``records`` maps a name to its TXT strings; an Exception value is raised."""

    def __init__(self, records: Optional[dict[str, list[str]]] = None):
        self.records = dict(records or {})
        self.queries: list[str] = []

    async def txt(self, name: str) -> list[str]:
        self.queries.append(name)
        value = self.records.get(name, [])
        if isinstance(value, Exception):
            raise value
        return list(value)


class FakeSession:
    """Mirrors AuditSession: lazily handed-out clients and memoized connection failures."""

    def __init__(
        self,
        graph: Optional[FakeGraph] = None,
        exchange: Optional[FakeExchange] = None,
        resolver: Optional[FakeResolver] = None,
        failures: Optional[dict[str, Exception]] = None,
    ):
        self._graph = graph or FakeGraph()
        self._exchange = exchange or FakeExchange()
        self._resolver = resolver or FakeResolver()
        self.failures = dict(failures or {})
        self.connected: list[str] = []

    async def connect(self, services: Iterable[str]) -> None:
        for service in services:
            if service == GRAPH:
                await self.graph()
            elif service == EXCHANGE:
                await self.exchange()
            elif service == DNS:
                self.dns()

    def _check(self, service: str) -> None:
        if service in self.failures:
            raise self.failures[service]
        if service not in self.connected:
            self.connected.append(service)

    async def graph(self) -> FakeGraph:
        self._check(GRAPH)
        return self._graph

    async def exchange(self) -> FakeExchange:
        self._check(EXCHANGE)
        return self._exchange

    def dns(self) -> FakeResolver:
        self._check(DNS)
        return self._resolver


# ─── Directory payload builders ─────────────────────────────────────────────

def graph_user(
    user_id: str,
    upn: str,
    enabled: bool = True,
    synced: Optional[bool] = None,
) -> dict:
    return {
        "@odata.type": "#microsoft.graph.user",
        "id": user_id,
        "userPrincipalName": upn,
        "displayName": upn.split("@")[0],
        "accountEnabled": enabled,
        "onPremisesSyncEnabled": synced,
    }


def graph_group(group_id: str, name: str = "") -> dict:
    return {"@odata.type": "#microsoft.graph.group", "id": group_id, "displayName": name or group_id}


def role_routes(role_members: dict[str, list[dict]]) -> dict[str, Any]:
    """Routes for directoryRoles and each role's members endpoint."""
    routes: dict[str, Any] = {"directoryRoles": []}
    for index, (name, members) in enumerate(role_members.items()):
        role_id = f"role-{index}"
        routes["directoryRoles"].append({"id": role_id, "displayName": name})
        routes[f"directoryRoles/{role_id}/members"] = members
    return routes


def license_detail(*plans: str, status: str = "Success", sku: str = "SKU") -> dict:
    return {
        "skuPartNumber": sku,
        "servicePlans": [{"servicePlanName": p, "provisioningStatus": status} for p in plans],
    }


def mfa_policy(
    name: str,
    include_users: Iterable[str] = ("All",),
    exclude_users: Iterable[str] = (),
    include_groups: Iterable[str] = (),
    exclude_groups: Iterable[str] = (),
    state: str = "enabled",
) -> dict:
    return {
        "id": name,
        "displayName": name,
        "state": state,
        "conditions": {
            "users": {
                "includeUsers": list(include_users),
                "excludeUsers": list(exclude_users),
                "includeGroups": list(include_groups),
                "excludeGroups": list(exclude_groups),
            }
        },
        "grantControls": {"operator": "OR", "builtInControls": ["mfa"]},
    }


@pytest.fixture
def make_session():
    def _make(graph_routes=None, cmdlets=None, dns_records=None, failures=None) -> FakeSession:
        return FakeSession(
            graph=FakeGraph(graph_routes),
            exchange=FakeExchange(cmdlets),
            resolver=FakeResolver(dns_records),
            failures=failures,
        )
    return _make
