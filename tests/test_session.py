import httpx
import pytest

from cis_m365_audit.auth.authenticator import AuthenticationError
from cis_m365_audit.config import (
    AuditConfig,
    AuthConfig,
    CertificateAuth,
    EngineConfig,
    EXCHANGE_RESOURCE,
    GRAPH_RESOURCE,
)
from cis_m365_audit.session import AuditSession


class StubAuthenticator:
    def __init__(self, fail=None):
        self.fail = fail or {}
        self.requested: list[str] = []
        self.closed = False

    async def acquire_token(self, resource):
        self.requested.append(resource)
        if resource in self.fail:
            raise self.fail[resource]
        return f"token-for-{resource}"

    def close(self):
        self.closed = True


def _config(tenant_domain="contoso.onmicrosoft.com") -> EngineConfig:
    auth = AuthConfig(certificate=CertificateAuth(tenant_id="tenant-id", client_id="app", certificate_path="x"))
    return EngineConfig(auth=auth, audit=AuditConfig(tenant_domain=tenant_domain))


async def test_connection_failure_is_memoized():
    authenticator = StubAuthenticator(fail={GRAPH_RESOURCE: AuthenticationError("consent missing")})
    session = AuditSession(_config(), authenticator)

    for _ in range(3):
        with pytest.raises(AuthenticationError):
            await session.graph()

    assert authenticator.requested == [GRAPH_RESOURCE]
    await session.close()
    assert authenticator.closed


async def test_graph_failure_does_not_block_exchange():
    authenticator = StubAuthenticator(fail={GRAPH_RESOURCE: AuthenticationError("no graph")})

    def exchange_handler(request):
        assert request.headers["Authorization"] == f"Bearer token-for-{EXCHANGE_RESOURCE}"
        assert request.url.path == "/adminapi/beta/tenant-id/InvokeCommand"
        return httpx.Response(200, json={"value": [{"Identity": "contoso"}]})

    async with AuditSession(
        _config(), authenticator, exchange_transport=httpx.MockTransport(exchange_handler)
    ) as session:
        with pytest.raises(AuthenticationError):
            await session.connect(["graph"])
        exchange = await session.exchange()
        assert await exchange.invoke("Get-OrganizationConfig") == [{"Identity": "contoso"}]


async def test_clients_are_reused():
    authenticator = StubAuthenticator()
    session = AuditSession(
        _config(), authenticator,
        graph_transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})),
    )
    first = await session.graph()
    second = await session.graph()
    assert first is second
    assert authenticator.requested == [GRAPH_RESOURCE]
    await session.close()


async def test_tenant_domain_from_organization():
    def graph_handler(request):
        assert request.url.path == "/v1.0/organization"
        return httpx.Response(200, json={"value": [{"verifiedDomains": [
            {"name": "contoso.com", "isInitial": False},
            {"name": "contoso.onmicrosoft.com", "isInitial": True},
        ]}]})

    async with AuditSession(
        _config(tenant_domain=""), StubAuthenticator(),
        graph_transport=httpx.MockTransport(graph_handler),
    ) as session:
        assert await session.tenant_domain() == "contoso.onmicrosoft.com"


async def test_unknown_service_rejected():
    async with AuditSession(_config(), StubAuthenticator()) as session:
        with pytest.raises(ValueError):
            await session.connect(["teams"])


async def test_request_counts_recorded_on_close():
    session = AuditSession(
        _config(), StubAuthenticator(),
        graph_transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"value": []})),
        exchange_transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"value": []})),
    )
    graph = await session.graph()
    await graph.get("domains")
    await graph.get("organization")
    exchange = await session.exchange()
    await exchange.invoke("Get-OrganizationConfig")
    await session.close()

    assert session.guardian.get_audit_record()["requests"] == {"graph": 2, "exchange": 1}
