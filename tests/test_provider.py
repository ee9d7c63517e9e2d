import json

import httpx
import pytest

from hr_integrations.core.constants import PROVIDER_METADATA
from hr_integrations.core.errors import (
    ApiError,
    ConfigurationError,
    NetworkError,
    ProviderNotFoundError,
    ResourceNotFoundError,
)
from hr_integrations.core.models import (
    ApiKeyCredentials,
    BasicCredentials,
    IntegrationConfig,
    IntegrationState,
    RequestOptions,
)
from hr_integrations.core.rate_limiter import RateLimiter
from hr_integrations.core.retry import RetryManager
from hr_integrations.providers.auth import ApiKeyAuth, BasicAuth
from hr_integrations.providers.base import Provider
from hr_integrations.providers.registry import ProviderRegistry, default_registry
from hr_integrations.providers.transport import HttpxTransport, parse_rate_limit_headers


class Upstream:
    """Scripted provider API: pops one response (or exception) per request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        # fresh copy so repeated answers do not share a consumed stream
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)


def make_provider(upstream, clock, sleep, provider_id="personio", auth=None, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return Provider(
        PROVIDER_METADATA[provider_id],
        auth or ApiKeyAuth(ApiKeyCredentials(api_key="pk-live-123")),
        RateLimiter(clock=clock.monotonic, sleep=sleep),
        HttpxTransport(client),
        retry_factory=lambda pid, opts, log: RetryManager(pid, opts, sleep=sleep, logger=log),
        **kwargs,
    )


def integration(provider_id="personio"):
    return IntegrationConfig(id="int-1", provider_id=provider_id, company_id="acme")


@pytest.mark.asyncio
async def test_request_requires_initialize(clock, sleep):
    provider = make_provider(Upstream(httpx.Response(200, json={})), clock, sleep)
    with pytest.raises(ConfigurationError):
        await provider.make_request(RequestOptions(url="https://api.personio.de/v1/employees"))


@pytest.mark.asyncio
async def test_initialize_rejects_foreign_integration(clock, sleep):
    provider = make_provider(Upstream(httpx.Response(200)), clock, sleep)
    with pytest.raises(ConfigurationError):
        await provider.initialize(integration("slack"))
    assert not provider.initialized


@pytest.mark.asyncio
async def test_successful_request_merges_headers(clock, sleep):
    upstream = Upstream(
        httpx.Response(
            200,
            json={"data": [{"id": 1}]},
            headers={"x-ratelimit-limit": "100", "x-ratelimit-remaining": "99", "x-ratelimit-reset": "1714554000"},
        )
    )
    provider = make_provider(upstream, clock, sleep)
    await provider.initialize(integration())

    response = await provider.make_request(
        RequestOptions(
            url=Provider.build_url("https://api.personio.de/v1/employees", {"limit": 50, "active": True}),
            headers={"Content-Type": "application/vnd.api+json"},
        )
    )
    assert response.success and response.status_code == 200
    assert response.data == {"data": [{"id": 1}]}
    assert response.rate_limit.remaining == 99

    sent = upstream.requests[0]
    assert sent.headers["Authorization"] == "Bearer pk-live-123"
    assert sent.headers["Content-Type"] == "application/vnd.api+json"
    assert sent.headers["User-Agent"] == "HRIntegrations/1.0"
    assert sent.url.params["limit"] == "50"
    assert sent.url.params["active"] == "true"


@pytest.mark.asyncio
async def test_rate_limited_response_is_retried_after_server_delay(clock, sleep):
    upstream = Upstream(
        httpx.Response(429, headers={"Retry-After": "2"}),
        httpx.Response(200, json={"ok": True}),
    )
    provider = make_provider(upstream, clock, sleep)
    await provider.initialize(integration())

    response = await provider.make_request(RequestOptions(url="https://api.personio.de/v1/employees"))
    assert response.data == {"ok": True}
    assert len(upstream.requests) == 2
    assert sleep.delays[0] == 2.0
    # The drained bucket makes the retry wait for one refill as well
    assert sleep.delays[1] == pytest.approx(1 / 5)


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(clock, sleep):
    upstream = Upstream(httpx.Response(404, json={"error": "missing"}))
    provider = make_provider(upstream, clock, sleep)
    await provider.initialize(integration())
    with pytest.raises(ResourceNotFoundError):
        await provider.make_request(RequestOptions(url="https://api.personio.de/v1/employees/9"))
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_server_errors_exhaust_attempts(clock, sleep):
    upstream = Upstream(httpx.Response(503, text="unavailable"))
    provider = make_provider(upstream, clock, sleep)
    await provider.initialize(integration())
    with pytest.raises(ApiError) as info:
        await provider.make_request(RequestOptions(url="https://api.personio.de/v1/employees"))
    assert info.value.status_code == 503
    assert len(upstream.requests) == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_transport_failures_are_normalized(clock, sleep):
    upstream = Upstream(httpx.ConnectError("connection refused"))
    provider = make_provider(upstream, clock, sleep)
    await provider.initialize(integration())
    with pytest.raises(NetworkError) as info:
        await provider.make_request(RequestOptions(url="https://api.personio.de/v1/employees"))
    assert info.value.provider_id == "personio"
    assert len(upstream.requests) == 3


@pytest.mark.asyncio
async def test_basic_auth_header(clock, sleep):
    upstream = Upstream(httpx.Response(200, json=[]))
    auth = BasicAuth(BasicCredentials(username="api", password="s3cret"))
    provider = make_provider(upstream, clock, sleep, provider_id="hibob", auth=auth)
    await provider.initialize(integration("hibob"))
    await provider.make_request(RequestOptions(method="POST", url="https://api.hibob.com/v1/people/search", body={"q": 1}))
    assert upstream.requests[0].headers["Authorization"] == "Basic YXBpOnMzY3JldA=="
    assert json.loads(upstream.requests[0].content) == {"q": 1}


@pytest.mark.asyncio
async def test_check_connection_without_probe_reports_error(clock, sleep):
    provider = make_provider(Upstream(httpx.Response(200)), clock, sleep)
    await provider.initialize(integration())
    status = await provider.check_connection()
    assert status.is_connected is False
    assert status.state == IntegrationState.ERROR
    assert status.health_status == "error"
    assert status.last_error


@pytest.mark.asyncio
async def test_check_connection_uses_health_probe(clock, sleep):
    upstream = Upstream(httpx.Response(200, json={"data": []}))

    async def probe(provider):
        await provider.make_request(RequestOptions(url="https://api.personio.de/v1/company/employees?limit=1"))
        return True

    provider = make_provider(upstream, clock, sleep, health_probe=probe)
    await provider.initialize(integration())
    status = await provider.check_connection()
    assert status.is_connected and status.health_status == "healthy"
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_disconnect_uninitializes(clock, sleep):
    provider = make_provider(Upstream(httpx.Response(200)), clock, sleep)
    await provider.initialize(integration())
    await provider.disconnect()
    assert not provider.initialized
    with pytest.raises(ConfigurationError):
        await provider.disconnect()


@pytest.mark.asyncio
async def test_disconnect_closes_owned_client_only(clock, sleep):
    owned = Provider(
        PROVIDER_METADATA["personio"],
        ApiKeyAuth(ApiKeyCredentials(api_key="pk-live-123")),
        RateLimiter(clock=clock.monotonic, sleep=sleep),
    )
    await owned.initialize(integration())
    client = owned.transport.client
    await owned.disconnect()
    assert client.is_closed

    shared = make_provider(Upstream(httpx.Response(200)), clock, sleep)
    await shared.initialize(integration())
    await shared.disconnect()
    assert not shared.transport.client.is_closed


def test_registry_lookup_and_creation(clock, sleep):
    registry = default_registry()
    assert "slack" in registry
    ids = [m.id for m in registry.list_public()]
    assert ids == sorted(ids)
    with pytest.raises(ProviderNotFoundError):
        registry.get("workday")

    limiter = RateLimiter(clock=clock.monotonic, sleep=sleep)
    provider = registry.create("a3", ApiKeyAuth(ApiKeyCredentials(api_key="k")), limiter)
    assert provider.provider_id == "a3"
    with pytest.raises(ValueError):
        registry.create("bamboohr", ApiKeyAuth(ApiKeyCredentials(api_key="k")), limiter)


def test_custom_registry_only_knows_registered_providers():
    registry = ProviderRegistry([PROVIDER_METADATA["hibob"]])
    assert [m.id for m in registry.list_public()] == ["hibob"]
    assert "slack" not in registry


def test_parse_rate_limit_headers_needs_all_fields():
    assert parse_rate_limit_headers({"x-ratelimit-limit": "10"}) is None
    info = parse_rate_limit_headers(
        {"x-ratelimit-limit": "10", "x-ratelimit-remaining": "3", "x-ratelimit-reset": "1714554000"}
    )
    assert info.limit == 10 and info.remaining == 3
