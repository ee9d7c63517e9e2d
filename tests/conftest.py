import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from urllib.parse import parse_qsl

import httpx
import pytest

from hr_integrations.context import IntegrationContext
from hr_integrations.core.cache import InMemoryCache
from hr_integrations.core.rate_limiter import RateLimiter
from hr_integrations.core.security import TokenCipher
from hr_integrations.core.settings import (
    APISettings,
    LoggingSettings,
    MongoSettings,
    OAuthClient,
    OAuthSettings,
    SecuritySettings,
    Settings,
    TenantSettings,
)
from hr_integrations.core.token_store import InMemoryIntegrationStore


class FakeClock:
    """Controllable wall clock and monotonic clock sharing one timeline."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
        self._mono = 1000.0

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
        self._mono += seconds


class FakeSleep:
    """Records requested delays and moves the clock forward instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)


class TokenEndpoint:
    """MockTransport handler standing in for provider token endpoints."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.forms: List[dict] = []
        self.status_code = 200
        self.issued = 0
        self.payload_factory: Optional[Callable[[dict], dict]] = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        # yield so concurrent callers overlap with the in-flight exchange
        await asyncio.sleep(0)
        form = dict(parse_qsl(request.content.decode("utf-8")))
        self.requests.append(request)
        self.forms.append(form)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "invalid_grant"})
        self.issued += 1
        if self.payload_factory is not None:
            return httpx.Response(200, json=self.payload_factory(form))
        return httpx.Response(
            200,
            json={
                "access_token": f"access-{self.issued}",
                "refresh_token": f"refresh-{self.issued}",
                "token_type": "bearer",
                "expires_in": 3600,
            },
        )


def make_settings(**oauth_clients: OAuthClient) -> Settings:
    clients = {
        "SLACK": OAuthClient(CLIENT_ID="slack-client", CLIENT_SECRET="slack-secret"),
        "GOOGLE": OAuthClient(CLIENT_ID="google-client", CLIENT_SECRET="google-secret"),
    }
    clients.update(oauth_clients)
    return Settings(
        security=SecuritySettings(ENCRYPTION_KEY="test-encryption-key"),
        mongo=MongoSettings(),
        oauth=OAuthSettings(APP_URL="https://app.example.com", **clients),
        api=APISettings(),
        tenant=TenantSettings(ENV="test"),
        logging=LoggingSettings(),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher("test-encryption-key")


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
def http(token_endpoint) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(token_endpoint))


@pytest.fixture
def context(settings, cipher, http, clock, sleep) -> IntegrationContext:
    return IntegrationContext(
        settings=settings,
        store=InMemoryIntegrationStore(),
        cache=InMemoryCache(),
        cipher=cipher,
        rate_limiter=RateLimiter(clock=clock.monotonic, sleep=sleep),
        http=http,
        clock=clock,
    )


class RedisDouble:
    """In-process stand-in for the redis.asyncio commands RedisCache issues."""

    def __init__(self):
        self.data = {}
        self.expiries = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, px=None):
        self.data[key] = value
        if px is not None:
            self.expiries[key] = px
        return True

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def getdel(self, key):
        self.expiries.pop(key, None)
        return self.data.pop(key, None)

    async def exists(self, key):
        return int(key in self.data)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def redis_double() -> RedisDouble:
    return RedisDouble()
