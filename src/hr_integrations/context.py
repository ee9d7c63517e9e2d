# PUBLIC_INTERFACE
"""
Process-wide integration context.

Constructed once at startup and handed to request handlers. It owns the shared
pieces (rate limiter, OAuth manager, storage, cache, HTTP client) so nothing in
the package relies on module-level singletons, and tests build their own.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx
from motor.motor_asyncio import AsyncIOMotorClient

from .core.cache import CacheBackend, InMemoryCache, RedisCache
from .core.db import create_mongo_client, get_database
from .core.errors import ConfigurationError, IntegrationNotFoundError, ProviderNotFoundError
from .core.logging import IntegrationLogger
from .core.models import (
    ApiKeyCredentials,
    AuthType,
    BasicCredentials,
    IntegrationConfig,
    IntegrationState,
    OAuth2Config,
    utcnow,
)
from .core.rate_limiter import RateLimiter
from .core.security import TokenCipher
from .core.settings import Settings, get_settings
from .core.token_store import InMemoryIntegrationStore, IntegrationStore, MongoIntegrationStore
from .oauth.config import get_oauth_config
from .oauth.manager import OAuthManager
from .providers.auth import ApiKeyAuth, AuthStrategy, BasicAuth, OAuth2Auth
from .providers.base import Provider
from .providers.registry import ProviderRegistry, default_registry
from .providers.transport import HttpxTransport, Transport

_CREDENTIALS_KEY = "credentials"


class IntegrationContext:
    """Dependency-injection root for the integration framework."""

    def __init__(
        self,
        settings: Settings,
        store: IntegrationStore,
        cache: CacheBackend,
        cipher: TokenCipher,
        rate_limiter: Optional[RateLimiter] = None,
        registry: Optional[ProviderRegistry] = None,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
        mongo_client: Optional[AsyncIOMotorClient] = None,
    ):
        self.settings = settings
        self.store = store
        self.cache = cache
        self.cipher = cipher
        self.rate_limiter = rate_limiter or RateLimiter()
        self.registry = registry or default_registry()
        self.http = http
        self.clock = clock
        self._mongo_client = mongo_client
        self.oauth = OAuthManager(store, cipher, cache, self.oauth_config, http=http, clock=clock)
        self.log = IntegrationLogger.create(service="integrations", component="context")

    # PUBLIC_INTERFACE
    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "IntegrationContext":
        """Build the context from settings.

        MongoDB storage when MONGODB_URL is set and a Redis cache when REDIS_URL is
        set; in-memory otherwise. Providers share one HTTP client, closed by aclose().
        """
        settings = settings or get_settings()
        cipher = overrides.pop("cipher", None) or TokenCipher(settings.security.ENCRYPTION_KEY)
        mongo_client = None
        store = overrides.pop("store", None)
        if store is None:
            if settings.mongo.MONGODB_URL:
                mongo_client = create_mongo_client(settings.mongo)
                store = MongoIntegrationStore(get_database(mongo_client, settings.mongo))
            else:
                store = InMemoryIntegrationStore()
        cache = overrides.pop("cache", None)
        if cache is None:
            cache = RedisCache.from_url(settings.cache.REDIS_URL) if settings.cache.REDIS_URL else InMemoryCache()
        return cls(
            settings=settings,
            store=store,
            cache=cache,
            http=overrides.pop("http", None) or httpx.AsyncClient(),
            cipher=cipher,
            mongo_client=mongo_client,
            **overrides,
        )

    # PUBLIC_INTERFACE
    def oauth_config(self, provider_id: str) -> OAuth2Config:
        """OAuth2Config for a registered OAuth provider; ProviderNotFoundError for any other id."""
        metadata = self.registry.get(provider_id)
        if metadata.auth_type != AuthType.OAUTH2:
            raise ProviderNotFoundError(provider_id)
        return get_oauth_config(provider_id, self.settings)

    # PUBLIC_INTERFACE
    async def register_static_integration(
        self,
        provider_id: str,
        tenant_id: str,
        credentials: Dict[str, str],
        integration_id: str,
        user_id: Optional[str] = None,
    ) -> IntegrationConfig:
        """Store an API-key or Basic integration with its credentials encrypted."""
        metadata = self.registry.get(provider_id)
        if metadata.auth_type == AuthType.OAUTH2:
            raise ConfigurationError(f"{provider_id} connects through OAuth", provider_id=provider_id)
        self._static_auth(metadata.auth_type, credentials, provider_id)
        config = IntegrationConfig(
            id=integration_id,
            provider_id=provider_id,
            company_id=tenant_id,
            user_id=user_id,
            status=IntegrationState.CONNECTED,
            settings={_CREDENTIALS_KEY: self.cipher.encrypt(json.dumps(credentials))},
        )
        return await self.store.save_integration(config)

    @staticmethod
    def _static_auth(auth_type: AuthType, credentials: Dict[str, Any], provider_id: str) -> AuthStrategy:
        try:
            if auth_type == AuthType.API_KEY:
                return ApiKeyAuth(ApiKeyCredentials.model_validate(credentials))
            return BasicAuth(BasicCredentials.model_validate(credentials))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid {auth_type.value} credentials", provider_id=provider_id, cause=exc)

    async def _auth_for(self, integration: IntegrationConfig, auth_type: AuthType) -> AuthStrategy:
        if auth_type == AuthType.OAUTH2:
            tokens = await self.oauth.get_tokens(integration.id)

            async def refresher(_refresh_token: str):
                return await self.oauth.refresh_access_token(integration.id)

            return OAuth2Auth(
                self.oauth_config(integration.provider_id),
                tokens=tokens,
                http=self.http,
                clock=self.clock,
                refresher=refresher,
            )
        blob = integration.settings.get(_CREDENTIALS_KEY)
        plain = self.cipher.decrypt(blob) if isinstance(blob, str) else None
        if plain is None:
            raise ConfigurationError("Integration has no usable credentials", provider_id=integration.provider_id)
        return self._static_auth(auth_type, json.loads(plain), integration.provider_id)

    # PUBLIC_INTERFACE
    async def provider_for(self, integration_id: str, transport: Optional[Transport] = None) -> Provider:
        """Initialized Provider for a stored integration, sharing this context's rate limiter."""
        integration = await self.store.get_integration(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(integration_id)
        metadata = self.registry.get(integration.provider_id)
        auth = await self._auth_for(integration, metadata.auth_type)
        provider = self.registry.create(
            metadata.id,
            auth,
            self.rate_limiter,
            transport or HttpxTransport(self.http),
        )
        await provider.initialize(integration)
        return provider

    async def aclose(self) -> None:
        await self.cache.close()
        await self.store.close()
        if self.http is not None:
            await self.http.aclose()
        if self._mongo_client is not None:
            self._mongo_client.close()
        self.log.info("Integration context closed")
