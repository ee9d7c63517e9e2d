# PUBLIC_INTERFACE
"""
Tenant-scoped OAuth orchestration for the server-side authorization-code flow.

- The OAuth ``state`` parameter is an encrypted JSON blob carrying
  {providerId, tenantId, userId, timestamp, nonce?}. It is unguessable and routes
  the callback without server-side sessions; blobs older than ten minutes are
  rejected before any network call.
- PKCE verifiers are parked in the key-value cache under the state's nonce and
  consumed once.
- Tokens are encrypted before they reach storage. Refreshes are single-flight
  per integration id.
- Token endpoint failures raise AuthenticationError (exchange) or
  TokenRefreshError (refresh) and are not retried here.
"""
from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx

from ..core.cache import CacheBackend
from ..core.concurrency import SingleFlight
from ..core.constants import OAUTH_STATE_MAX_AGE_SECONDS, TOKEN_REFRESH_MARGIN_SECONDS
from ..core.errors import (
    AuthenticationError,
    IntegrationNotFoundError,
    TokenExpiredError,
    TokenRefreshError,
    wrap_error,
)
from ..core.logging import IntegrationLogger
from ..core.models import IntegrationConfig, IntegrationState, OAuth2Config, OAuth2Tokens, TokenRecord, utcnow
from ..core.security import TokenCipher, generate_pkce
from ..core.token_store import IntegrationStore
from ..providers.auth import build_authorization_url, post_token_request, tokens_from_payload

# Clock skew tolerated for states stamped slightly in the future
_STATE_FUTURE_SKEW_SECONDS = 60
_PKCE_CACHE_PREFIX = "oauth:pkce:"
_STATE_KEYS = ("providerId", "tenantId", "userId", "timestamp", "nonce")


@dataclass
class OAuthExchangeResult:
    """Tokens plus the routing context recovered from the state."""

    tokens: OAuth2Tokens
    provider_id: str
    tenant_id: str
    user_id: Optional[str] = None
    custom_state: Dict[str, Any] = field(default_factory=dict)


class OAuthManager:
    def __init__(
        self,
        store: IntegrationStore,
        cipher: TokenCipher,
        cache: CacheBackend,
        config_resolver: Callable[[str], OAuth2Config],
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.store = store
        self.cipher = cipher
        self.cache = cache
        self._config_for = config_resolver
        self._http = http
        self._clock = clock
        self._new_id = id_factory
        self._refreshes: SingleFlight[OAuth2Tokens] = SingleFlight()
        self.log = IntegrationLogger.create(service="integrations", component="oauth-manager")

    # PUBLIC_INTERFACE
    async def get_authorization_url(
        self,
        provider_id: str,
        tenant_id: str,
        user_id: Optional[str] = None,
        custom_state: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Authorize URL whose state is the encrypted routing context."""
        self.log.info("Generating OAuth authorization URL", provider_id=provider_id, tenant_id=tenant_id, user_id=user_id)
        config = self._config_for(provider_id)
        # Routing fields win over caller-supplied keys
        state: Dict[str, Any] = {
            **(custom_state or {}),
            "providerId": provider_id,
            "tenantId": tenant_id,
            "userId": user_id,
            "timestamp": self._clock().timestamp(),
        }
        challenge = None
        if config.pkce:
            pkce = generate_pkce()
            nonce = secrets.token_urlsafe(16)
            await self.cache.set(_PKCE_CACHE_PREFIX + nonce, pkce.verifier, ttl=OAUTH_STATE_MAX_AGE_SECONDS)
            state["nonce"] = nonce
            challenge = pkce.challenge
        url = build_authorization_url(config, self.cipher.encrypt_json(state), challenge)
        self.log.debug("OAuth URL generated", provider_id=provider_id, auth_url=config.auth_url, pkce=config.pkce)
        return url

    # PUBLIC_INTERFACE
    def decode_state(self, state: str) -> Dict[str, Any]:
        """Decrypt and validate a state blob. AuthenticationError if forged or stale."""
        data = self.cipher.decrypt_json(state) if state else None
        if not data or not data.get("providerId") or not data.get("tenantId"):
            raise AuthenticationError("Invalid OAuth state")
        try:
            issued_at = float(data["timestamp"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError("Invalid OAuth state", provider_id=data.get("providerId"))
        age = self._clock().timestamp() - issued_at
        if age > OAUTH_STATE_MAX_AGE_SECONDS or age < -_STATE_FUTURE_SKEW_SECONDS:
            raise AuthenticationError("OAuth state expired", provider_id=data["providerId"])
        return data

    # PUBLIC_INTERFACE
    async def exchange_code_for_tokens(
        self, code: str, state: str, expected_provider_id: Optional[str] = None
    ) -> OAuthExchangeResult:
        """Validate state, then exchange the code at the provider's token endpoint.

        With expected_provider_id, a state minted for another provider is rejected
        before any verifier is consumed or network call made.
        """
        self.log.info("Exchanging authorization code for tokens")
        data = self.decode_state(state)
        provider_id = data["providerId"]
        if expected_provider_id is not None and provider_id != expected_provider_id:
            raise AuthenticationError("OAuth state does not match this provider", provider_id=expected_provider_id)
        try:
            config = self._config_for(provider_id)
            form = {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": config.redirect_uri,
            }
            if config.pkce:
                verifier = await self.cache.pop(_PKCE_CACHE_PREFIX + str(data.get("nonce")))
                if not verifier:
                    raise AuthenticationError("PKCE verifier expired or already used", provider_id=provider_id)
                form["code_verifier"] = verifier
            payload = await post_token_request(config.token_url, form, AuthenticationError, provider_id, self._http)
            tokens = tokens_from_payload(payload, config.scopes, now=self._clock())
        except Exception as exc:
            error = wrap_error(exc, provider_id)
            self.log.error("Failed to exchange code for tokens", error, provider_id=provider_id)
            raise error
        self.log.info(
            "Exchanged code for tokens",
            provider_id=provider_id,
            has_refresh_token=bool(tokens.refresh_token),
            expires_at=tokens.expires_at,
        )
        return OAuthExchangeResult(
            tokens=tokens,
            provider_id=provider_id,
            tenant_id=data["tenantId"],
            user_id=data.get("userId"),
            custom_state={k: v for k, v in data.items() if k not in _STATE_KEYS},
        )

    # PUBLIC_INTERFACE
    async def connect(self, code: str, state: str, expected_provider_id: Optional[str] = None) -> IntegrationConfig:
        """Complete the callback: exchange, create the integration, persist its tokens."""
        result = await self.exchange_code_for_tokens(code, state, expected_provider_id)
        config = IntegrationConfig(
            id=self._new_id(),
            provider_id=result.provider_id,
            company_id=result.tenant_id,
            user_id=result.user_id,
            status=IntegrationState.CONNECTED,
            metadata={"connected_at": self._clock().isoformat(), **result.custom_state},
        )
        await self.store.save_integration(config)
        await self.save_tokens(config.id, result.tokens)
        self.log.info("Integration connected", integration_id=config.id, provider_id=config.provider_id)
        return config

    # PUBLIC_INTERFACE
    async def refresh_access_token(self, integration_id: str) -> OAuth2Tokens:
        """Refresh and persist an integration's tokens. Concurrent calls share one exchange."""
        return await self._refreshes.do(integration_id, lambda: self._refresh(integration_id))

    async def _refresh(self, integration_id: str) -> OAuth2Tokens:
        self.log.info("Refreshing access token", integration_id=integration_id)
        provider_id: Optional[str] = None
        try:
            integration = await self.store.get_integration(integration_id)
            if integration is None:
                raise IntegrationNotFoundError(integration_id)
            provider_id = integration.provider_id
            record = await self.store.get_token_record(integration_id)
            if record is None:
                raise AuthenticationError("No token found for integration", provider_id=provider_id)
            refresh_token = self.cipher.decrypt(record.refresh_token)
            if not refresh_token:
                raise TokenRefreshError("No usable refresh token stored for integration", provider_id=provider_id)
            config = self._config_for(provider_id)
            form = {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
            }
            payload = await post_token_request(config.token_url, form, TokenRefreshError, provider_id, self._http)
            tokens = tokens_from_payload(payload, record.scopes, refresh_token, now=self._clock())
            await self.save_tokens(integration_id, tokens)
        except Exception as exc:
            error = wrap_error(exc, provider_id)
            self.log.error("Failed to refresh access token", error, integration_id=integration_id)
            if isinstance(error, TokenRefreshError):
                await self.store.set_integration_status(integration_id, IntegrationState.ERROR, error.message)
            raise error
        self.log.info(
            "Refreshed access token", integration_id=integration_id, provider_id=provider_id, expires_at=tokens.expires_at
        )
        return tokens

    # PUBLIC_INTERFACE
    async def save_tokens(self, integration_id: str, tokens: OAuth2Tokens) -> TokenRecord:
        """Encrypt and upsert. Updates stamp last_refreshed and bump refresh_count."""
        self.log.debug("Saving tokens", integration_id=integration_id)
        existing = await self.store.get_token_record(integration_id)
        record = TokenRecord(
            integration_id=integration_id,
            access_token=self.cipher.encrypt(tokens.access_token),
            refresh_token=self.cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None,
            token_type=tokens.token_type,
            expires_at=tokens.expires_at,
            scopes=list(tokens.scopes),
            last_refreshed=self._clock(),
            refresh_count=existing.refresh_count + 1 if existing is not None else 0,
        )
        await self.store.save_token_record(record)
        return record

    # PUBLIC_INTERFACE
    async def get_tokens(self, integration_id: str) -> Optional[OAuth2Tokens]:
        """Decrypted tokens for an integration, or None when nothing is stored."""
        record = await self.store.get_token_record(integration_id)
        if record is None:
            return None
        access_token = self.cipher.decrypt(record.access_token)
        if access_token is None:
            raise AuthenticationError("Stored access token cannot be decrypted")
        return OAuth2Tokens(
            access_token=access_token,
            refresh_token=self.cipher.decrypt(record.refresh_token),
            token_type=record.token_type,
            expires_at=record.expires_at,
            scopes=record.scopes,
        )

    # PUBLIC_INTERFACE
    async def get_valid_access_token(self, integration_id: str) -> str:
        """Stored access token, refreshed first when it expires within the margin."""
        tokens = await self.get_tokens(integration_id)
        if tokens is None:
            raise AuthenticationError("No tokens available. Please authenticate first.")
        if tokens.expires_in(self._clock()) < TOKEN_REFRESH_MARGIN_SECONDS:
            if not tokens.refresh_token:
                raise TokenExpiredError("Access token expired and no refresh token available")
            tokens = await self.refresh_access_token(integration_id)
        return tokens.access_token

    # PUBLIC_INTERFACE
    async def revoke_tokens(self, integration_id: str) -> None:
        """Hard-delete the token record and mark the integration disconnected."""
        self.log.info("Revoking tokens", integration_id=integration_id)
        if not await self.store.delete_token_record(integration_id):
            raise IntegrationNotFoundError(integration_id)
        await self.store.set_integration_status(integration_id, IntegrationState.DISCONNECTED)
        self.log.info("Tokens revoked", integration_id=integration_id)
