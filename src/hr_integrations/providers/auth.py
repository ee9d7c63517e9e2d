# PUBLIC_INTERFACE
"""
Authentication strategies injected into a Provider.

A provider uses exactly one credential kind. Each strategy contributes the
Authorization header for outgoing calls and may hook into the provider
lifecycle:

- OAuth2Auth: authorization URL (optional PKCE), code exchange, refresh with the
  5-minute margin, revocation.
- ApiKeyAuth: static ``Bearer <key>``.
- BasicAuth: static ``Basic base64(user:pass)``.

Token endpoint calls go straight to httpx; they are not rate limited and not
retried here.
"""
from __future__ import annotations

import base64
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Type
from urllib.parse import urlencode

import httpx

from ..core.concurrency import SingleFlight
from ..core.constants import TIMEOUTS, TOKEN_REFRESH_MARGIN_SECONDS
from ..core.errors import (
    AuthenticationError,
    ConfigurationError,
    IntegrationError,
    TokenExpiredError,
    TokenRefreshError,
    wrap_error,
)
from ..core.logging import IntegrationLogger
from ..core.models import ApiKeyCredentials, AuthType, BasicCredentials, OAuth2Config, OAuth2Tokens, utcnow
from ..core.security import compute_expiry, generate_pkce

Clock = Callable[[], datetime]


@asynccontextmanager
async def _token_client(http: Optional[httpx.AsyncClient]) -> AsyncIterator[httpx.AsyncClient]:
    if http is not None:
        yield http
    else:
        async with httpx.AsyncClient(timeout=TIMEOUTS["token"]) as client:
            yield client


# PUBLIC_INTERFACE
async def post_token_request(
    url: str,
    data: Dict[str, str],
    error_cls: Type[IntegrationError],
    provider_id: Optional[str] = None,
    http: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """POST a form-encoded grant to a token endpoint and return the JSON payload.

    Non-2xx responses and payloads without an access_token raise error_cls.
    Transport failures are normalized with wrap_error.
    """
    try:
        async with _token_client(http) as client:
            resp = await client.post(
                url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=TIMEOUTS["token"],
            )
    except httpx.HTTPError as exc:
        raise wrap_error(exc, provider_id)
    if resp.is_error:
        raise error_cls(f"Token endpoint returned {resp.status_code}", provider_id=provider_id)
    try:
        payload = resp.json()
    except ValueError as exc:
        raise error_cls("Token endpoint returned a non-JSON body", provider_id=provider_id, cause=exc)
    if not isinstance(payload, dict) or not payload.get("access_token"):
        # Some providers answer 200 with {"ok": false, "error": ...}
        reason = payload.get("error") if isinstance(payload, dict) else None
        raise error_cls(f"Token endpoint did not return an access token ({reason or 'no reason'})", provider_id=provider_id)
    return payload


# PUBLIC_INTERFACE
def tokens_from_payload(
    payload: Dict[str, Any],
    fallback_scopes: List[str],
    prior_refresh_token: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OAuth2Tokens:
    """Build OAuth2Tokens from a token endpoint payload.

    The prior refresh token is kept when the provider does not rotate it.
    """
    scope = payload.get("scope")
    if isinstance(scope, str):
        scopes = [s for s in scope.replace(",", " ").split(" ") if s]
    else:
        scopes = list(fallback_scopes)
    return OAuth2Tokens(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token") or prior_refresh_token,
        token_type=payload.get("token_type") or "Bearer",
        expires_at=compute_expiry(float(payload.get("expires_in") or 3600), now=now),
        scopes=scopes,
    )


# PUBLIC_INTERFACE
def build_authorization_url(config: OAuth2Config, state: Optional[str] = None, code_challenge: Optional[str] = None) -> str:
    """Authorize URL with client id, redirect URI, space-joined scopes and optional S256 challenge."""
    params: Dict[str, str] = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": " ".join(config.scopes),
    }
    params.update(config.extra_authorize_params)
    if state:
        params["state"] = state
    if code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    return f"{config.auth_url}?{urlencode(params)}"


def bearer_scheme(token_type: str) -> str:
    # Some providers answer "bearer"; normalize the common case
    return "Bearer" if token_type.lower() == "bearer" else token_type


class AuthStrategy:
    """Capability interface for one credential kind."""

    auth_type: AuthType

    def __init__(self) -> None:
        self.provider_id: Optional[str] = None
        self.log = IntegrationLogger.create(component="auth")

    def bind(self, provider_id: str, logger: IntegrationLogger) -> None:
        """Attach the owning provider's id and scoped logger."""
        self.provider_id = provider_id
        self.log = logger.child(auth=self.auth_type.value)

    async def on_initialize(self) -> None:
        return None

    async def auth_headers(self) -> Dict[str, str]:
        raise NotImplementedError

    async def health_check(self) -> bool:
        """Cheap validity probe. Static credentials can only be checked by a real call."""
        raise ConfigurationError(
            f"No health check configured for {self.auth_type.value} credentials", provider_id=self.provider_id
        )

    async def on_disconnect(self) -> None:
        return None


class ApiKeyAuth(AuthStrategy):
    auth_type = AuthType.API_KEY

    def __init__(self, credentials: ApiKeyCredentials):
        super().__init__()
        self.credentials = credentials

    async def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.credentials.api_key}"}


class BasicAuth(AuthStrategy):
    auth_type = AuthType.BASIC

    def __init__(self, credentials: BasicCredentials):
        super().__init__()
        self.credentials = credentials

    async def auth_headers(self) -> Dict[str, str]:
        raw = f"{self.credentials.username}:{self.credentials.password}".encode("utf-8")
        return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}


class OAuth2Auth(AuthStrategy):
    """OAuth 2.0 authorization-code credentials for one integration.

    States: no tokens -> valid -> near expiry -> refreshing -> valid, or expired
    without a refresh token (TokenExpiredError), and back to no tokens on revoke.
    Refreshes of one instance are single-flight: concurrent callers share the
    outcome of the exchange already in progress.
    """

    auth_type = AuthType.OAUTH2

    def __init__(
        self,
        config: OAuth2Config,
        tokens: Optional[OAuth2Tokens] = None,
        http: Optional[httpx.AsyncClient] = None,
        clock: Clock = utcnow,
        refresher: Optional[Callable[[str], Awaitable[OAuth2Tokens]]] = None,
    ):
        super().__init__()
        self.config = config
        self._tokens = tokens
        self._http = http
        self._clock = clock
        self._refresher = refresher
        self._code_verifier: Optional[str] = None
        self._refreshes: SingleFlight[OAuth2Tokens] = SingleFlight()
        self._expiry_reported = False

    @property
    def tokens(self) -> Optional[OAuth2Tokens]:
        return self._tokens

    def set_tokens(self, tokens: Optional[OAuth2Tokens]) -> None:
        """Load tokens, e.g. from storage."""
        self._tokens = tokens
        self._expiry_reported = False
        if tokens is not None:
            self.log.debug("Tokens set", has_refresh_token=bool(tokens.refresh_token), expires_at=tokens.expires_at)

    # PUBLIC_INTERFACE
    def get_authorization_url(self, state: Optional[str] = None) -> str:
        """Build the provider's authorize URL. Never includes the client secret."""
        challenge = None
        if self.config.pkce:
            pkce = generate_pkce()
            self._code_verifier = pkce.verifier
            challenge = pkce.challenge
        url = build_authorization_url(self.config, state, challenge)
        self.log.info("Generated OAuth authorization URL", auth_url=self.config.auth_url, scopes=self.config.scopes)
        return url

    # PUBLIC_INTERFACE
    async def exchange_code_for_tokens(self, code: str, code_verifier: Optional[str] = None) -> OAuth2Tokens:
        """Exchange an authorization code. Failures raise AuthenticationError."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": self.config.redirect_uri,
        }
        verifier = code_verifier or self._code_verifier
        if self.config.pkce and verifier:
            data["code_verifier"] = verifier
        with self.log.measure("oauth.exchange_code"):
            payload = await post_token_request(
                self.config.token_url, data, AuthenticationError, self.provider_id, self._http
            )
        self._code_verifier = None
        self._tokens = tokens_from_payload(payload, self.config.scopes, now=self._clock())
        self.log.info(
            "Exchanged code for tokens",
            has_refresh_token=bool(self._tokens.refresh_token),
            expires_at=self._tokens.expires_at,
            scopes=self._tokens.scopes,
        )
        return self._tokens

    # PUBLIC_INTERFACE
    async def refresh_access_token(self, refresh_token: str) -> OAuth2Tokens:
        """Refresh tokens. Failures raise TokenRefreshError."""
        return await self._refreshes.do(refresh_token, lambda: self._refresh(refresh_token))

    async def _refresh(self, refresh_token: str) -> OAuth2Tokens:
        if self._refresher is not None:
            # Persisted integrations refresh through their owner so the new set is stored
            self._tokens = await self._refresher(refresh_token)
            return self._tokens
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        with self.log.measure("oauth.refresh"):
            payload = await post_token_request(
                self.config.token_url, data, TokenRefreshError, self.provider_id, self._http
            )
        self._tokens = tokens_from_payload(payload, self.config.scopes, refresh_token, now=self._clock())
        self.log.info(
            "Refreshed access token",
            expires_at=self._tokens.expires_at,
            rotated_refresh_token=bool(payload.get("refresh_token")),
        )
        return self._tokens

    # PUBLIC_INTERFACE
    async def get_valid_access_token(self) -> str:
        """Return an access token valid for at least the refresh margin, refreshing first if needed."""
        if self._tokens is None:
            raise AuthenticationError("No tokens available. Please authenticate first.", provider_id=self.provider_id)
        expires_in = self._tokens.expires_in(self._clock())
        if expires_in < TOKEN_REFRESH_MARGIN_SECONDS:
            if not self._tokens.refresh_token:
                # Retries cannot recover this; warn once per token set
                if not self._expiry_reported:
                    self._expiry_reported = True
                    self.log.warn(
                        "Access token expired without a refresh token; re-authorization required",
                        expires_in=expires_in,
                    )
                raise TokenExpiredError(
                    "Access token expired and no refresh token available", provider_id=self.provider_id
                )
            self.log.debug("Access token expiring soon, refreshing", expires_in=expires_in)
            await self.refresh_access_token(self._tokens.refresh_token)
        return self._tokens.access_token

    async def auth_headers(self) -> Dict[str, str]:
        token = await self.get_valid_access_token()
        return {"Authorization": f"{bearer_scheme(self._tokens.token_type)} {token}"}

    async def health_check(self) -> bool:
        await self.get_valid_access_token()
        return True

    # PUBLIC_INTERFACE
    async def revoke_tokens(self) -> None:
        """Revoke server-side where supported, then forget the tokens."""
        if self._tokens is None:
            self.log.warn("No tokens to revoke")
            return
        await self.perform_revocation(self._tokens)
        self._tokens = None
        self.log.info("Revoked OAuth tokens")

    async def perform_revocation(self, tokens: OAuth2Tokens) -> None:
        if not self.config.revoke_url:
            self.log.debug("Provider has no revocation endpoint; clearing tokens locally")
            return
        try:
            async with _token_client(self._http) as client:
                resp = await client.post(
                    self.config.revoke_url,
                    data={"token": tokens.refresh_token or tokens.access_token},
                    timeout=TIMEOUTS["token"],
                )
        except httpx.HTTPError as exc:
            raise wrap_error(exc, self.provider_id)
        if resp.is_error:
            raise AuthenticationError(f"Token revocation returned {resp.status_code}", provider_id=self.provider_id)

    async def on_disconnect(self) -> None:
        self._tokens = None
        self._code_verifier = None
