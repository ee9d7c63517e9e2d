# PUBLIC_INTERFACE
"""
Provider: lifecycle contract and request pipeline shared by every integration.

One concrete class; what differs between providers is injected:
- metadata (ProviderMetadata) describing the provider type,
- an AuthStrategy contributing the Authorization header,
- a Transport performing the HTTP call,
- an optional health probe.

Request pipeline: retry(rate_limit(execute_request)). Every attempt spends a
token from the provider's bucket, and all failures leave make_request as
IntegrationError subclasses.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..core.constants import TIMEOUTS, USER_AGENT
from ..core.errors import ConfigurationError, IntegrationError, wrap_error
from ..core.logging import IntegrationLogger
from ..core.models import (
    ApiResponse,
    IntegrationConfig,
    IntegrationState,
    IntegrationStatus,
    ProviderMetadata,
    RequestOptions,
    RetryOptions,
)
from ..core.rate_limiter import RateLimiter, rate_limited
from ..core.retry import RetryManager, resolve_retry_options, with_retry
from .auth import AuthStrategy
from .transport import HttpxTransport, Transport

HealthProbe = Callable[["Provider"], Awaitable[bool]]


class Provider:
    """A third-party API integration bound to one tenant's installed integration."""

    def __init__(
        self,
        metadata: ProviderMetadata,
        auth: AuthStrategy,
        rate_limiter: RateLimiter,
        transport: Optional[Transport] = None,
        health_probe: Optional[HealthProbe] = None,
        retry_overrides: Optional[Dict[str, Any]] = None,
        retry_factory: Optional[Callable[[str, RetryOptions, IntegrationLogger], RetryManager]] = None,
    ):
        self.metadata = metadata
        self.auth = auth
        self.rate_limiter = rate_limiter
        self.transport = transport or HttpxTransport()
        self._health_probe = health_probe
        self._retry_overrides = retry_overrides or {}
        self._retry_factory = retry_factory or (lambda pid, opts, log: RetryManager(pid, opts, logger=log))
        self.config: Optional[IntegrationConfig] = None
        self.logger = IntegrationLogger.create(service="integrations", provider=metadata.id)
        self.retry_manager: Optional[RetryManager] = None
        self.initialized = False

    @property
    def provider_id(self) -> str:
        return self.metadata.id

    # PUBLIC_INTERFACE
    async def initialize(self, config: IntegrationConfig) -> None:
        """Bind the tenant's integration config; required before any other operation."""
        if config.provider_id != self.metadata.id:
            raise ConfigurationError(
                f"Integration {config.id} belongs to {config.provider_id}, not {self.metadata.id}",
                provider_id=self.metadata.id,
            )
        self.config = config
        self.logger = IntegrationLogger.create(
            service="integrations",
            provider=config.provider_id,
            integration_id=config.id,
            company_id=config.company_id,
            user_id=config.user_id,
        )
        options = resolve_retry_options(self.provider_id, self._retry_overrides)
        self.retry_manager = self._retry_factory(self.provider_id, options, self.logger.child(component="retry"))
        self.auth.bind(self.provider_id, self.logger)
        self.initialized = True
        self.logger.info("Provider initialized", auth_type=self.auth.auth_type.value, status=config.status.value)
        await self.auth.on_initialize()

    def ensure_initialized(self) -> IntegrationConfig:
        if not self.initialized or self.config is None:
            raise ConfigurationError("Provider not initialized. Call initialize() first.", provider_id=self.provider_id)
        return self.config

    # PUBLIC_INTERFACE
    async def check_connection(self) -> IntegrationStatus:
        """Run the health probe. Never raises; failures are reported as an unhealthy status."""
        config = self.ensure_initialized()
        last_sync = config.metadata.get("last_sync")
        try:
            healthy = await (self._health_probe(self) if self._health_probe else self.auth.health_check())
        except Exception as exc:
            error = wrap_error(exc, self.provider_id)
            self.logger.error("Connection check failed", error)
            return IntegrationStatus(
                is_connected=False,
                state=IntegrationState.ERROR,
                last_sync=last_sync,
                last_error=error.message,
                health_status="error",
            )
        tokens = getattr(self.auth, "tokens", None)
        status = IntegrationStatus(
            is_connected=healthy,
            state=IntegrationState.CONNECTED if healthy else IntegrationState.ERROR,
            last_sync=last_sync,
            tokens_expire_at=tokens.expires_at if tokens is not None else None,
            health_status="healthy" if healthy else "error",
        )
        self.logger.info("Connection check completed", is_connected=healthy, state=status.state.value)
        return status

    # PUBLIC_INTERFACE
    async def disconnect(self) -> None:
        """Run the strategy's cleanup, release the transport, clear the config and mark uninitialized."""
        self.ensure_initialized()
        self.logger.info("Disconnecting provider")
        await self.auth.on_disconnect()
        # Only closes a client the transport created itself
        await self.transport.aclose()
        self.initialized = False
        self.config = None
        self.retry_manager = None
        self.logger.info("Provider disconnected")

    def default_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "User-Agent": USER_AGENT}

    # PUBLIC_INTERFACE
    async def make_request(self, options: RequestOptions) -> ApiResponse:
        """Throttled, retried request. Raises IntegrationError subclasses only."""
        self.ensure_initialized()
        if options.timeout is None:
            options = options.model_copy(update={"timeout": TIMEOUTS["default"]})
        operation = f"{options.method} {options.url}"
        self.logger.debug(f"Making {operation}", has_body=options.body is not None, has_params=bool(options.params))

        async def attempt() -> ApiResponse:
            return await self.execute_request(options)

        pipeline = with_retry(
            self.retry_manager,
            rate_limited(self.rate_limiter, self.provider_id, attempt),
            {"operation": operation},
        )
        try:
            response = await pipeline()
        except Exception as exc:
            error = wrap_error(exc, self.provider_id)
            self.logger.error(f"Request failed: {operation}", error)
            raise error
        self.logger.debug(f"Request completed: {operation}", status_code=response.status_code)
        return response

    # PUBLIC_INTERFACE
    async def execute_request(self, options: RequestOptions) -> ApiResponse:
        """One HTTP attempt. Transport failures are normalized here, once."""
        headers = {**self.default_headers(), **await self.auth.auth_headers(), **options.headers}
        try:
            return await self.transport.send(options.model_copy(update={"headers": headers}), self.provider_id)
        except IntegrationError:
            raise
        except Exception as exc:
            raise wrap_error(exc, self.provider_id) from exc

    # PUBLIC_INTERFACE
    @staticmethod
    def build_url(base_url: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """Append query params to a URL, keeping any it already carries."""
        if not params:
            return base_url
        parts = urlsplit(base_url)
        query = parse_qsl(parts.query, keep_blank_values=True)
        for key, value in params.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            query.append((key, str(value)))
        return urlunsplit(parts._replace(query=urlencode(query)))

    async def aclose(self) -> None:
        await self.transport.aclose()
