from __future__ import annotations

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..context import IntegrationContext
from ..core.errors import AuthenticationError, IntegrationError, IntegrationNotFoundError, RateLimitError
from ..core.logging import IntegrationLogger, get_logger
from ..core.models import IntegrationConfig
from ..core.response import integration_error_payload, ok
from ..core.settings import Settings, get_settings
from ..core.observability import RequestContextMiddleware
from .models import (
    AuthorizeData,
    ErrorResponse,
    HealthData,
    IntegrationData,
    RateLimitStatusData,
    RevokeData,
    SuccessResponse,
    TokenStatusData,
)

logger = get_logger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Service status"},
    {"name": "Providers", "description": "Provider catalog and rate-limit status"},
    {"name": "OAuth", "description": "Authorization-code flow: authorize URL and callback"},
    {"name": "Integrations", "description": "Token refresh and revocation for installed integrations"},
]

_error_responses = {
    401: {"model": ErrorResponse, "description": "Authentication failed"},
    404: {"model": ErrorResponse, "description": "Provider or integration not found"},
}


def get_context(request: Request) -> IntegrationContext:
    return request.app.state.context


def get_tenant_id(request: Request, ctx: IntegrationContext = Depends(get_context)) -> str:
    """Resolve tenant ID from the configured tenant header; falls back to the default tenant."""
    tenant = ctx.settings.tenant
    return request.headers.get(tenant.TENANT_HEADER_NAME) or tenant.DEFAULT_TENANT_ID


async def _owned_integration(ctx: IntegrationContext, integration_id: str, tenant_id: str) -> IntegrationConfig:
    integration = await ctx.store.get_integration(integration_id)
    # Other tenants' integrations are reported as missing
    if integration is None or integration.company_id != tenant_id:
        raise IntegrationNotFoundError(integration_id)
    return integration


# PUBLIC_INTERFACE
def create_app(context: Optional[IntegrationContext] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. Without a context, one is built from settings at startup and closed at shutdown."""
    settings = settings or (context.settings if context is not None else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        app.state.context = context or IntegrationContext.from_settings(settings)
        await app.state.context.store.ensure_indexes()
        try:
            yield
        finally:
            if owned:
                await app.state.context.aclose()

    app = FastAPI(
        title=settings.api.API_TITLE,
        description=settings.api.API_DESCRIPTION,
        version=settings.api.API_VERSION,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    if context is not None:
        # Available before startup so TestClient works without entering the lifespan
        app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware, tenant_header_name=settings.tenant.TENANT_HEADER_NAME, logger=logger)

    error_log = IntegrationLogger.create(service="integrations", component="api")

    @app.exception_handler(IntegrationError)
    async def integration_error_handler(request: Request, exc: IntegrationError):
        status_code = exc.status_code or 500
        if status_code >= 500:
            error_log.error("Request failed", exc, path=request.url.path)
        else:
            error_log.warn("Request rejected", path=request.url.path, error=exc.to_dict())
        headers = {}
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            headers["Retry-After"] = str(int(exc.retry_after))
        return JSONResponse(status_code=status_code, content=integration_error_payload(exc), headers=headers)

    # PUBLIC_INTERFACE
    @app.get(
        "/",
        summary="Health Check",
        description="Health check endpoint that returns service status and environment.",
        tags=["Health"],
        response_model=SuccessResponse[HealthData],
    )
    def health_check(ctx: IntegrationContext = Depends(get_context)):
        """Health check endpoint that returns service status and environment."""
        return ok({"message": "Healthy", "env": ctx.settings.tenant.ENV})

    # PUBLIC_INTERFACE
    @app.get(
        "/providers",
        summary="List providers",
        description="Provider catalog: auth kind, scopes and rate-limit hints.",
        tags=["Providers"],
        response_model=SuccessResponse[List[dict]],
    )
    def list_providers(ctx: IntegrationContext = Depends(get_context)):
        return ok([m.model_dump(mode="json") for m in ctx.registry.list_public()])

    # PUBLIC_INTERFACE
    @app.get(
        "/rate-limits/{provider_id}",
        summary="Rate-limit status",
        description="Current token bucket for a provider. Does not consume tokens.",
        tags=["Providers"],
        response_model=SuccessResponse[RateLimitStatusData],
        responses=_error_responses,
    )
    def rate_limit_status(provider_id: str, ctx: IntegrationContext = Depends(get_context)):
        ctx.registry.get(provider_id)
        return ok(ctx.rate_limiter.get_status(provider_id))

    # PUBLIC_INTERFACE
    @app.get(
        "/integrations/oauth/{provider_id}/authorize",
        summary="Start OAuth",
        description="Return the provider's authorization URL. The tenant comes from the tenant header.",
        tags=["OAuth"],
        response_model=SuccessResponse[AuthorizeData],
        responses={**_error_responses, 500: {"model": ErrorResponse, "description": "Provider not configured"}},
    )
    async def oauth_authorize(
        provider_id: str,
        user_id: Optional[str] = Query(default=None, description="Owning user for personal integrations"),
        tenant_id: str = Depends(get_tenant_id),
        ctx: IntegrationContext = Depends(get_context),
    ):
        url = await ctx.oauth.get_authorization_url(provider_id, tenant_id, user_id)
        return ok({"auth_url": url})

    # PUBLIC_INTERFACE
    @app.get(
        "/integrations/oauth/{provider_id}/callback",
        summary="OAuth callback",
        description="Exchange the authorization code, create the integration and store its encrypted tokens.",
        tags=["OAuth"],
        response_model=SuccessResponse[IntegrationData],
        responses=_error_responses,
    )
    async def oauth_callback(
        provider_id: str,
        code: Optional[str] = Query(default=None),
        state: Optional[str] = Query(default=None),
        error: Optional[str] = Query(default=None, description="Set by the provider when the user denied access"),
        ctx: IntegrationContext = Depends(get_context),
    ):
        if error or not code or not state:
            raise AuthenticationError(f"Authorization was not granted ({error or 'missing code or state'})", provider_id)
        integration = await ctx.oauth.connect(code, state, expected_provider_id=provider_id)
        return ok(IntegrationData(**integration.model_dump(mode="json")).model_dump())

    # PUBLIC_INTERFACE
    @app.post(
        "/integrations/{integration_id}/refresh",
        summary="Refresh tokens",
        description="Force a token refresh for an OAuth integration. Token values are never returned.",
        tags=["Integrations"],
        response_model=SuccessResponse[TokenStatusData],
        responses=_error_responses,
    )
    async def refresh_tokens(
        integration_id: str,
        tenant_id: str = Depends(get_tenant_id),
        ctx: IntegrationContext = Depends(get_context),
    ):
        await _owned_integration(ctx, integration_id, tenant_id)
        tokens = await ctx.oauth.refresh_access_token(integration_id)
        return ok(
            TokenStatusData(
                integration_id=integration_id,
                token_type=tokens.token_type,
                expires_at=tokens.expires_at,
                scopes=tokens.scopes,
            ).model_dump(mode="json")
        )

    # PUBLIC_INTERFACE
    @app.delete(
        "/integrations/{integration_id}/tokens",
        summary="Revoke tokens",
        description="Delete the stored tokens of an integration and mark it disconnected.",
        tags=["Integrations"],
        response_model=SuccessResponse[RevokeData],
        responses=_error_responses,
    )
    async def revoke_tokens(
        integration_id: str,
        tenant_id: str = Depends(get_tenant_id),
        ctx: IntegrationContext = Depends(get_context),
    ):
        await _owned_integration(ctx, integration_id, tenant_id)
        await ctx.oauth.revoke_tokens(integration_id)
        return ok({"integration_id": integration_id, "revoked": True})

    return app
