from __future__ import annotations

from typing import Dict

from ..core.constants import OAUTH_ENDPOINTS, OAUTH_SCOPES
from ..core.errors import ConfigurationError, ProviderNotFoundError
from ..core.models import OAuth2Config
from ..core.settings import OAuthClient, Settings

# Families that get a refresh token only when offline access is requested explicitly
_EXTRA_AUTHORIZE_PARAMS: Dict[str, Dict[str, str]] = {
    "google": {"access_type": "offline", "prompt": "consent"},
}

_PKCE_FAMILIES = frozenset({"google"})


def provider_family(provider_id: str) -> str:
    """'google_calendar' -> 'google'; single-product providers map to themselves."""
    return provider_id.split("_", 1)[0]


def _client_for(family: str, settings: Settings) -> OAuthClient:
    return getattr(settings.oauth, family.upper(), None) or OAuthClient()


# PUBLIC_INTERFACE
def get_oauth_config(provider_id: str, settings: Settings) -> OAuth2Config:
    """Build the OAuth2Config for an OAuth provider from settings.

    Raises ProviderNotFoundError for providers without OAuth and
    ConfigurationError when the client credentials are missing.
    """
    family = provider_family(provider_id)
    endpoints = OAUTH_ENDPOINTS.get(family)
    if endpoints is None or provider_id not in OAUTH_SCOPES:
        raise ProviderNotFoundError(provider_id)
    client = _client_for(family, settings)
    if not client.CLIENT_ID or not client.CLIENT_SECRET:
        raise ConfigurationError(
            f"OAuth client credentials missing for {provider_id} ({family.upper()}_CLIENT_ID / {family.upper()}_CLIENT_SECRET)",
            provider_id=provider_id,
        )
    return OAuth2Config(
        auth_url=endpoints["auth"],
        token_url=endpoints["token"],
        revoke_url=endpoints.get("revoke"),
        client_id=client.CLIENT_ID,
        client_secret=client.CLIENT_SECRET,
        scopes=list(OAUTH_SCOPES[provider_id]),
        redirect_uri=settings.oauth.redirect_uri(provider_id),
        pkce=family in _PKCE_FAMILIES,
        extra_authorize_params=dict(_EXTRA_AUTHORIZE_PARAMS.get(family, {})),
    )
