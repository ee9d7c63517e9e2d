from .auth import ApiKeyAuth, AuthStrategy, BasicAuth, OAuth2Auth
from .base import Provider
from .registry import ProviderRegistry, default_registry
from .transport import HttpxTransport, Transport

__all__ = [
    "ApiKeyAuth",
    "AuthStrategy",
    "BasicAuth",
    "OAuth2Auth",
    "Provider",
    "ProviderRegistry",
    "default_registry",
    "HttpxTransport",
    "Transport",
]
