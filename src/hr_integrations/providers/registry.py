from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..core.constants import PROVIDER_METADATA
from ..core.errors import ProviderNotFoundError
from ..core.models import ProviderMetadata
from ..core.rate_limiter import RateLimiter
from .auth import AuthStrategy
from .base import HealthProbe, Provider
from .transport import Transport


class ProviderRegistry:
    """In-memory registry of available provider types."""

    def __init__(self, providers: Optional[Iterable[ProviderMetadata]] = None):
        self._providers: Dict[str, ProviderMetadata] = {}
        self._probes: Dict[str, HealthProbe] = {}
        for metadata in providers or ():
            self.register(metadata)

    # PUBLIC_INTERFACE
    def register(self, metadata: ProviderMetadata, health_probe: Optional[HealthProbe] = None) -> None:
        """Register a provider type, optionally with its health probe."""
        self._providers[metadata.id] = metadata
        if health_probe is not None:
            self._probes[metadata.id] = health_probe

    # PUBLIC_INTERFACE
    def get(self, provider_id: str) -> ProviderMetadata:
        """Get a provider's metadata; ProviderNotFoundError if unknown."""
        metadata = self._providers.get(provider_id)
        if metadata is None:
            raise ProviderNotFoundError(provider_id)
        return metadata

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    # PUBLIC_INTERFACE
    def list_public(self) -> List[ProviderMetadata]:
        return sorted(self._providers.values(), key=lambda m: m.id)

    # PUBLIC_INTERFACE
    def create(
        self,
        provider_id: str,
        auth: AuthStrategy,
        rate_limiter: RateLimiter,
        transport: Optional[Transport] = None,
    ) -> Provider:
        """Build an uninitialized Provider for a registered type."""
        metadata = self.get(provider_id)
        if auth.auth_type != metadata.auth_type:
            raise ValueError(f"{provider_id} uses {metadata.auth_type.value} credentials, got {auth.auth_type.value}")
        return Provider(metadata, auth, rate_limiter, transport, health_probe=self._probes.get(provider_id))


# PUBLIC_INTERFACE
def default_registry() -> ProviderRegistry:
    """Registry preloaded with the built-in provider catalog."""
    return ProviderRegistry(PROVIDER_METADATA.values())
