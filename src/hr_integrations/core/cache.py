"""
Key-value cache collaborator.

The OAuth manager keeps short-lived values here (PKCE verifiers keyed by the
nonce carried in the encrypted state). InMemoryCache serves single-instance
deployments; RedisCache lets a callback land on any API instance.
"""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from .logging import get_logger

logger = get_logger(__name__)


class CacheBackend:
    """Base class for cache backends."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def pop(self, key: str) -> Optional[str]:
        """Read and delete a key. Used for one-shot values."""
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def close(self) -> None:
        pass


class InMemoryCache(CacheBackend):
    """
    Simple in-memory cache for single-instance deployments.
    Not suitable for production multi-instance deployments.
    """

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.monotonic):
        self._cache: Dict[str, Tuple[str, Optional[float]]] = {}
        self._max_size = max_size
        self._clock = clock
        self._lock = asyncio.Lock()

    def _cleanup_expired(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expiry) in self._cache.items() if expiry is not None and expiry <= now]
        for key in expired:
            del self._cache[key]

    def _live(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, expiry = entry
        if expiry is not None and expiry <= self._clock():
            del self._cache[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        async with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_size:
                self._cleanup_expired()
                if len(self._cache) >= self._max_size:
                    # Evict oldest entry
                    del self._cache[next(iter(self._cache))]
            expiry = self._clock() + ttl if ttl else None
            self._cache[key] = (value, expiry)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def pop(self, key: str) -> Optional[str]:
        async with self._lock:
            value = self._live(key)
            self._cache.pop(key, None)
            return value


class RedisCache(CacheBackend):
    """
    Redis-based cache for distributed deployments.
    """

    def __init__(self, client: "redis.Redis"):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        """Lazily connecting client; the first command opens the connection."""
        return cls(
            redis.from_url(
                url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
        )

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        if ttl:
            # millisecond expiry keeps fractional TTLs
            return bool(await self._redis.set(key, value, px=max(1, int(ttl * 1000))))
        return bool(await self._redis.set(key, value))

    async def delete(self, key: str) -> bool:
        return await self._redis.delete(key) > 0

    async def pop(self, key: str) -> Optional[str]:
        # GETDEL is atomic, so a verifier is handed out once across instances
        return await self._redis.getdel(key)

    async def exists(self, key: str) -> bool:
        return await self._redis.exists(key) > 0

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Redis cache closed")
