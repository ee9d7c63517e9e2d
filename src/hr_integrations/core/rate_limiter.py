# PUBLIC_INTERFACE
"""
Token bucket rate limiter, one bucket per provider id.

- Buckets are created lazily and start full; capacity is BURST_SECONDS worth of
  refill (10 seconds of burst).
- Callers that find the bucket short are suspended until enough tokens have
  accrued. Nothing is rejected: this shapes throughput.
- A RateLimitError carrying retry_after drains the bucket and pushes last_refill
  into the future, so local accounting follows the server's signal.

State is process-local.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from .constants import BURST_SECONDS, DEFAULT_REFILL_RATE, RATE_LIMITS
from .errors import RateLimitError
from .logging import IntegrationLogger

T = TypeVar("T")


@dataclass
class TokenBucket:
    tokens: float
    capacity: float
    refill_rate: float
    last_refill: float


class RateLimiter:
    """Shared throttle for outbound provider calls."""

    def __init__(
        self,
        limits: Optional[Mapping[str, float]] = None,
        default_refill_rate: float = DEFAULT_REFILL_RATE,
        burst_seconds: float = BURST_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._limits: Dict[str, float] = dict(RATE_LIMITS if limits is None else limits)
        self._default_refill_rate = default_refill_rate
        self._burst_seconds = burst_seconds
        self._clock = clock
        self._sleep = sleep
        self._capacities: Dict[str, float] = {}
        self._buckets: Dict[str, TokenBucket] = {}
        self._log = IntegrationLogger.create(component="rate_limiter")

    def _new_bucket(self, provider_id: str) -> TokenBucket:
        rate = self._limits.get(provider_id, self._default_refill_rate)
        capacity = self._capacities.get(provider_id, rate * self._burst_seconds)
        return TokenBucket(tokens=capacity, capacity=capacity, refill_rate=rate, last_refill=self._clock())

    def _bucket(self, provider_id: str) -> TokenBucket:
        bucket = self._buckets.get(provider_id)
        if bucket is None:
            bucket = self._buckets[provider_id] = self._new_bucket(provider_id)
        return bucket

    def _refill(self, bucket: TokenBucket) -> None:
        now = self._clock()
        elapsed = now - bucket.last_refill
        # last_refill may sit in the future after a server drain
        if elapsed > 0:
            bucket.tokens = min(bucket.capacity, bucket.tokens + elapsed * bucket.refill_rate)
            bucket.last_refill = now

    # PUBLIC_INTERFACE
    async def acquire(self, provider_id: str, cost: float = 1.0) -> float:
        """Take cost tokens, suspending until they are available. Returns seconds waited."""
        bucket = self._bucket(provider_id)
        if cost > bucket.capacity:
            raise ValueError(f"cost {cost} exceeds bucket capacity {bucket.capacity} for {provider_id}")
        waited = 0.0
        while True:
            self._refill(bucket)
            if bucket.tokens >= cost:
                bucket.tokens -= cost
                return waited
            blocked_for = max(0.0, bucket.last_refill - self._clock())
            delay = blocked_for + (cost - bucket.tokens) / bucket.refill_rate
            self._log.debug("Rate limit reached, waiting", provider_id=provider_id, wait_ms=round(delay * 1000))
            await self._sleep(delay)
            waited += delay

    # PUBLIC_INTERFACE
    async def execute(self, provider_id: str, fn: Callable[[], Awaitable[T]], cost: float = 1.0) -> T:
        """Gate fn behind the provider's bucket.

        A RateLimitError raised by fn with a retry_after drains the bucket before
        propagating unchanged.
        """
        await self.acquire(provider_id, cost)
        try:
            return await fn()
        except RateLimitError as exc:
            if exc.retry_after:
                self.apply_retry_after(provider_id, exc.retry_after)
            raise

    # PUBLIC_INTERFACE
    def apply_retry_after(self, provider_id: str, retry_after: float) -> None:
        """Drain the bucket and hold refills for retry_after seconds."""
        bucket = self._bucket(provider_id)
        bucket.tokens = 0.0
        bucket.last_refill = self._clock() + retry_after
        self._log.warn("Server rate limit received, bucket drained", provider_id=provider_id, retry_after=retry_after)

    # PUBLIC_INTERFACE
    def can_execute(self, provider_id: str, cost: float = 1.0) -> bool:
        """True if cost tokens are available right now. Does not consume."""
        bucket = self._bucket(provider_id)
        self._refill(bucket)
        return bucket.tokens >= cost

    # PUBLIC_INTERFACE
    def get_status(self, provider_id: str) -> Dict[str, Any]:
        bucket = self._bucket(provider_id)
        self._refill(bucket)
        return {
            "provider_id": provider_id,
            "tokens": bucket.tokens,
            "capacity": bucket.capacity,
            "refill_rate": bucket.refill_rate,
            "blocked_for": max(0.0, bucket.last_refill - self._clock()),
        }

    # PUBLIC_INTERFACE
    def reset(self, provider_id: str) -> None:
        """Forget the provider's bucket; the next use starts full."""
        self._buckets.pop(provider_id, None)

    def reset_all(self) -> None:
        self._buckets.clear()

    # PUBLIC_INTERFACE
    def configure(self, provider_id: str, refill_rate: float, capacity: Optional[float] = None) -> None:
        """Override a provider's rate. Replaces any existing bucket with a full one."""
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self._limits[provider_id] = refill_rate
        if capacity is not None:
            self._capacities[provider_id] = float(capacity)
        else:
            self._capacities.pop(provider_id, None)
        self._buckets[provider_id] = self._new_bucket(provider_id)


# PUBLIC_INTERFACE
def rate_limited(
    limiter: RateLimiter, provider_id: str, fn: Callable[[], Awaitable[T]], cost: float = 1.0
) -> Callable[[], Awaitable[T]]:
    """Return a zero-arg coroutine function running fn through the limiter."""

    async def call() -> T:
        return await limiter.execute(provider_id, fn, cost)

    return call
