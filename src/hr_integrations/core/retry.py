# PUBLIC_INTERFACE
"""
Bounded exponential backoff with jitter.

Provider overrides merge over DEFAULT_RETRY_OPTIONS; the resolved options are
immutable for the lifetime of a RetryManager. A server Retry-After wins over the
computed backoff. Delays are in seconds.
"""
from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .constants import DEFAULT_RETRY_OPTIONS, PROVIDER_RETRY_OPTIONS
from .errors import IntegrationError, RateLimitError, is_retryable_error
from .logging import IntegrationLogger
from .models import RetryOptions

T = TypeVar("T")

JITTER_FACTOR = 0.2


# PUBLIC_INTERFACE
def resolve_retry_options(provider_id: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> RetryOptions:
    """Merge global defaults, the provider's tuning and explicit overrides (last wins)."""
    update: Dict[str, Any] = {}
    if provider_id:
        update.update(PROVIDER_RETRY_OPTIONS.get(provider_id, {}))
    update.update(overrides or {})
    return RetryOptions.model_validate({**DEFAULT_RETRY_OPTIONS.model_dump(), **update})


def _error_name(error: BaseException) -> str:
    return error.name if isinstance(error, IntegrationError) else type(error).__name__


class RetryManager:
    """Retries transient failures of a zero-arg coroutine function."""

    def __init__(
        self,
        provider_id: Optional[str] = None,
        options: Optional[RetryOptions] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        logger: Optional[IntegrationLogger] = None,
    ):
        self.provider_id = provider_id
        self._options = options or resolve_retry_options(provider_id)
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._log = logger or IntegrationLogger.create(component="retry", provider_id=provider_id)

    @property
    def config(self) -> RetryOptions:
        return self._options

    def _matches_retryable_list(self, error: BaseException) -> bool:
        names = self._options.retryable_errors
        if not names:
            return False
        error_name = _error_name(error)
        message = str(error)
        return any(n == error_name or n in message for n in names)

    # PUBLIC_INTERFACE
    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """True if another attempt is allowed and the error looks transient."""
        if attempt >= self._options.max_attempts:
            return False
        if isinstance(error, RateLimitError):
            return True
        # Typed errors carry their own verdict; the name list and heuristic are for untyped ones
        if isinstance(error, IntegrationError):
            return error.retryable
        if self._matches_retryable_list(error):
            return True
        return is_retryable_error(error)

    # PUBLIC_INTERFACE
    def base_delay(self, attempt: int) -> float:
        """Backoff for an attempt before jitter: initial * multiplier^(attempt-1), capped."""
        opts = self._options
        return min(opts.max_delay, opts.initial_delay * opts.backoff_multiplier ** (attempt - 1))

    # PUBLIC_INTERFACE
    def calculate_delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Seconds to wait after a failed attempt."""
        if isinstance(error, RateLimitError) and error.retry_after:
            return float(error.retry_after)
        delay = self.base_delay(attempt)
        jitter = delay * JITTER_FACTOR * (2 * self._rng.random() - 1)
        return max(0.0, delay + jitter)

    # PUBLIC_INTERFACE
    async def execute(self, fn: Callable[[], Awaitable[T]], context: Optional[Dict[str, Any]] = None) -> T:
        """Run fn, retrying per should_retry. The last error propagates unchanged."""
        context = context or {}
        attempt = 1
        while True:
            try:
                return await fn()
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    if attempt > 1:
                        self._log.error("Giving up after retries", exc, attempt=attempt, **context)
                    raise
                delay = self.calculate_delay(attempt, exc)
                self._log.warn(
                    "Retrying after failure",
                    attempt=attempt,
                    max_attempts=self._options.max_attempts,
                    delay_ms=round(delay * 1000),
                    error=_error_name(exc),
                    **context,
                )
                await self._sleep(delay)
                attempt += 1


# PUBLIC_INTERFACE
def with_retry(
    manager: RetryManager, fn: Callable[[], Awaitable[T]], context: Optional[Dict[str, Any]] = None
) -> Callable[[], Awaitable[T]]:
    """Return a zero-arg coroutine function running fn under the manager's policy."""

    async def call() -> T:
        return await manager.execute(fn, context)

    return call
