from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """At most one in-flight call per key.

    Callers arriving while a call for the same key is running await that call's
    outcome (result or exception) instead of starting another one. The slot is
    released as soon as the call settles, so a later call runs fresh.
    """

    def __init__(self) -> None:
        self._inflight: Dict[Hashable, "asyncio.Future[T]"] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    # PUBLIC_INTERFACE
    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn for key, or join the call already running for it."""
        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing)

        future: "asyncio.Future[T]" = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so a flight nobody joined does not warn on GC
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(key, None)
