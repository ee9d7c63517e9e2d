import asyncio

import pytest

from hr_integrations.core.errors import RateLimitError
from hr_integrations.core.rate_limiter import RateLimiter, rate_limited


@pytest.fixture
def limiter(clock, sleep):
    return RateLimiter(limits={"slack": 1, "hibob": 10}, clock=clock.monotonic, sleep=sleep)


class VirtualSleep:
    """Suspends the caller, then moves the shared clock to its wake time, never backwards."""

    def __init__(self, clock):
        self.clock = clock
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)
        wake = self.clock.monotonic() + seconds
        await asyncio.sleep(0)
        if wake > self.clock.monotonic():
            self.clock.advance(wake - self.clock.monotonic())


@pytest.mark.asyncio
async def test_bucket_starts_full_with_ten_seconds_of_burst(limiter):
    status = limiter.get_status("hibob")
    assert status["capacity"] == 100
    assert status["tokens"] == 100
    assert status["refill_rate"] == 10
    assert status["blocked_for"] == 0


@pytest.mark.asyncio
async def test_burst_then_throttle(limiter, sleep):
    waits = [await limiter.acquire("slack") for _ in range(15)]
    assert waits[:10] == [0.0] * 10
    assert waits[10] == pytest.approx(1.0)
    assert all(w == pytest.approx(1.0) for w in waits[10:])
    assert len(sleep.delays) == 5


@pytest.mark.asyncio
async def test_concurrent_burst_queues_waiters(clock):
    limiter = RateLimiter(limits={"slack": 1}, clock=clock.monotonic, sleep=VirtualSleep(clock))
    starts = []
    tokens_seen = []

    async def call():
        starts.append(clock.monotonic())
        tokens_seen.append(limiter.get_status("slack")["tokens"])
        await asyncio.sleep(0)
        return len(starts)

    results = await asyncio.gather(*(limiter.execute("slack", call) for _ in range(15)))

    assert len(results) == 15
    starts.sort()
    assert starts[:10] == [1000.0] * 10
    assert starts[10] - starts[9] == pytest.approx(1.0)
    assert starts[-1] == pytest.approx(1005.0)
    assert min(tokens_seen) >= 0
    assert limiter.get_status("slack")["tokens"] >= 0


@pytest.mark.asyncio
async def test_unknown_provider_uses_default_rate(limiter):
    status = limiter.get_status("somewhere_else")
    assert status["refill_rate"] == 1.0
    assert status["capacity"] == 10


@pytest.mark.asyncio
async def test_tokens_never_exceed_capacity(limiter, clock):
    await limiter.acquire("slack", cost=3)
    clock.advance(3600)
    assert limiter.get_status("slack")["tokens"] == 10


@pytest.mark.asyncio
async def test_cost_above_capacity_is_rejected(limiter):
    with pytest.raises(ValueError):
        await limiter.acquire("slack", cost=11)


@pytest.mark.asyncio
async def test_server_retry_after_holds_refills(limiter, clock):
    limiter.apply_retry_after("slack", 30)
    assert limiter.get_status("slack")["tokens"] == 0
    clock.advance(29)
    assert not limiter.can_execute("slack")
    clock.advance(2)
    assert limiter.can_execute("slack")


@pytest.mark.asyncio
async def test_acquire_after_drain_waits_for_block_and_refill(limiter):
    limiter.apply_retry_after("slack", 30)
    waited = await limiter.acquire("slack")
    assert waited == pytest.approx(31.0)


@pytest.mark.asyncio
async def test_execute_drains_bucket_on_rate_limit_error(limiter):
    async def call():
        raise RateLimitError("slow down", "slack", retry_after=5)

    with pytest.raises(RateLimitError):
        await limiter.execute("slack", call)
    status = limiter.get_status("slack")
    assert status["tokens"] == 0
    assert status["blocked_for"] == pytest.approx(5)


@pytest.mark.asyncio
async def test_execute_returns_result_and_spends_cost(limiter):
    async def call():
        return "done"

    assert await rate_limited(limiter, "slack", call, cost=2)() == "done"
    assert limiter.get_status("slack")["tokens"] == 8


def test_can_execute_does_not_consume(limiter):
    assert limiter.can_execute("slack", cost=10)
    assert limiter.get_status("slack")["tokens"] == 10


def test_configure_and_reset(limiter):
    limiter.configure("slack", refill_rate=2, capacity=4)
    assert limiter.get_status("slack")["capacity"] == 4
    limiter.reset("slack")
    status = limiter.get_status("slack")
    assert status["capacity"] == 4
    assert status["refill_rate"] == 2
    with pytest.raises(ValueError):
        limiter.configure("slack", refill_rate=0)


@pytest.mark.asyncio
async def test_reset_all_refills_every_bucket(limiter):
    await limiter.acquire("slack", cost=10)
    await limiter.acquire("hibob", cost=50)
    limiter.reset_all()
    assert limiter.get_status("slack")["tokens"] == 10
    assert limiter.get_status("hibob")["tokens"] == 100
