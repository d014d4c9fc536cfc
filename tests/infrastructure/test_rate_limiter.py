"""
Token bucket tests.

Timing tests use small windows (tens of milliseconds) so the suite stays fast;
bucket arithmetic is tested against a fake clock.
"""

import asyncio
import time

import pytest

from src.infrastructure.messaging import RateLimiter, RateLimiterRegistry, RateLimitExceededError


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance_ms(self, ms):
        self.now += ms / 1000


class TestBucket:

    def test_starts_full_and_drains(self):
        limiter = RateLimiter(3, 1000, clock=FakeClock())

        assert [limiter.try_acquire() for _ in range(4)] == [True, True, True, False]

    def test_refills_proportionally(self):
        clock = FakeClock()
        limiter = RateLimiter(10, 1000, clock=clock)
        for _ in range(10):
            limiter.try_acquire()

        clock.advance_ms(350)
        assert limiter.get_token_count() == 3

    def test_refill_never_exceeds_capacity(self):
        clock = FakeClock()
        limiter = RateLimiter(5, 1000, clock=clock)
        limiter.try_acquire()

        clock.advance_ms(60000)
        assert limiter.get_token_count() == 5

    def test_fractional_refill_is_not_lost(self):
        clock = FakeClock()
        limiter = RateLimiter(10, 1000, clock=clock)
        for _ in range(10):
            limiter.try_acquire()

        # 3 x 150ms = 450ms -> 4 tokens, even though each step alone adds 1
        for _ in range(3):
            clock.advance_ms(150)
            limiter.get_token_count()
        assert limiter.get_token_count() == 4

    def test_keys_are_independent(self):
        limiter = RateLimiter(1, 1000, clock=FakeClock())

        assert limiter.try_acquire("a")
        assert not limiter.try_acquire("a")
        assert limiter.try_acquire("b")

    def test_rejects_non_positive_limits(self):
        with pytest.raises(ValueError):
            RateLimiter(0, 1000)


class TestAcquire:

    async def test_immediate_when_tokens_available(self):
        limiter = RateLimiter(2, 1000)
        await limiter.acquire()
        await limiter.acquire()
        assert limiter.get_token_count() == 0

    async def test_waiters_are_served_in_arrival_order(self):
        limiter = RateLimiter(1, 30)
        await limiter.acquire()
        order = []

        async def take(i):
            await limiter.acquire(max_wait_ms=2000)
            order.append(i)

        await asyncio.gather(*(take(i) for i in range(4)))
        assert order == [0, 1, 2, 3]

    async def test_burst_converges_to_configured_rate(self):
        # 10 per 100ms: the first 10 pass at once, the other 40 need ~400ms of refill
        limiter = RateLimiter(10, 100)
        started = time.monotonic()

        await asyncio.gather(*(limiter.acquire(max_wait_ms=5000) for _ in range(50)))

        elapsed_ms = (time.monotonic() - started) * 1000
        assert 350 <= elapsed_ms <= 1500
        assert limiter.pending_waiters() == 0

    async def test_fails_fast_when_refill_is_slower_than_max_wait(self):
        limiter = RateLimiter(1, 60000)
        await limiter.acquire()

        with pytest.raises(RateLimitExceededError) as exc:
            await limiter.acquire(max_wait_ms=100)
        assert exc.value.retry_after_ms == 60000
        assert limiter.pending_waiters() == 0

    async def test_default_max_wait_comes_from_constructor(self):
        limiter = RateLimiter(1, 60000, max_wait_ms=100)
        await limiter.acquire()

        with pytest.raises(RateLimitExceededError):
            await limiter.acquire()

    async def test_times_out_when_queue_is_too_long(self):
        limiter = RateLimiter(1, 200)
        await limiter.acquire()

        results = await asyncio.gather(
            limiter.acquire(max_wait_ms=300),
            limiter.acquire(max_wait_ms=300),
            return_exceptions=True,
        )

        assert results[0] is None
        assert isinstance(results[1], RateLimitExceededError)
        limiter.reset()

    async def test_reset_fails_waiters_and_refills(self):
        limiter = RateLimiter(1, 5000)
        await limiter.acquire()
        waiter = asyncio.ensure_future(limiter.acquire(max_wait_ms=10000))
        await asyncio.sleep(0)
        assert limiter.pending_waiters() == 1

        limiter.reset()

        with pytest.raises(RateLimitExceededError):
            await waiter
        assert limiter.get_token_count() == 1


class TestRegistry:

    def test_one_limiter_per_provider(self):
        registry = RateLimiterRegistry({"gatewayapi": (100, 1000)}, max_wait_ms=500)

        limiter = registry.get("gatewayapi")
        assert registry.get("gatewayapi") is limiter
        assert limiter.max_requests == 100
        assert limiter.max_wait_ms == 500

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            RateLimiterRegistry({}).get("twilio")
