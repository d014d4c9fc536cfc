"""
Rate Limiter - Token Buckets for Outbound Vendors
=================================================

ARCHITECTURAL DECISION:
- One bucket per (provider, key), refilled lazily on access
- Callers that find the bucket empty wait in a FIFO queue per key; a single
  drain task per key hands out tokens as they refill
- Process-local. Running several instances multiplies the effective rate.

USAGE:
    limiters = RateLimiterRegistry({"gatewayapi": (100, 1000)})
    await limiters.get("gatewayapi").acquire()
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Tuple

from .errors import RateLimitExceededError

logger = logging.getLogger(__name__)

DEFAULT_KEY = "default"


@dataclass
class TokenBucket:
    tokens: int
    last_refill_ms: float


class RateLimiter:
    """Token bucket of max_requests per window_ms."""

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
        max_wait_ms: float = 30000,
    ):
        if max_requests <= 0 or window_ms <= 0:
            raise ValueError("max_requests and window_ms must be positive")
        self.name = name
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self.max_wait_ms = max_wait_ms
        self._buckets: Dict[str, TokenBucket] = {}
        self._waiters: Dict[str, Deque[asyncio.Future]] = {}
        self._drainers: Dict[str, asyncio.Task] = {}

    @property
    def ms_per_token(self) -> float:
        return self.window_ms / self.max_requests

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _get_bucket(self, key: str) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(tokens=self.max_requests, last_refill_ms=self._now_ms())
            self._buckets[key] = bucket
        return bucket

    def _refill(self, bucket: TokenBucket):
        now = self._now_ms()
        to_add = int((now - bucket.last_refill_ms) / self.window_ms * self.max_requests)
        if to_add <= 0:
            return
        if bucket.tokens + to_add >= self.max_requests:
            bucket.tokens = self.max_requests
            bucket.last_refill_ms = now
        else:
            # Keep the fractional remainder so sustained throughput does not drift
            bucket.tokens += to_add
            bucket.last_refill_ms += to_add * self.ms_per_token

    def try_acquire(self, key: str = DEFAULT_KEY) -> bool:
        """Take a token if one is available. Never waits."""
        bucket = self._get_bucket(key)
        self._refill(bucket)
        if bucket.tokens > 0:
            bucket.tokens -= 1
            return True
        return False

    async def acquire(self, key: str = DEFAULT_KEY, max_wait_ms: Optional[float] = None):
        """
        Take a token, waiting in line if necessary.

        Raises RateLimitExceededError straight away if even one refill interval
        is longer than max_wait_ms, or once the wait has exceeded it.
        """
        if max_wait_ms is None:
            max_wait_ms = self.max_wait_ms
        waiters = self._waiters.setdefault(key, deque())
        while waiters and waiters[0].done():
            waiters.popleft()
        if not waiters and self.try_acquire(key):
            return

        if self.ms_per_token > max_wait_ms:
            raise RateLimitExceededError(
                self.name,
                f"Rate limit exceeded, would need to wait {self.ms_per_token:.0f}ms",
                retry_after_ms=self.ms_per_token,
            )

        future = asyncio.get_running_loop().create_future()
        waiters.append(future)
        self._ensure_drainer(key)

        try:
            await asyncio.wait_for(future, timeout=max_wait_ms / 1000)
        except asyncio.TimeoutError:
            raise RateLimitExceededError(
                self.name,
                f"Rate limit wait exceeded {max_wait_ms:.0f}ms",
                retry_after_ms=self.ms_per_token,
            ) from None

    def _ensure_drainer(self, key: str):
        task = self._drainers.get(key)
        if task is None or task.done():
            self._drainers[key] = asyncio.get_running_loop().create_task(self._drain(key))

    async def _drain(self, key: str):
        waiters = self._waiters[key]
        try:
            while waiters:
                await asyncio.sleep(self.ms_per_token / 1000)
                while waiters:
                    # Drop callers that gave up
                    if waiters[0].done():
                        waiters.popleft()
                        continue
                    if not self.try_acquire(key):
                        break
                    waiters.popleft().set_result(None)
        finally:
            if self._drainers.get(key) is asyncio.current_task():
                del self._drainers[key]

    def get_token_count(self, key: str = DEFAULT_KEY) -> int:
        bucket = self._buckets.get(key)
        if bucket is None:
            return self.max_requests
        self._refill(bucket)
        return bucket.tokens

    def pending_waiters(self, key: str = DEFAULT_KEY) -> int:
        return sum(1 for f in self._waiters.get(key, ()) if not f.done())

    def reset(self):
        """Drop all buckets and fail everyone still waiting."""
        for task in self._drainers.values():
            task.cancel()
        self._drainers.clear()
        for waiters in self._waiters.values():
            for future in waiters:
                if not future.done():
                    future.set_exception(RateLimitExceededError(self.name, "Rate limiter reset"))
        self._waiters.clear()
        self._buckets.clear()


class RateLimiterRegistry:
    """One limiter per provider, created on first use."""

    def __init__(
        self,
        limits: Dict[str, Tuple[int, int]],
        clock: Optional[Callable[[], float]] = None,
        max_wait_ms: float = 30000,
    ):
        self._limits = dict(limits)
        self._clock = clock or time.monotonic
        self._max_wait_ms = max_wait_ms
        self._limiters: Dict[str, RateLimiter] = {}

    def get(self, provider: str) -> RateLimiter:
        limiter = self._limiters.get(provider)
        if limiter is None:
            if provider not in self._limits:
                raise ValueError(f"Unknown provider: {provider}")
            max_requests, window_ms = self._limits[provider]
            limiter = RateLimiter(
                max_requests, window_ms, name=provider, clock=self._clock, max_wait_ms=self._max_wait_ms
            )
            self._limiters[provider] = limiter
            logger.debug(f"Rate limiter for {provider}: {max_requests} per {window_ms}ms")
        return limiter

    def reset_all(self):
        for limiter in self._limiters.values():
            limiter.reset()
