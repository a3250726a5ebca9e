"""Token bucket rate limiting, one bucket per external system.

Tokens refill continuously from elapsed monotonic time at call time, so no
background timer is needed. A caller that finds too few tokens sleeps for the
minimal time needed for enough to accrue, then re-checks. Waiters are not
queued: under contention any waiter may win the next token.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

MODEL = "model"
PLATFORM = "platform"
TOOLS = "tools"

# Float slack so a caller that slept exactly long enough is not sent back to sleep
_EPSILON = 1e-9


@dataclass
class RateLimiterStats:
    total_requests: int = 0
    total_waits: int = 0
    total_wait_time: float = 0.0
    max_wait_time: float = 0.0

    @property
    def avg_wait_time(self) -> float:
        return self.total_wait_time / self.total_waits if self.total_waits else 0.0


class TokenBucket:
    """Token bucket with burst ``capacity`` refilling ``refill_rate`` tokens per ``interval`` seconds."""

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        interval: float = 1.0,
        name: str = "RateLimiter",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be a positive number")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be a positive number")
        if interval <= 0:
            raise ValueError("interval must be a positive number")

        self.capacity = capacity
        self.refill_rate = refill_rate
        self.interval = interval
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

        self._tokens: float = float(capacity)
        self._last_refill = clock()
        self.stats = RateLimiterStats()

        logger.debug(
            f"Rate limiter '{name}' initialized: {refill_rate} tokens/{interval}s, burst {capacity}"
        )

    @property
    def tokens_per_second(self) -> float:
        return self.refill_rate / self.interval

    def _refill(self) -> None:
        # Caller holds self._lock
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(float(self.capacity), self._tokens + elapsed * self.tokens_per_second)
            self._last_refill = now

    @property
    def tokens(self) -> float:
        """Current (fractional) token count after refill."""
        with self._lock:
            self._refill()
            return self._tokens

    @property
    def available_tokens(self) -> int:
        return math.floor(self.tokens)

    def _take(self, n: int) -> float:
        """Consume n tokens if present. Returns 0 on success, else seconds to wait."""
        with self._lock:
            self._refill()
            if self._tokens >= n - _EPSILON:
                self._tokens = max(0.0, self._tokens - n)
                return 0.0
            return (n - self._tokens) / self.tokens_per_second

    async def acquire(self, n: int = 1) -> float:
        """Take n tokens, sleeping until they are available. Returns seconds waited."""
        if n <= 0:
            raise ValueError("token count must be positive")
        if n > self.capacity:
            raise ValueError(f"requested {n} tokens exceeds capacity of {self.capacity}")

        with self._lock:
            self.stats.total_requests += 1

        start = self._clock()
        slept = False
        while True:
            wait = self._take(n)
            if wait == 0.0:
                break
            slept = True
            await self._sleep(wait)

        if not slept:
            return 0.0
        waited = self._clock() - start
        with self._lock:
            self.stats.total_waits += 1
            self.stats.total_wait_time += waited
            self.stats.max_wait_time = max(self.stats.max_wait_time, waited)
        logger.warning(f"Rate limiter '{self.name}' waited {waited * 1000:.0f}ms for {n} token(s)")
        return waited

    def try_acquire(self, n: int = 1) -> bool:
        """Take n tokens only if available right now. Never consumes on failure."""
        if n <= 0:
            raise ValueError("token count must be positive")
        if n > self.capacity:
            return False
        if self._take(n) == 0.0:
            with self._lock:
                self.stats.total_requests += 1
            return True
        return False

    def reset(self) -> None:
        """Refill to capacity."""
        with self._lock:
            self._tokens = float(self.capacity)
            self._last_refill = self._clock()
        logger.info(f"Rate limiter '{self.name}' reset")

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "current_tokens": self.available_tokens,
            "capacity": self.capacity,
            "refill_rate": self.refill_rate,
            "interval": self.interval,
            "total_requests": self.stats.total_requests,
            "total_waits": self.stats.total_waits,
            "total_wait_time": round(self.stats.total_wait_time, 3),
            "max_wait_time": round(self.stats.max_wait_time, 3),
            "avg_wait_time": round(self.stats.avg_wait_time, 3),
        }


class RateLimiters:
    """Independent buckets keyed by external system name."""

    def __init__(self, buckets: dict[str, TokenBucket] | None = None):
        self._buckets: dict[str, TokenBucket] = dict(buckets or {})

    @classmethod
    def from_config(cls, config) -> "RateLimiters":
        """Build buckets from a RateLimitsConfig (model / platform / tools)."""
        buckets = {}
        for name in (MODEL, PLATFORM, TOOLS):
            cfg = getattr(config, name)
            buckets[name] = TokenBucket(
                capacity=cfg.capacity,
                refill_rate=cfg.refill_rate,
                interval=cfg.interval,
                name=name,
            )
        return cls(buckets)

    def get(self, name: str) -> TokenBucket:
        try:
            return self._buckets[name]
        except KeyError:
            raise KeyError(f"No rate limiter named '{name}'") from None

    def has(self, name: str) -> bool:
        return name in self._buckets

    async def acquire(self, name: str, n: int = 1) -> float:
        return await self.get(name).acquire(n)

    @property
    def names(self) -> list[str]:
        return list(self._buckets)

    def get_stats(self) -> dict[str, dict]:
        return {name: bucket.get_stats() for name, bucket in self._buckets.items()}
