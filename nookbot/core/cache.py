"""Read cache for side-effect-free tool results.

Namespaced TTL cache. The gateway uses the tool name as the namespace and
``"{scope_id}:{canonical args}"`` as the key. Nothing here knows which
mutations make which reads stale: a tool that changes platform state calls
invalidate_prefix() for the namespaces it affects.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger

from nookbot.core.sweeper import Sweeper

DEFAULT_TTL = 5 * 60.0
DEFAULT_MAX_ENTRIES = 2000
EVICT_FRACTION = 0.1


@dataclass
class CacheEntry:
    namespace: str
    key: str
    value: Any
    created_at: float
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ReadCache:
    """Per-namespace TTL cache with capacity eviction and a background sweep."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        max_entries_per_namespace: int = DEFAULT_MAX_ENTRIES,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max_entries_per_namespace
        self._clock = clock
        self._namespaces: dict[str, dict[str, CacheEntry]] = {}
        self._lock = threading.Lock()
        self.stats_counters = CacheStats()
        self._sweeper = Sweeper("Cache", self.cleanup, sweep_interval)

    def get(self, namespace: str, key: str) -> Any | None:
        with self._lock:
            entry = self._namespaces.get(namespace, {}).get(key)
            if entry is None:
                self.stats_counters.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._namespaces[namespace][key]
                self.stats_counters.misses += 1
                return None
            self.stats_counters.hits += 1
            return entry.value

    def has(self, namespace: str, key: str) -> bool:
        with self._lock:
            entry = self._namespaces.get(namespace, {}).get(key)
            if entry is None:
                return False
            if self._clock() >= entry.expires_at:
                del self._namespaces[namespace][key]
                return False
            return True

    def set(self, namespace: str, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            bucket = self._namespaces.setdefault(namespace, {})
            if key not in bucket and len(bucket) >= self.max_entries:
                self._evict_oldest(namespace)
            now = self._clock()
            bucket[key] = CacheEntry(namespace, key, value, now, now + ttl)
            self.stats_counters.sets += 1

    async def get_or_set(
        self,
        namespace: str,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value, or await factory() and cache a non-None result."""
        cached = self.get(namespace, key)
        if cached is not None:
            return cached
        value = await factory()
        if value is not None:
            self.set(namespace, key, value, ttl)
        return value

    # ── Invalidation ──────────────────────────────────────────────────

    def invalidate(self, namespace: str, key: str) -> bool:
        with self._lock:
            return self._namespaces.get(namespace, {}).pop(key, None) is not None

    def invalidate_prefix(self, namespace: str, prefix: str = "") -> int:
        """Drop every key in namespace starting with prefix (all keys if prefix is empty)."""
        with self._lock:
            bucket = self._namespaces.get(namespace)
            if not bucket:
                return 0
            doomed = [k for k in bucket if k.startswith(prefix)]
            for key in doomed:
                del bucket[key]
        if doomed:
            logger.debug(f"Cache: invalidated {len(doomed)} entries in {namespace} (prefix '{prefix}')")
        return len(doomed)

    @property
    def namespaces(self) -> list[str]:
        with self._lock:
            return list(self._namespaces)

    def clear(self, namespace: str | None = None) -> None:
        with self._lock:
            if namespace is None:
                self._namespaces.clear()
                self.stats_counters = CacheStats()
            else:
                self._namespaces.pop(namespace, None)

    # ── Maintenance ───────────────────────────────────────────────────

    def _evict_oldest(self, namespace: str) -> None:
        # Caller holds self._lock
        bucket = self._namespaces[namespace]
        ordered = sorted(bucket.values(), key=lambda e: e.created_at)
        to_remove = max(1, math.ceil(len(ordered) * EVICT_FRACTION))
        for entry in ordered[:to_remove]:
            del bucket[entry.key]
        self.stats_counters.evictions += to_remove

    def cleanup(self) -> int:
        now = self._clock()
        removed = 0
        with self._lock:
            for bucket in self._namespaces.values():
                expired = [k for k, e in bucket.items() if now >= e.expires_at]
                for key in expired:
                    del bucket[key]
                removed += len(expired)
        if removed:
            logger.debug(f"Cache: cleaned up {removed} expired entries")
        return removed

    def start(self) -> None:
        self._sweeper.start()

    def stop(self) -> None:
        self._sweeper.stop()

    def stats(self) -> dict:
        with self._lock:
            sizes = {ns: len(bucket) for ns, bucket in self._namespaces.items()}
        counters = self.stats_counters
        return {
            "hits": counters.hits,
            "misses": counters.misses,
            "sets": counters.sets,
            "evictions": counters.evictions,
            "hit_rate": f"{counters.hit_rate * 100:.2f}%",
            "namespaces": sizes,
            "max_entries_per_namespace": self.max_entries,
        }
