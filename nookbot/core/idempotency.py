"""Idempotency store: collapses duplicate mutating tool calls.

A TTL key→result map. The gateway stores the result of every mutating tool
call that did not fail, keyed by a hash of (tool, normalized args, actor,
scope); an identical call inside the window gets the stored result back
instead of performing the mutation again.

In-memory and per-process. Multiple bot instances would need a shared
backend (Redis or similar) behind the same interface.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from nookbot.core.sweeper import Sweeper
from nookbot.utils.helpers import hash_key, normalize_args

DEFAULT_TTL = 5 * 60.0
DEFAULT_MAX_ENTRIES = 10_000
EVICT_FRACTION = 0.1


@dataclass
class IdempotencyRecord:
    key: str
    result: Any
    created_at: float
    expires_at: float


@dataclass(frozen=True)
class IdempotencyCheck:
    exists: bool
    value: Any = None


class IdempotencyStore:
    """TTL cache of mutating-call results, with capacity eviction and a background sweep."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._records: dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()
        self._sweeper = Sweeper("Idempotency", self.cleanup, sweep_interval)

    # ── Keys ──────────────────────────────────────────────────────────

    @staticmethod
    def generate_key(tool_name: str, args: Any, actor_id: str, scope_id: str) -> str:
        """Deterministic key over the canonicalized (tool, args, actor, scope) tuple."""
        return hash_key({
            "tool": tool_name,
            "input": normalize_args(args) if args is not None else None,
            "user": actor_id,
            "guild": scope_id,
        })

    # ── Core operations ───────────────────────────────────────────────

    def check(self, key: str) -> IdempotencyCheck:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return IdempotencyCheck(exists=False)
            if self._clock() >= record.expires_at:
                del self._records[key]
                return IdempotencyCheck(exists=False)
            return IdempotencyCheck(exists=True, value=record.result)

    def store(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            if key not in self._records and len(self._records) >= self.max_entries:
                self._evict_oldest()
            now = self._clock()
            self._records[key] = IdempotencyRecord(
                key=key,
                result=value,
                created_at=now,
                expires_at=now + ttl,
            )

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    # ── Maintenance ───────────────────────────────────────────────────

    def _evict_oldest(self) -> int:
        # Caller holds self._lock
        ordered = sorted(self._records.values(), key=lambda r: r.created_at)
        to_remove = max(1, math.ceil(len(ordered) * EVICT_FRACTION))
        for record in ordered[:to_remove]:
            del self._records[record.key]
        logger.info(f"Idempotency: evicted {to_remove} oldest entries (cap {self.max_entries})")
        return to_remove

    def cleanup(self) -> int:
        """Drop expired records. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, r in self._records.items() if now >= r.expires_at]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug(f"Idempotency: cleaned up {len(expired)} expired entries")
        return len(expired)

    def start(self) -> None:
        self._sweeper.start()

    def stop(self) -> None:
        self._sweeper.stop()

    def stats(self) -> dict:
        now = self._clock()
        with self._lock:
            active = sum(1 for r in self._records.values() if now < r.expires_at)
            total = len(self._records)
        return {
            "total_entries": total,
            "active_entries": active,
            "expired_entries": total - active,
            "max_entries": self.max_entries,
            "default_ttl": self.default_ttl,
        }
