"""Inbound event deduplication.

The gateway websocket can deliver the same event twice (after a RESUME, for
instance). Each event id is remembered for a TTL window measured from when it
was first seen; later deliveries inside the window are reported as duplicates
together with the execution id of the first processing.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from nookbot.core.sweeper import Sweeper
from nookbot.errors import DuplicateEvent

DEFAULT_TTL = 5 * 60.0


@dataclass
class DedupRecord:
    event_id: str
    first_execution_id: str
    first_seen_at: float
    occurrence_count: int = 1
    last_execution_id: str = ""
    last_seen_at: float = 0.0


@dataclass(frozen=True)
class DedupCheck:
    is_duplicate: bool
    first_execution_id: str | None = None
    occurrence_count: int = 0


class EventDeduplicator:
    """TTL map of inbound event ids."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._records: dict[str, DedupRecord] = {}
        self._lock = threading.Lock()
        self._sweeper = Sweeper("Dedup", self.cleanup, sweep_interval)

    def _live_record(self, event_id: str) -> DedupRecord | None:
        # Caller holds self._lock
        record = self._records.get(event_id)
        if record is None:
            return None
        if self._clock() - record.first_seen_at >= self.ttl:
            del self._records[event_id]
            return None
        return record

    def check(self, event_id: str) -> DedupCheck:
        """Report whether event_id was already processed inside the window."""
        with self._lock:
            record = self._live_record(event_id)
            if record is None:
                return DedupCheck(is_duplicate=False)
            return DedupCheck(
                is_duplicate=True,
                first_execution_id=record.first_execution_id,
                occurrence_count=record.occurrence_count,
            )

    def mark_processed(self, event_id: str, execution_id: str) -> int:
        """Record a processing of event_id. Returns the occurrence count."""
        with self._lock:
            return self._mark(event_id, execution_id).occurrence_count

    def _mark(self, event_id: str, execution_id: str) -> DedupRecord:
        # Caller holds self._lock
        now = self._clock()
        record = self._live_record(event_id)
        if record is None:
            record = DedupRecord(
                event_id=event_id,
                first_execution_id=execution_id,
                first_seen_at=now,
                last_execution_id=execution_id,
                last_seen_at=now,
            )
            self._records[event_id] = record
        else:
            record.occurrence_count += 1
            record.last_execution_id = execution_id
            record.last_seen_at = now
        return record

    def observe(self, event_id: str, execution_id: str) -> DedupCheck:
        """Check and mark in one step.

        First delivery returns ``(False, execution_id, 1)``; a repeat returns
        ``(True, <first execution id>, n)`` with the updated count.
        """
        with self._lock:
            seen = self._live_record(event_id) is not None
            record = self._mark(event_id, execution_id)
            return DedupCheck(
                is_duplicate=seen,
                first_execution_id=record.first_execution_id,
                occurrence_count=record.occurrence_count,
            )

    def ensure_new(self, event_id: str, execution_id: str) -> DedupCheck:
        """Like observe(), but raise DuplicateEvent for a repeat delivery."""
        check = self.observe(event_id, execution_id)
        if check.is_duplicate:
            raise DuplicateEvent(event_id, check.first_execution_id, check.occurrence_count)
        return check

    def get_info(self, event_id: str) -> DedupRecord | None:
        with self._lock:
            return self._live_record(event_id)

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, r in self._records.items() if now - r.first_seen_at >= self.ttl]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug(f"Dedup: cleaned up {len(expired)} expired event ids")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            size = len(self._records)
            self._records.clear()
        logger.info(f"Dedup: cleared {size} tracked events")

    def start(self) -> None:
        self._sweeper.start()

    def stop(self) -> None:
        self._sweeper.stop()

    def stats(self) -> dict:
        now = self._clock()
        with self._lock:
            records = list(self._records.values())
        active = [r for r in records if now - r.first_seen_at < self.ttl]
        return {
            "total": len(records),
            "active": len(active),
            "expired": len(records) - len(active),
            "duplicates": sum(1 for r in active if r.occurrence_count > 1),
            "ttl": self.ttl,
        }
