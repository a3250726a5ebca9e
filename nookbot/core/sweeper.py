"""Background expiry sweep shared by the TTL stores."""

from __future__ import annotations

import asyncio
from typing import Callable

from loguru import logger


class Sweeper:
    """Calls ``sweep()`` every ``interval`` seconds on the running event loop.

    Lazy expiry on read keeps correctness; the sweep only bounds memory for
    keys that are never read again.
    """

    def __init__(self, name: str, sweep: Callable[[], int], interval: float = 60.0):
        self.name = name
        self._sweep = sweep
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep task. Must be called from inside a running loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug(f"{self.name}: sweep started (every {self.interval}s)")

    def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
                self._sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"{self.name}: sweep error: {e}")
