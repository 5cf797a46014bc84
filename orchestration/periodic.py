"""
Periodic background task.

Runs a coroutine function on a fixed interval. If a tick comes due while the
previous run is still in progress, the tick is skipped and counted rather
than queued.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:

    def __init__(self, name: str, interval: float, coro_fn: Callable[[], Awaitable[Any]]):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.coro_fn = coro_fn

        self.runs = 0
        self.failures = 0
        self.skipped_ticks = 0
        self.last_result: Any = None

        self._loop_task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    async def run_once(self) -> Any:
        """Run one tick now; returns None and counts a skip if a run is in progress."""
        if self.busy:
            self.skipped_ticks += 1
            logger.warning(f"[{self.name}] previous run still in progress, tick skipped ({self.skipped_ticks} total)")
            return None
        self._current = asyncio.ensure_future(self._guarded())
        return await asyncio.shield(self._current)

    async def _guarded(self) -> Any:
        try:
            result = await self.coro_fn()
            self.last_result = result
            return result
        except Exception as e:
            self.failures += 1
            logger.error(f"[{self.name}] run failed: {e}", exc_info=True)
            return None
        finally:
            self.runs += 1

    def _tick(self):
        if self.busy:
            self.skipped_ticks += 1
            logger.warning(f"[{self.name}] previous run still in progress, tick skipped ({self.skipped_ticks} total)")
            return
        self._current = asyncio.ensure_future(self._guarded())

    async def _loop(self):
        while True:
            self._tick()
            await asyncio.sleep(self.interval)

    def start(self):
        """Schedule the loop on the running event loop."""
        if self.running:
            return
        self._loop_task = asyncio.ensure_future(self._loop())
        logger.info(f"[{self.name}] started, every {self.interval}s")

    async def stop(self):
        """Stop scheduling and wait for an in-flight run to finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._current is not None and not self._current.done():
            await self._current
        logger.info(f"[{self.name}] stopped after {self.runs} runs, {self.skipped_ticks} skipped ticks")
