"""Periodic background tasks for sampling and flushing.

A PeriodicTask owns exactly one asyncio task. start() acquires it and
stop() cancels and awaits it, so every start has a matching release.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# Tick callbacks may be plain functions or coroutines
TickCallback = Callable[[], Awaitable[Any] | Any]


class PeriodicTask:
    """Invokes a callback on a fixed cadence until stopped."""

    def __init__(self, name: str, interval_seconds: float, callback: TickCallback) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval must be positive, got {interval_seconds}")
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._task: asyncio.Task | None = None
        self.tick_count = 0

    @property
    def running(self) -> bool:
        """Whether the background task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.debug(f"Periodic task started: {self.name} every {self.interval_seconds}s")

    async def _run(self) -> None:
        """Fixed-cadence loop; deadlines advance by interval to avoid drift."""
        loop = asyncio.get_running_loop()
        next_at = loop.time() + self.interval_seconds
        try:
            while True:
                await asyncio.sleep(max(0.0, next_at - loop.time()))
                next_at += self.interval_seconds
                self.tick_count += 1
                try:
                    result = self._callback()
                    if inspect.isawaitable(result):
                        await result
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Tick error in {self.name}: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.debug(f"Periodic task cancelled: {self.name}")

    async def stop(self) -> None:
        """Cancel the task and wait for it to finish. Safe to call twice."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
