"""Outbound record queue with size- and interval-triggered flushes.

Records are appended to an in-memory FIFO. A flush takes the whole queue
as one batch and hands it to the transport. At most one flush is in flight;
a trigger that fires meanwhile is a no-op and its records wait for the
next one. A failed batch goes back to the front of the queue in its
original order, ahead of anything enqueued since.

The queue and the in-flight flag are lock-guarded so enqueue() may be
called from a player thread; deliveries always run on the bound loop.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Callable

from cmcd_telemetry.models.metrics import MetricRecord
from cmcd_telemetry.models.session import DeliveryAttempt
from cmcd_telemetry.services.transport import DeliveryTransport

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10

AttemptCallback = Callable[[DeliveryAttempt], None]


class Batcher:
    """Decouples record production from delivery."""

    def __init__(
        self,
        transport: DeliveryTransport,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_attempt: AttemptCallback | None = None,
        max_queue_size: int | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if max_queue_size is not None and max_queue_size < batch_size:
            raise ValueError("max_queue_size must be at least batch_size")
        self.transport = transport
        self.batch_size = batch_size
        self.max_queue_size = max_queue_size
        self._on_attempt = on_attempt
        self._queue: deque[MetricRecord] = deque()
        self._lock = threading.Lock()
        self._flushing = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task] = set()
        self.flush_count = 0
        self.dropped_count = 0

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Loop that runs size-triggered deliveries."""
        self._loop = loop

    def set_attempt_callback(self, on_attempt: AttemptCallback | None) -> None:
        """Route delivery attempts to a new recorder."""
        self._on_attempt = on_attempt

    @property
    def pending(self) -> int:
        """Number of records waiting in the queue."""
        with self._lock:
            return len(self._queue)

    @property
    def flushing(self) -> bool:
        """Whether a flush is in flight."""
        return self._flushing

    def queued(self) -> list[MetricRecord]:
        """Copy of the queue, head first."""
        with self._lock:
            return list(self._queue)

    def enqueue(self, record: MetricRecord) -> None:
        """Append a record, flushing at once when the batch size is reached."""
        with self._lock:
            self._queue.append(record)
            self._enforce_cap()
            ready = len(self._queue) >= self.batch_size

        if ready:
            batch = self._take_batch()
            if batch is not None:
                self._dispatch(batch)

    def _enforce_cap(self) -> None:
        """Drop oldest records beyond max_queue_size. Caller holds the lock."""
        if self.max_queue_size is None:
            return
        overflow = len(self._queue) - self.max_queue_size
        if overflow <= 0:
            return
        for _ in range(overflow):
            self._queue.popleft()
        self.dropped_count += overflow
        logger.warning(f"Queue over {self.max_queue_size} records, dropped {overflow} oldest")

    def _take_batch(self) -> list[MetricRecord] | None:
        """Snapshot and empty the queue, claiming the in-flight slot."""
        with self._lock:
            if self._flushing:
                logger.debug("Flush skipped, another flush is in flight")
                return None
            if not self._queue:
                return None
            batch = list(self._queue)
            self._queue.clear()
            self._flushing = True
            self.flush_count += 1
            return batch

    def _requeue(self, batch: list[MetricRecord]) -> None:
        """Put a batch back at the head of the queue, order preserved."""
        with self._lock:
            self._queue.extendleft(reversed(batch))
            self._enforce_cap()

    def _release(self) -> None:
        with self._lock:
            self._flushing = False

    def _dispatch(self, batch: list[MetricRecord]) -> None:
        """Run delivery of an already-taken batch on the bound loop."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            self._spawn(batch)
        elif self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._spawn, batch)
        else:
            logger.debug("No event loop bound, batch stays queued")
            self._requeue(batch)
            self._release()

    def _spawn(self, batch: list[MetricRecord]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._deliver(batch), name="cmcd-flush")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def flush(self) -> DeliveryAttempt | None:
        """Deliver everything queued right now.

        The delivery runs as a tracked task, so cancelling the caller does
        not cancel it; drain() waits for it.

        Returns:
            The delivery attempt, or None when the queue was empty or
            another flush was already in flight.
        """
        batch = self._take_batch()
        if batch is None:
            return None
        return await asyncio.shield(self._spawn(batch))

    async def _deliver(self, batch: list[MetricRecord]) -> DeliveryAttempt:
        try:
            try:
                attempt = await self.transport.deliver(batch)
            except asyncio.CancelledError:
                self._requeue(batch)
                self._record_attempt(
                    DeliveryAttempt(url=self.transport.url, error="CancelledError: delivery cancelled")
                )
                raise
            except Exception as e:
                logger.error(f"Transport raised during delivery: {e}", exc_info=True)
                attempt = DeliveryAttempt(
                    url=self.transport.url,
                    error=f"{type(e).__name__}: {e}",
                )

            if attempt.succeeded:
                logger.debug(
                    f"Delivered {len(batch)} records to {attempt.url}",
                    extra={"batch_size": len(batch)},
                )
            else:
                self._requeue(batch)
                logger.warning(
                    f"Delivery failed, requeued {len(batch)} records: {attempt.error}",
                    extra={"batch_size": len(batch)},
                )

            self._record_attempt(attempt)
            return attempt
        finally:
            self._release()

    def _record_attempt(self, attempt: DeliveryAttempt) -> None:
        if self._on_attempt is None:
            return
        try:
            self._on_attempt(attempt)
        except Exception as e:
            logger.error(f"Failed to record delivery attempt: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for deliveries already in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
