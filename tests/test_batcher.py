"""Batcher tests: size and interval triggers, requeue on failure."""

import asyncio
import math

import httpx
import pytest

from cmcd_telemetry.models.metrics import MetricRecord
from cmcd_telemetry.services.batcher import Batcher
from cmcd_telemetry.services.transport import HttpTransport

from conftest import RecordingTransport, make_record


def test_rejects_invalid_limits(transport):
    with pytest.raises(ValueError):
        Batcher(transport, batch_size=0)
    with pytest.raises(ValueError):
        Batcher(transport, batch_size=10, max_queue_size=5)


@pytest.mark.asyncio
async def test_size_trigger_flushes_immediately(transport):
    batcher = Batcher(transport, batch_size=10)
    for i in range(10):
        batcher.enqueue(make_record(i))

    assert batcher.pending == 0
    assert batcher.flush_count == 1

    await batcher.drain()

    assert len(transport.batches) == 1
    assert [r.timestamp for r in transport.batches[0]] == list(range(10))
    assert not batcher.flushing


@pytest.mark.asyncio
async def test_below_threshold_waits_for_flush(transport):
    batcher = Batcher(transport, batch_size=10)
    for i in range(3):
        batcher.enqueue(make_record(i))

    await batcher.drain()
    assert batcher.pending == 3
    assert transport.batches == []

    attempt = await batcher.flush()

    assert attempt is not None and attempt.succeeded
    assert batcher.pending == 0
    assert [r.timestamp for r in transport.batches[0]] == [0, 1, 2]


@pytest.mark.asyncio
async def test_flush_on_empty_queue_does_nothing(transport):
    batcher = Batcher(transport)

    assert await batcher.flush() is None
    assert transport.batches == []
    assert batcher.flush_count == 0


@pytest.mark.asyncio
async def test_failed_batch_requeued_ahead_of_new_records(failing_transport):
    failing_transport.gate = asyncio.Event()
    batcher = Batcher(failing_transport, batch_size=10)
    for i in range(1, 4):
        batcher.enqueue(make_record(i))

    flush = asyncio.create_task(batcher.flush())
    await asyncio.sleep(0)
    assert batcher.flushing

    batcher.enqueue(make_record(4))
    batcher.enqueue(make_record(5))
    failing_transport.gate.set()
    attempt = await flush

    assert attempt.error == "HTTP 503: unavailable"
    assert [r.timestamp for r in batcher.queued()] == [1, 2, 3, 4, 5]
    assert not batcher.flushing


@pytest.mark.asyncio
async def test_concurrent_flush_is_noop(transport):
    transport.gate = asyncio.Event()
    batcher = Batcher(transport)
    batcher.enqueue(make_record(1))

    first = asyncio.create_task(batcher.flush())
    await asyncio.sleep(0)
    batcher.enqueue(make_record(2))

    assert await batcher.flush() is None
    assert batcher.pending == 1

    transport.gate.set()
    await first
    assert len(transport.batches) == 1
    assert batcher.flush_count == 1


@pytest.mark.asyncio
async def test_size_trigger_during_flush_keeps_records(transport):
    transport.gate = asyncio.Event()
    batcher = Batcher(transport, batch_size=2)
    batcher.enqueue(make_record(1))

    first = asyncio.create_task(batcher.flush())
    await asyncio.sleep(0)
    batcher.enqueue(make_record(2))
    batcher.enqueue(make_record(3))

    assert batcher.pending == 2

    transport.gate.set()
    await first
    await batcher.flush()

    assert [[r.timestamp for r in b] for b in transport.batches] == [[1], [2, 3]]


@pytest.mark.asyncio
async def test_attempts_reported_to_callback(failing_transport):
    attempts = []
    batcher = Batcher(failing_transport, on_attempt=attempts.append)
    batcher.enqueue(make_record(1))

    await batcher.flush()

    assert len(attempts) == 1
    assert attempts[0].status_code == 503


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_flush(transport):
    def broken(attempt):
        raise RuntimeError("recorder down")

    batcher = Batcher(transport, on_attempt=broken)
    batcher.enqueue(make_record(1))

    attempt = await batcher.flush()

    assert attempt.succeeded
    assert not batcher.flushing


@pytest.mark.asyncio
async def test_transport_exception_becomes_failed_attempt():
    transport = RecordingTransport()
    transport.raise_error = RuntimeError("socket closed")
    batcher = Batcher(transport)
    batcher.enqueue(make_record(1))

    attempt = await batcher.flush()

    assert attempt.url == "memory://test"
    assert attempt.error == "RuntimeError: socket closed"
    assert batcher.pending == 1
    assert not batcher.flushing


@pytest.mark.asyncio
async def test_queue_cap_drops_oldest(failing_transport):
    batcher = Batcher(failing_transport, batch_size=5, max_queue_size=6)
    for i in range(4):
        batcher.enqueue(make_record(i))
    await batcher.flush()

    for i in range(4, 8):
        batcher.enqueue(make_record(i))
    await batcher.drain()

    assert batcher.pending <= 6
    assert batcher.dropped_count > 0
    timestamps = [r.timestamp for r in batcher.queued()]
    assert timestamps == sorted(timestamps)
    assert timestamps[-1] == 7


@pytest.mark.asyncio
async def test_enqueue_from_worker_thread(transport):
    batcher = Batcher(transport, batch_size=3)
    batcher.bind_loop(asyncio.get_running_loop())

    def produce():
        for i in range(3):
            batcher.enqueue(make_record(i))

    await asyncio.to_thread(produce)
    for _ in range(10):
        await asyncio.sleep(0)
    await batcher.drain()

    assert [[r.timestamp for r in b] for b in transport.batches] == [[0, 1, 2]]
    assert batcher.pending == 0


def test_size_trigger_without_loop_keeps_records(transport):
    batcher = Batcher(transport, batch_size=2)
    batcher.enqueue(make_record(1))
    batcher.enqueue(make_record(2))

    assert batcher.pending == 2
    assert not batcher.flushing
    assert transport.batches == []


@pytest.mark.asyncio
async def test_non_finite_value_does_not_block_remote_delivery():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    batcher = Batcher(HttpTransport("https://collector.test/cmcd", client=client))
    batcher.enqueue(make_record(1))
    batcher.enqueue(
        MetricRecord.model_construct(session_id="sess-1", timestamp=2, bandwidth=math.nan)
    )

    attempt = await batcher.flush()

    assert attempt.succeeded
    assert len(requests) == 1
    assert batcher.pending == 0
    await client.aclose()


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_delivery(transport):
    transport.gate = asyncio.Event()
    attempts = []
    batcher = Batcher(transport, on_attempt=attempts.append)
    batcher.enqueue(make_record(1))

    caller = asyncio.create_task(batcher.flush())
    await asyncio.sleep(0)
    caller.cancel()
    await asyncio.sleep(0)
    transport.gate.set()
    await batcher.drain()

    assert caller.cancelled()
    assert len(transport.batches) == 1
    assert len(attempts) == 1
    assert attempts[0].succeeded
    assert batcher.pending == 0


@pytest.mark.asyncio
async def test_cancelled_delivery_is_audited_and_requeued(transport):
    transport.gate = asyncio.Event()
    attempts = []
    batcher = Batcher(transport, on_attempt=attempts.append)
    batcher.enqueue(make_record(1))
    batcher.enqueue(make_record(2))
    caller = asyncio.create_task(batcher.flush())
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    for task in list(batcher._tasks):
        task.cancel()
    await batcher.drain()

    assert attempts[0].error == "CancelledError: delivery cancelled"
    assert [r.timestamp for r in batcher.queued()] == [1, 2]
    assert not batcher.flushing
    with pytest.raises(asyncio.CancelledError):
        await caller
