"""Transport tests: bounded local log and HTTP delivery."""

import json

import httpx
import pytest

from cmcd_telemetry.core.config import Settings
from cmcd_telemetry.services.batcher import Batcher
from cmcd_telemetry.services.cmcd_codec import CMCD_HEADER, encode
from cmcd_telemetry.services.transport import (
    HttpTransport,
    LocalLogTransport,
    build_transport,
)

from conftest import make_record


@pytest.mark.asyncio
async def test_local_log_keeps_newest_records():
    transport = LocalLogTransport(max_records=1000)
    batcher = Batcher(transport, batch_size=10)

    for i in range(1500):
        batcher.enqueue(make_record(i))
        if i % 10 == 9:
            await batcher.drain()
    await batcher.flush()

    stored = transport.records()
    assert len(stored) == 1000
    assert stored[0].timestamp == 500
    assert stored[-1].timestamp == 1499


@pytest.mark.asyncio
async def test_local_delivery_reports_attempt():
    transport = LocalLogTransport()

    attempt = await transport.deliver([make_record(1), make_record(2)])

    assert attempt.succeeded
    assert attempt.url == "local://memory"
    assert attempt.body == {"batch_size": 2}
    assert attempt.response_time is not None
    assert len(transport) == 2


@pytest.mark.asyncio
async def test_local_log_summary():
    transport = LocalLogTransport()
    await transport.deliver([
        make_record(1, session_id="a", buffer_length=4.0),
        make_record(2, session_id="a", rebuffering_events=1),
        make_record(3, session_id="b", buffer_length=8.0, rebuffering_events=1),
    ])

    summary = transport.summary()

    assert summary.total_records == 3
    assert summary.session_count == 2
    assert summary.rebuffering_events == 2
    assert summary.avg_buffer_length == 6.0
    assert [row["timestamp"] for row in summary.recent] == [1, 2, 3]


def test_empty_summary():
    summary = LocalLogTransport().summary()

    assert summary.total_records == 0
    assert summary.avg_buffer_length is None
    assert summary.recent == []


@pytest.mark.asyncio
async def test_local_log_persists_to_file(tmp_path):
    path = tmp_path / "log" / "metrics.json"
    transport = LocalLogTransport(max_records=3, path=path)

    await transport.deliver([make_record(i, buffer_length=1.5) for i in range(5)])

    rows = json.loads(path.read_text())
    assert [row["timestamp"] for row in rows] == [2, 3, 4]
    assert rows[0]["bufferLength"] == 1.5

    reloaded = LocalLogTransport(max_records=3, path=path)
    assert [r.timestamp for r in reloaded.records()] == [2, 3, 4]
    assert reloaded.url == f"local://{path}"


def test_unreadable_log_file_is_ignored(tmp_path):
    path = tmp_path / "metrics.json"
    path.write_text("{not json")

    transport = LocalLogTransport(path=path)

    assert len(transport) == 0


@pytest.mark.asyncio
async def test_persist_failure_leaves_log_unchanged(tmp_path, monkeypatch):
    transport = LocalLogTransport(path=tmp_path / "metrics.json")

    def fail(path, records):
        raise OSError("disk full")

    monkeypatch.setattr(transport, "_persist", fail)
    attempt = await transport.deliver([make_record(1)])

    assert attempt.error == "OSError: disk full"
    assert len(transport) == 0


@pytest.mark.asyncio
async def test_clear_removes_file(tmp_path):
    path = tmp_path / "metrics.json"
    transport = LocalLogTransport(path=path)
    await transport.deliver([make_record(1)])

    transport.clear()

    assert len(transport) == 0
    assert not path.exists()


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_http_delivery_posts_batch_with_cmcd_header():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    batch = [make_record(1, buffer_length=2.0), make_record(2, buffer_length=3.0)]
    transport = HttpTransport("https://collector.test/cmcd", client=_client(handler))

    attempt = await transport.deliver(batch)

    request = seen[0]
    payload = json.loads(request.content)
    assert request.method == "POST"
    assert request.headers[CMCD_HEADER] == encode(batch[-1])
    assert payload["batch_size"] == 2
    assert [event["timestamp"] for event in payload["events"]] == [1, 2]
    assert payload["events"][0]["sessionId"] == "sess-1"
    assert attempt.succeeded
    assert attempt.status_code == 202
    assert attempt.url == "https://collector.test/cmcd"


@pytest.mark.asyncio
async def test_http_error_status_is_failed_attempt():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="collector exploded")

    transport = HttpTransport("https://collector.test/cmcd", client=_client(handler))

    attempt = await transport.deliver([make_record(1)])

    assert attempt.status_code == 500
    assert attempt.error == "HTTP 500: collector exploded"


@pytest.mark.asyncio
async def test_http_connection_error_is_failed_attempt():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport = HttpTransport("https://collector.test/cmcd", client=_client(handler))

    attempt = await transport.deliver([make_record(1)])

    assert attempt.status_code is None
    assert attempt.error == "ConnectError: connection refused"


@pytest.mark.asyncio
async def test_injected_client_is_not_closed():
    client = _client(lambda request: httpx.Response(200))
    transport = HttpTransport("https://collector.test/cmcd", client=client)

    await transport.aclose()

    assert not client.is_closed
    await client.aclose()


def test_build_transport_from_settings():
    local = build_transport(Settings(_env_file=None, local_log_max_records=50))
    assert isinstance(local, LocalLogTransport)
    assert local.max_records == 50

    remote = build_transport(
        Settings(_env_file=None, delivery_mode="remote", endpoint="https://collector.test")
    )
    assert isinstance(remote, HttpTransport)
    assert remote.url == "https://collector.test"


def test_remote_mode_requires_endpoint():
    with pytest.raises(ValueError):
        build_transport(Settings(_env_file=None, delivery_mode="remote", endpoint=""))
