"""Shared fixtures for the telemetry pipeline tests."""

import asyncio

import pytest

from cmcd_telemetry.models.metrics import MetricRecord
from cmcd_telemetry.models.session import DeliveryAttempt, DeviceInfo
from cmcd_telemetry.services.playback import EventEmitterSource
from cmcd_telemetry.services.transport import DeliveryTransport


class RecordingTransport(DeliveryTransport):
    """In-memory transport that records every batch it is handed."""

    def __init__(self, fail: bool = False) -> None:
        self.batches: list[list[MetricRecord]] = []
        self.fail = fail
        self.raise_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.closed = False

    @property
    def url(self) -> str:
        return "memory://test"

    async def deliver(self, batch: list[MetricRecord]) -> DeliveryAttempt:
        self.batches.append(list(batch))
        if self.gate is not None:
            await self.gate.wait()
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail:
            return DeliveryAttempt(url=self.url, status_code=503, error="HTTP 503: unavailable")
        return DeliveryAttempt(url=self.url, status_code=200)

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(index: int = 0, session_id: str = "sess-1", **values) -> MetricRecord:
    """Record whose timestamp doubles as a sequence number."""
    return MetricRecord(session_id=session_id, timestamp=index, **values)


def fixed_device_info() -> DeviceInfo:
    return DeviceInfo(user_agent="test-agent/1.0", screen_width=1920, screen_height=1080)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def failing_transport() -> RecordingTransport:
    return RecordingTransport(fail=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> EventEmitterSource:
    """Playback source in a typical mid-playback state."""
    src = EventEmitterSource()
    src.position = 4.0
    src.buffered_ranges = [(0.0, 10.0)]
    src.media_duration = 120.0
    src.rate = 1.0
    return src
