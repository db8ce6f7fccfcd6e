"""Tracking coordinator.

Owns the session, the sampler attachment and the batcher, plus the two
periodic tasks (sampling and flushing). Construct one per player; there is
no module-level instance.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal

from cmcd_telemetry.core.config import Settings
from cmcd_telemetry.core.scheduler import PeriodicTask
from cmcd_telemetry.models.metrics import MetricRecord, PlaybackContext
from cmcd_telemetry.models.session import DeliveryAttempt, Session
from cmcd_telemetry.services.batcher import DEFAULT_BATCH_SIZE, Batcher
from cmcd_telemetry.services.cmcd_codec import encode
from cmcd_telemetry.services.device import capture_device_info
from cmcd_telemetry.services.playback import PlaybackSource
from cmcd_telemetry.services.sampler import DEFAULT_BANDWIDTH_PIXEL_FACTOR, Sampler
from cmcd_telemetry.services.session import DeviceInfoProvider, SessionRecorder
from cmcd_telemetry.services.transport import DeliveryTransport, build_transport

logger = logging.getLogger(__name__)


@dataclass
class TrackerConfig:
    """Cadences and limits for one tracker."""

    batch_size: int = DEFAULT_BATCH_SIZE
    flush_interval_seconds: float = 5.0
    sample_interval_seconds: float = 1.0
    max_queue_size: int | None = None
    bandwidth_pixel_factor: float = DEFAULT_BANDWIDTH_PIXEL_FACTOR

    def __post_init__(self) -> None:
        if self.flush_interval_seconds <= 0 or self.sample_interval_seconds <= 0:
            raise ValueError("Sampling and flush intervals must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrackerConfig":
        return cls(
            batch_size=settings.batch_size,
            flush_interval_seconds=settings.flush_interval_ms / 1000,
            sample_interval_seconds=settings.sample_interval_ms / 1000,
            max_queue_size=settings.max_queue_size,
            bandwidth_pixel_factor=settings.bandwidth_pixel_factor,
        )


class Tracker:
    """Start/stop/reset lifecycle around sampling and delivery."""

    def __init__(
        self,
        transport: DeliveryTransport,
        config: TrackerConfig | None = None,
        device_info_provider: DeviceInfoProvider = capture_device_info,
    ) -> None:
        self.config = config or TrackerConfig()
        self.transport = transport
        self._device_info_provider = device_info_provider
        self._session: SessionRecorder | None = None
        self.batcher = Batcher(
            transport,
            batch_size=self.config.batch_size,
            on_attempt=self._record_attempt,
            max_queue_size=self.config.max_queue_size,
        )
        self.sampler = Sampler(
            session_id=self._current_session_id,
            sink=self._on_record,
            bandwidth_pixel_factor=self.config.bandwidth_pixel_factor,
        )
        self._sample_task: PeriodicTask | None = None
        self._flush_task: PeriodicTask | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "Tracker":
        """Build a tracker and its transport from configuration."""
        return cls(
            build_transport(settings),
            config=TrackerConfig.from_settings(settings),
            **kwargs,
        )

    @property
    def tracking(self) -> bool:
        """Whether a source is attached and timers are armed."""
        return self.sampler.attached

    @property
    def session_id(self) -> str | None:
        return self._session.id if self._session else None

    def _current_session_id(self) -> str:
        return self._session.id if self._session is not None else ""

    def _on_record(self, record: MetricRecord) -> None:
        """Sampler sink: timeline first, then the outbound queue."""
        session = self._session
        if session is None or not session.append_metric(record):
            return
        self.batcher.enqueue(record)

    def _record_attempt(self, attempt: DeliveryAttempt) -> None:
        if self._session is not None:
            self._session.append_request(attempt)

    async def start(self, source: PlaybackSource, context: PlaybackContext | None = None) -> None:
        """Attach to a playback source and arm sampling and flushing."""
        if self._session is None or self._session.finalized:
            self._session = SessionRecorder(self._device_info_provider)

        self.batcher.bind_loop(asyncio.get_running_loop())
        self.sampler.attach(source, context)

        if self._sample_task is None:
            self._sample_task = PeriodicTask(
                "cmcd-sample", self.config.sample_interval_seconds, self.sampler.sample
            )
            self._sample_task.start()
        if self._flush_task is None:
            self._flush_task = PeriodicTask(
                "cmcd-flush-timer", self.config.flush_interval_seconds, self.batcher.flush
            )
            self._flush_task.start()

        logger.info(
            f"Tracking started: {self._session.id}",
            extra={"session_id": self._session.id},
        )

    async def _cancel_timers(self) -> None:
        sample_task, self._sample_task = self._sample_task, None
        flush_task, self._flush_task = self._flush_task, None
        try:
            if sample_task is not None:
                await sample_task.stop()
        finally:
            if flush_task is not None:
                await flush_task.stop()

    async def stop(self) -> None:
        """Detach, cancel timers, deliver what is left, finalize the session.

        The final flush runs before finalizing so its delivery attempt is
        still recorded on the session.
        """
        try:
            self.sampler.detach()
        finally:
            await self._cancel_timers()

        await self.batcher.drain()
        await self.batcher.flush()

        if self._session is not None and not self._session.finalized:
            self._session.finalize()

    async def reset(self) -> Session:
        """Stop, then replace the session with a fresh one.

        Tracking is not resumed; call start() again to continue.
        """
        await self.stop()
        previous = self._session
        self._session = (
            previous.reset() if previous is not None
            else SessionRecorder(self._device_info_provider)
        )
        logger.info(
            f"Session reset: {previous.id if previous else None} -> {self._session.id}",
            extra={"session_id": self._session.id},
        )
        return self._session.snapshot()

    async def aclose(self) -> None:
        """Stop tracking and release the transport."""
        try:
            await self.stop()
        finally:
            await self.transport.aclose()

    def get_session(self) -> Session | None:
        """Read-only copy of the current session, None before first start."""
        if self._session is None:
            return None
        return self._session.snapshot()

    def record_segment_load(self, load_time_ms: float, size_bytes: int | None = None) -> MetricRecord | None:
        """Forward a segment download timing from the player."""
        return self.sampler.record_segment_load(load_time_ms, size_bytes)

    def track_request(
        self,
        url: str,
        method: Literal["GET", "POST"] = "GET",
        headers: dict[str, str] | None = None,
        body: Any | None = None,
        response_time: float | None = None,
        status_code: int | None = None,
        error: str | None = None,
    ) -> DeliveryAttempt | None:
        """Audit an arbitrary media or API request on the session."""
        if self._session is None:
            return None
        attempt = DeliveryAttempt(
            url=url,
            method=method,
            headers=headers or {},
            body=body,
            response_time=response_time,
            status_code=status_code,
            error=error,
        )
        if not self._session.append_request(attempt):
            return None
        return attempt

    def formatted_cmcd(self) -> str:
        """CMCD string for the most recent record, empty when there is none."""
        if self._session is None:
            return ""
        latest = self._session.latest_metric()
        return encode(latest) if latest is not None else ""

    def all_formatted_cmcd(self) -> list[str]:
        """CMCD strings for the whole timeline, in order."""
        if self._session is None:
            return []
        return [encode(record) for record in self._session.metrics()]
