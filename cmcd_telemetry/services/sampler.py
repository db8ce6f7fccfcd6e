"""Playback sampler.

Bridges a playback source into MetricRecords: every lifecycle event and
every periodic sample produces exactly one new record, handed to the sink.
Counters on event records are deltas (one stall is rebuffering_events=1);
frame counters on periodic samples are the source's cumulative values.
"""

import logging
import math
import threading
import time
from typing import Any, Callable

from cmcd_telemetry.models.metrics import MetricRecord, PlaybackContext
from cmcd_telemetry.services.playback import (
    BUFFERING_EVENTS,
    EventCallback,
    PlaybackEvent,
    PlaybackSource,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

RecordSink = Callable[[MetricRecord], None]

# Resolution-based bandwidth estimate, kbps per pixel
DEFAULT_BANDWIDTH_PIXEL_FACTOR = 0.1


def buffer_ahead(position: float, ranges: list[tuple[float, float]]) -> float:
    """Seconds buffered ahead of the play position.

    Uses the range containing the position, falling back to the end of the
    last range. Never negative.
    """
    if not ranges:
        return 0.0
    for start, end in ranges:
        if start <= position <= end:
            return end - position
    return max(0.0, ranges[-1][1] - position)


class Sampler:
    """Turns playback events and periodic state reads into records."""

    def __init__(
        self,
        session_id: Callable[[], str],
        sink: RecordSink,
        bandwidth_pixel_factor: float = DEFAULT_BANDWIDTH_PIXEL_FACTOR,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_id = session_id
        self._sink = sink
        self.bandwidth_pixel_factor = bandwidth_pixel_factor
        self._clock = clock
        self._lock = threading.Lock()
        self._source: PlaybackSource | None = None
        self._context = PlaybackContext()
        self._unsubscribes: list[Unsubscribe] = []
        self._attached_at = 0.0
        self._ready_seen = False
        self._stall_started_at: float | None = None

    @property
    def attached(self) -> bool:
        """Whether a playback source is currently attached."""
        return self._source is not None

    @property
    def context(self) -> PlaybackContext:
        """Correlation keys of the current attachment."""
        return self._context

    def attach(self, source: PlaybackSource, context: PlaybackContext | None = None) -> None:
        """Subscribe to the source's lifecycle events.

        Attaching while attached detaches the previous source first.
        """
        self.detach()
        with self._lock:
            self._source = source
            self._context = context or PlaybackContext()
            self._attached_at = self._clock()
            self._ready_seen = False
            self._stall_started_at = None
            try:
                for event in PlaybackEvent:
                    self._unsubscribes.append(
                        source.subscribe(event, self._guarded(self._on_event))
                    )
            except Exception:
                self._source = None
                for unsubscribe in self._unsubscribes:
                    unsubscribe()
                self._unsubscribes = []
                raise
        logger.info(
            f"Sampler attached: flow={self._context.flow_id}, "
            f"segment={self._context.segment_id}, source={self._context.source_id}"
        )

    def detach(self) -> None:
        """Release every subscription. A no-op when nothing is attached."""
        with self._lock:
            if self._source is None:
                return
            unsubscribes, self._unsubscribes = self._unsubscribes, []
            self._source = None
        for unsubscribe in unsubscribes:
            try:
                unsubscribe()
            except Exception as e:
                logger.warning(f"Failed to remove playback listener: {e}")
        logger.info("Sampler detached")

    def _guarded(self, handler: EventCallback) -> EventCallback:
        """Keep sampler faults out of the player's event dispatch."""

        def callback(event: PlaybackEvent, detail: Any = None) -> None:
            try:
                handler(event, detail)
            except Exception as e:
                logger.error(f"Error handling playback event {event}: {e}", exc_info=True)

        return callback

    def _elapsed_ms(self) -> float:
        return round((self._clock() - self._attached_at) * 1000, 3)

    def _new_record(self, event: PlaybackEvent | str | None = None, **values: Any) -> MetricRecord:
        dropped = [
            name for name, value in values.items()
            if isinstance(value, float) and not math.isfinite(value)
        ]
        for name in dropped:
            logger.debug(f"Dropping non-finite {name} reading: {values.pop(name)}")
        return MetricRecord(
            session_id=self._session_id(),
            flow_id=self._context.flow_id,
            segment_id=self._context.segment_id,
            source_id=self._context.source_id,
            event=event.value if isinstance(event, PlaybackEvent) else event,
            **values,
        )

    def _on_event(self, event: PlaybackEvent, detail: Any = None) -> None:
        """Record one lifecycle event."""
        with self._lock:
            if self._source is None:
                return

            values: dict[str, Any] = {}

            if event == PlaybackEvent.LOAD_START:
                values["startup_time"] = self._elapsed_ms()
            elif event == PlaybackEvent.READY:
                if not self._ready_seen:
                    self._ready_seen = True
                    values["startup_time"] = self._elapsed_ms()
                values.update(self._stall_duration())
            elif event == PlaybackEvent.PLAY:
                values.update(self._stall_duration())
            elif event in BUFFERING_EVENTS:
                values["rebuffering_events"] = 1
                if self._stall_started_at is None:
                    self._stall_started_at = self._clock()
            elif event == PlaybackEvent.QUALITY_CHANGE:
                values["quality_changes"] = 1
                if isinstance(detail, int) and detail >= 0:
                    values["quality_level"] = detail

            record = self._new_record(event, **values)

        if event == PlaybackEvent.ERROR:
            logger.warning(f"Playback error reported: {detail!r}")
        self._sink(record)

    def _stall_duration(self) -> dict[str, float]:
        """Close an open stall, returning its length as rebuffering_time.

        Caller holds the lock.
        """
        if self._stall_started_at is None:
            return {}
        stalled_for = self._clock() - self._stall_started_at
        self._stall_started_at = None
        return {"rebuffering_time": round(stalled_for, 3)}

    def sample(self) -> MetricRecord | None:
        """Read instantaneous player state into one record.

        Emits a record on every call while attached, whether or not
        anything changed. Capabilities the source lacks are omitted.
        """
        source = self._source
        if source is None:
            return None

        values: dict[str, Any] = {
            "buffer_length": round(buffer_ahead(source.current_time, source.buffered), 3),
            "playback_rate": source.playback_rate,
        }

        duration = source.duration
        if duration is not None and math.isfinite(duration) and duration > 0:
            values["object_duration"] = duration

        decoded = source.decoded_frames
        if decoded is not None:
            values["decoded_frames"] = decoded

        dropped = source.dropped_frames
        if dropped is not None:
            values["dropped_frames"] = dropped

        resolution = source.video_resolution
        if resolution:
            width, height = resolution
            if width and height:
                values["bandwidth"] = round(width * height * self.bandwidth_pixel_factor)

        record = self._new_record(**values)
        self._sink(record)
        return record

    def record_segment_load(self, load_time_ms: float, size_bytes: int | None = None) -> MetricRecord | None:
        """Record one media segment download reported by the player.

        measured_throughput is derived as kbps when the size is known.
        """
        if self._source is None:
            return None
        values: dict[str, Any] = {"load_time": load_time_ms}
        if size_bytes is not None and 0 < load_time_ms < math.inf:
            # bits per millisecond is kilobits per second
            values["measured_throughput"] = round(size_bytes * 8 / load_time_ms, 3)
        record = self._new_record("segmentload", **values)
        self._sink(record)
        return record
