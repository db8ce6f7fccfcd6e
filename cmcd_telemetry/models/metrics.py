"""Metric record models."""

import time
from typing import Any

from pydantic import ConfigDict, Field, NonNegativeInt

from cmcd_telemetry.models.base import BaseSchema, to_camel


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class MetricRecord(BaseSchema):
    """Point-in-time snapshot of playback quality-of-experience values.

    Only session_id and timestamp are required. A record with nothing else
    set is still valid and is queued like any other.
    NaN and infinite numbers are rejected.

    Units: buffer_length, object_duration and rebuffering_time are seconds;
    load_time and startup_time are milliseconds; bandwidth and
    measured_throughput are kbps.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True,
        allow_inf_nan=False,
    )

    session_id: str
    timestamp: int = Field(default_factory=now_ms)

    # Context correlation keys, supplied by the caller
    flow_id: str | None = None
    segment_id: str | None = None
    source_id: str | None = None

    # Lifecycle event that produced the record; None for periodic samples
    event: str | None = None

    # Continuous playback metrics
    bandwidth: float | None = None
    buffer_length: float | None = None
    measured_throughput: float | None = None
    object_duration: float | None = None
    playback_rate: float | None = None

    # Counters
    decoded_frames: NonNegativeInt | None = None
    dropped_frames: NonNegativeInt | None = None
    quality_level: NonNegativeInt | None = None
    quality_changes: NonNegativeInt | None = None
    rebuffering_events: NonNegativeInt | None = None

    # Timing
    load_time: float | None = None
    startup_time: float | None = None
    rebuffering_time: float | None = None


class LocalLogSummary(BaseSchema):
    """Report over the records held in the local persistence log."""

    total_records: int = 0
    session_count: int = 0
    rebuffering_events: int = 0
    avg_buffer_length: float | None = None
    recent: list[dict[str, Any]] = Field(default_factory=list)


class PlaybackContext(BaseSchema):
    """Correlation keys attached to every record of one attachment."""

    flow_id: str | None = None
    segment_id: str | None = None
    source_id: str | None = None
