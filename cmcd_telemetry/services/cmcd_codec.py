"""CMCD (Common Media Client Data) codec.

Maps a MetricRecord to and from the CTA-5004 style wire string:

    CMCD-Bandwidth=3200,CMCD-BufferLength=12500,CMCD-FlowId=flow-1

Only present fields are emitted, in the canonical order of CMCD_FIELDS.
Seconds-valued fields travel as milliseconds. String values are
percent-escaped so a comma or equals sign inside an id cannot split an entry.
"""

import math
from dataclasses import dataclass
from typing import Any, Literal
from urllib.parse import quote, unquote

from cmcd_telemetry.models.metrics import MetricRecord

CMCD_HEADER = "CMCD-Data"
KEY_PREFIX = "CMCD-"

# integer: rounded to nearest whole number
# decimal: emitted as-is
# seconds: stored in seconds, carried as rounded milliseconds
# string: opaque correlation key
Encoding = Literal["integer", "decimal", "seconds", "string"]


@dataclass(frozen=True)
class CMCDField:
    """One wire key and how its value is carried."""

    attr: str
    key: str
    encoding: Encoding


CMCD_FIELDS: tuple[CMCDField, ...] = (
    # Continuous playback metrics
    CMCDField("bandwidth", "Bandwidth", "integer"),
    CMCDField("buffer_length", "BufferLength", "seconds"),
    CMCDField("measured_throughput", "MeasuredThroughput", "decimal"),
    CMCDField("object_duration", "ObjectDuration", "seconds"),
    CMCDField("playback_rate", "PlaybackRate", "decimal"),
    # Counters
    CMCDField("decoded_frames", "DecodedFrames", "integer"),
    CMCDField("dropped_frames", "DroppedFrames", "integer"),
    CMCDField("quality_level", "QualityLevel", "integer"),
    CMCDField("quality_changes", "QualityChanges", "integer"),
    CMCDField("rebuffering_events", "RebufferingEvents", "integer"),
    # Timing
    CMCDField("load_time", "LoadTime", "integer"),
    CMCDField("startup_time", "StartupTime", "integer"),
    CMCDField("rebuffering_time", "RebufferingTime", "seconds"),
    # Context correlation
    CMCDField("flow_id", "FlowId", "string"),
    CMCDField("segment_id", "SegmentId", "string"),
    CMCDField("source_id", "SourceId", "string"),
)

_FIELDS_BY_KEY = {KEY_PREFIX + f.key: f for f in CMCD_FIELDS}

# Counters must come back as non-negative ints to rebuild a MetricRecord
_COUNTER_ATTRS = frozenset({
    "decoded_frames",
    "dropped_frames",
    "quality_level",
    "quality_changes",
    "rebuffering_events",
})


def _round_half_up(value: float) -> int:
    """Round to nearest integer, halves rounding up."""
    return math.floor(value + 0.5)


def _format_decimal(value: float) -> str:
    """Shortest decimal text for a number, without a trailing '.0'."""
    if isinstance(value, int) or float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _encode_value(field: CMCDField, value: Any) -> str:
    if field.encoding == "string":
        return quote(str(value), safe="")
    if field.encoding == "seconds":
        return str(_round_half_up(value * 1000))
    if field.encoding == "integer":
        return str(_round_half_up(value))
    return _format_decimal(value)


def encode(record: MetricRecord) -> str:
    """Encode the present fields of a record as a CMCD string.

    Non-finite numbers have no wire form and are left out.
    """
    params: list[str] = []
    for field in CMCD_FIELDS:
        value = getattr(record, field.attr)
        if value is None:
            continue
        if isinstance(value, float) and not math.isfinite(value):
            continue
        params.append(f"{KEY_PREFIX}{field.key}={_encode_value(field, value)}")
    return ",".join(params)


def _decode_value(field: CMCDField, raw: str) -> Any | None:
    """Parse one wire value; None means the entry is unusable."""
    if field.encoding == "string":
        return unquote(raw)

    try:
        number = float(raw)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None

    if field.encoding == "seconds":
        return _round_half_up(number) / 1000
    if field.attr in _COUNTER_ATTRS:
        if number < 0:
            return None
        return _round_half_up(number)
    if field.encoding == "integer":
        return float(_round_half_up(number))
    return number


def decode(cmcd_string: str) -> dict[str, Any]:
    """Parse a CMCD string into MetricRecord field values.

    Unknown keys and malformed entries are skipped; this never raises on
    garbage input. The result is keyed by MetricRecord attribute name.
    """
    values: dict[str, Any] = {}
    if not cmcd_string:
        return values

    for entry in cmcd_string.split(","):
        key, sep, raw = entry.strip().partition("=")
        key, raw = key.strip(), raw.strip()
        if not sep or not key or not raw:
            continue

        field = _FIELDS_BY_KEY.get(key)
        if field is None:
            continue

        value = _decode_value(field, raw)
        if value is not None:
            values[field.attr] = value

    return values
