"""Session timeline recording.

A SessionRecorder is the mutable side of a Session: the sampler appends
metric records, transports append delivery attempts, and readers only ever
see copies produced by snapshot(). Once finalized, appends are ignored.
"""

import logging
import threading
import uuid
from typing import Callable

from cmcd_telemetry.models.metrics import MetricRecord, now_ms
from cmcd_telemetry.models.session import DeliveryAttempt, DeviceInfo, Session
from cmcd_telemetry.services.device import capture_device_info

logger = logging.getLogger(__name__)

DeviceInfoProvider = Callable[[], DeviceInfo]


def generate_session_id() -> str:
    """Time-based id with a random suffix, unique within the process."""
    return f"cmcd_{now_ms()}_{uuid.uuid4().hex[:9]}"


class SessionRecorder:
    """Holds the timeline of one tracking lifetime."""

    def __init__(self, device_info_provider: DeviceInfoProvider = capture_device_info) -> None:
        self._device_info_provider = device_info_provider
        self.id = generate_session_id()
        self.start_time = now_ms()
        self.end_time: int | None = None
        self.device_info = device_info_provider()
        self._metrics: list[MetricRecord] = []
        self._requests: list[DeliveryAttempt] = []
        self._lock = threading.Lock()
        logger.info(f"Session created: {self.id}", extra={"session_id": self.id})

    @property
    def finalized(self) -> bool:
        """Whether the session has stopped accepting appends."""
        return self.end_time is not None

    @property
    def metric_count(self) -> int:
        """Number of metric records on the timeline."""
        return len(self._metrics)

    def append_metric(self, record: MetricRecord) -> bool:
        """Append a record to the timeline. Returns False once finalized."""
        with self._lock:
            if self.end_time is not None:
                return False
            self._metrics.append(record)
            return True

    def append_request(self, attempt: DeliveryAttempt) -> bool:
        """Append a delivery attempt. Returns False once finalized."""
        with self._lock:
            if self.end_time is not None:
                return False
            self._requests.append(attempt)
            return True

    def latest_metric(self) -> MetricRecord | None:
        """Most recently appended record, if any."""
        with self._lock:
            return self._metrics[-1] if self._metrics else None

    def metrics(self) -> list[MetricRecord]:
        """Copy of the metric timeline in insertion order."""
        with self._lock:
            return list(self._metrics)

    def finalize(self) -> None:
        """Set end_time. Later calls keep the first end time."""
        with self._lock:
            if self.end_time is not None:
                return
            self.end_time = now_ms()
        duration = (self.end_time - self.start_time) / 1000
        logger.info(
            f"Session finalized: {self.id}, duration={duration:.1f}s, "
            f"metrics={len(self._metrics)}, requests={len(self._requests)}",
            extra={"session_id": self.id},
        )

    def reset(self) -> "SessionRecorder":
        """Return a brand-new session; this one is left untouched."""
        return SessionRecorder(self._device_info_provider)

    def snapshot(self) -> Session:
        """Detached copy of the current state, safe to hand to readers."""
        with self._lock:
            return Session(
                id=self.id,
                start_time=self.start_time,
                end_time=self.end_time,
                metrics=list(self._metrics),
                requests=[attempt.model_copy(deep=True) for attempt in self._requests],
                device_info=self.device_info.model_copy(),
            )
