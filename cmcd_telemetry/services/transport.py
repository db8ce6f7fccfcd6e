"""Delivery transports for metric batches.

Two interchangeable sinks:
- LocalLogTransport keeps a bounded, oldest-evicted log of raw records,
  optionally mirrored to a JSON file.
- HttpTransport POSTs the batch as JSON with the latest record's CMCD string
  in a request header.

deliver() never raises for delivery faults. It returns a DeliveryAttempt
whose error field is set on failure; the batcher decides what to requeue.
"""

import asyncio
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from cmcd_telemetry.core.config import Settings
from cmcd_telemetry.models.metrics import LocalLogSummary, MetricRecord
from cmcd_telemetry.models.session import DeliveryAttempt
from cmcd_telemetry.services.cmcd_codec import CMCD_HEADER, encode

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_LOG_MAX_RECORDS = 1000
RECENT_ACTIVITY_LIMIT = 10


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


class DeliveryTransport(ABC):
    """Delivers one batch to a sink and reports the attempt."""

    @property
    @abstractmethod
    def url(self) -> str:
        """Destination reported on delivery attempts."""
        pass

    @abstractmethod
    async def deliver(self, batch: list[MetricRecord]) -> DeliveryAttempt:
        """Deliver a batch in order.

        Returns:
            The attempt record; error is set when the batch was not delivered.
        """
        pass

    async def aclose(self) -> None:
        """Release transport resources."""
        return None


class LocalLogTransport(DeliveryTransport):
    """Bounded local persistence log, oldest records evicted first."""

    def __init__(
        self,
        max_records: int = DEFAULT_LOCAL_LOG_MAX_RECORDS,
        path: str | Path | None = None,
    ) -> None:
        if max_records <= 0:
            raise ValueError(f"max_records must be positive, got {max_records}")
        self.max_records = max_records
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._log: deque[MetricRecord] = deque(self._load(), maxlen=max_records)

    @property
    def url(self) -> str:
        return f"local://{self.path}" if self.path else "local://memory"

    def _load(self) -> list[MetricRecord]:
        """Read back a previously persisted log, if there is one."""
        if self.path is None or not self.path.exists():
            return []
        try:
            rows = json.loads(self.path.read_text(encoding="utf-8"))
            records = [MetricRecord.model_validate(row) for row in rows]
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable local log {self.path}: {e}")
            return []
        return records[-self.max_records:]

    def _persist(self, path: Path, records: list[MetricRecord]) -> None:
        """Write the log to path atomically via a sibling temp file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(
            json.dumps([record.to_wire() for record in records]),
            encoding="utf-8",
        )
        tmp.replace(path)

    async def deliver(self, batch: list[MetricRecord]) -> DeliveryAttempt:
        started = time.perf_counter()
        attempt = DeliveryAttempt(
            url=self.url,
            method="POST",
            headers={"Content-Type": "application/json"},
            body={"batch_size": len(batch)},
        )

        with self._lock:
            combined = list(self._log) + list(batch)
        evicted = max(0, len(combined) - self.max_records)
        kept = combined[evicted:]

        if self.path is not None:
            try:
                await asyncio.to_thread(self._persist, self.path, kept)
            except OSError as e:
                attempt.error = f"{type(e).__name__}: {e}"
                attempt.response_time = _elapsed_ms(started)
                return attempt

        with self._lock:
            self._log = deque(kept, maxlen=self.max_records)

        if evicted:
            logger.debug(f"Local log full, evicted {evicted} oldest records")

        attempt.response_time = _elapsed_ms(started)
        return attempt

    def records(self) -> list[MetricRecord]:
        """Stored records in insertion order."""
        with self._lock:
            return list(self._log)

    def __len__(self) -> int:
        return len(self._log)

    def clear(self) -> None:
        """Drop every stored record, including the file copy."""
        with self._lock:
            self._log.clear()
        if self.path is not None and self.path.exists():
            self.path.unlink()

    def summary(self) -> LocalLogSummary:
        """Aggregate view of the stored records for reporting."""
        records = self.records()
        if not records:
            return LocalLogSummary()

        buffer_lengths = [r.buffer_length for r in records if r.buffer_length is not None]
        avg_buffer = (
            round(sum(buffer_lengths) / len(buffer_lengths), 3) if buffer_lengths else None
        )

        return LocalLogSummary(
            total_records=len(records),
            session_count=len({r.session_id for r in records}),
            rebuffering_events=sum(r.rebuffering_events or 0 for r in records),
            avg_buffer_length=avg_buffer,
            recent=[r.to_wire() for r in records[-RECENT_ACTIVITY_LIMIT:]],
        )


class HttpTransport(DeliveryTransport):
    """POSTs batches to a remote analytics endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not endpoint:
            raise ValueError("Remote delivery requires an endpoint")
        self.endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def url(self) -> str:
        return self.endpoint

    def build_payload(self, batch: list[MetricRecord]) -> dict[str, Any]:
        """JSON body for one batch."""
        return {
            "events": [record.to_wire() for record in batch],
            "batch_size": len(batch),
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        }

    async def deliver(self, batch: list[MetricRecord]) -> DeliveryAttempt:
        payload = self.build_payload(batch)
        headers = {"Content-Type": "application/json"}
        if batch:
            headers[CMCD_HEADER] = encode(batch[-1])

        attempt = DeliveryAttempt(
            url=self.endpoint,
            method="POST",
            headers=headers,
            body={"batch_size": payload["batch_size"], "timestamp": payload["timestamp"]},
        )

        started = time.perf_counter()
        try:
            response = await self._client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            attempt.response_time = _elapsed_ms(started)
            attempt.error = f"{type(e).__name__}: {e}"
            return attempt

        attempt.response_time = _elapsed_ms(started)
        attempt.status_code = response.status_code
        if not response.is_success:
            attempt.error = f"HTTP {response.status_code}: {response.text[:200]}"
        return attempt

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_transport(settings: Settings) -> DeliveryTransport:
    """Create the transport selected by configuration."""
    if settings.delivery_mode == "remote":
        return HttpTransport(
            endpoint=settings.endpoint,
            timeout_seconds=settings.request_timeout_seconds,
        )
    return LocalLogTransport(
        max_records=settings.local_log_max_records,
        path=settings.local_log_path,
    )
