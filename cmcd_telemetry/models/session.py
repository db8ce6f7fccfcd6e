"""Session and delivery audit models."""

from typing import Any, Literal

from pydantic import Field

from cmcd_telemetry.models.base import BaseSchema
from cmcd_telemetry.models.metrics import MetricRecord, now_ms


class DeliveryAttempt(BaseSchema):
    """Audit entry for one transport call, successful or not."""

    url: str
    method: Literal["GET", "POST"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any | None = None
    timestamp: int = Field(default_factory=now_ms)
    response_time: float | None = None  # ms
    status_code: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """True when the attempt carries no error."""
        return self.error is None


class DeviceInfo(BaseSchema):
    """Device/environment metadata captured once per session."""

    user_agent: str
    device_type: Literal["mobile", "tablet", "desktop"] = "desktop"
    screen_width: int | None = None
    screen_height: int | None = None
    connection_type: str | None = None
    effective_type: str | None = None


class Session(BaseSchema):
    """Read-only snapshot of one tracking lifetime."""

    id: str
    start_time: int
    end_time: int | None = None
    metrics: list[MetricRecord] = Field(default_factory=list)
    requests: list[DeliveryAttempt] = Field(default_factory=list)
    device_info: DeviceInfo

    @property
    def finalized(self) -> bool:
        """Whether tracking has stopped for this session."""
        return self.end_time is not None
