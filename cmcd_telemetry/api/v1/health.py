"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from cmcd_telemetry.api.v1.deps import get_tracker
from cmcd_telemetry.models.base import BaseSchema
from cmcd_telemetry.services.tracker import Tracker

router = APIRouter(tags=["health"])


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    service_name: str
    timestamp: str
    version: str
    tracking: bool
    pending_records: int


@router.get("/health", response_model=HealthResponse)
async def health_check(tracker: Tracker = Depends(get_tracker)) -> HealthResponse:
    """Check service health."""
    return HealthResponse(
        status="healthy",
        service_name="cmcd-telemetry",
        timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        version="0.1.0",
        tracking=tracker.tracking,
        pending_records=tracker.batcher.pending,
    )
