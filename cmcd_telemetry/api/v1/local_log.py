"""Local persistence log endpoints (offline delivery mode)."""

from fastapi import APIRouter, Depends, HTTPException, Query

from cmcd_telemetry.api.v1.deps import get_tracker
from cmcd_telemetry.models.metrics import LocalLogSummary, MetricRecord
from cmcd_telemetry.services.tracker import Tracker
from cmcd_telemetry.services.transport import LocalLogTransport

router = APIRouter(prefix="/local-log", tags=["local-log"])


def get_local_log(tracker: Tracker = Depends(get_tracker)) -> LocalLogTransport:
    """The tracker's local log, when delivery is local."""
    if not isinstance(tracker.transport, LocalLogTransport):
        raise HTTPException(status_code=404, detail="Local log not enabled")
    return tracker.transport


@router.get("", response_model=list[MetricRecord], response_model_exclude_none=True)
async def list_records(
    limit: int = Query(100, ge=1, le=1000),
    local_log: LocalLogTransport = Depends(get_local_log),
) -> list[MetricRecord]:
    """Most recent stored records, oldest first."""
    return local_log.records()[-limit:]


@router.get("/summary", response_model=LocalLogSummary)
async def get_summary(local_log: LocalLogTransport = Depends(get_local_log)) -> LocalLogSummary:
    """Aggregate report over the stored records."""
    return local_log.summary()
