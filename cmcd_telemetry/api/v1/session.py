"""Session export endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from cmcd_telemetry.api.v1.deps import get_tracker
from cmcd_telemetry.models.base import BaseSchema
from cmcd_telemetry.models.session import DeliveryAttempt, Session
from cmcd_telemetry.services.tracker import Tracker

router = APIRouter(prefix="/session", tags=["session"])


class CMCDExport(BaseSchema):
    """Encoded CMCD strings for the current session."""

    latest: str
    all: list[str]


class FlushResult(BaseSchema):
    """Outcome of a manual flush."""

    attempt: DeliveryAttempt | None = None
    pending: int


@router.get("", response_model=Session, response_model_exclude_none=True)
async def get_session(tracker: Tracker = Depends(get_tracker)) -> Session:
    """Snapshot of the current session."""
    session = tracker.get_session()
    if not session:
        raise HTTPException(status_code=404, detail="No tracking session")
    return session


@router.get("/cmcd", response_model=CMCDExport)
async def get_cmcd(tracker: Tracker = Depends(get_tracker)) -> CMCDExport:
    """Session timeline encoded as CMCD strings."""
    return CMCDExport(latest=tracker.formatted_cmcd(), all=tracker.all_formatted_cmcd())


@router.post("/reset", response_model=Session, response_model_exclude_none=True)
async def reset_session(tracker: Tracker = Depends(get_tracker)) -> Session:
    """Stop tracking and start a fresh session."""
    return await tracker.reset()


@router.post("/flush", response_model=FlushResult, response_model_exclude_none=True)
async def flush_session(tracker: Tracker = Depends(get_tracker)) -> FlushResult:
    """Deliver queued records now."""
    attempt = await tracker.batcher.flush()
    return FlushResult(attempt=attempt, pending=tracker.batcher.pending)
