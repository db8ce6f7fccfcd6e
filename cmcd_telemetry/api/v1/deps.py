"""Request dependencies shared by the v1 endpoints."""

from fastapi import HTTPException, Request

from cmcd_telemetry.services.tracker import Tracker


def get_tracker(request: Request) -> Tracker:
    """Tracker held on the application state."""
    tracker = request.app.state.tracker
    if tracker is None:
        raise HTTPException(status_code=503, detail="Tracker not initialized")
    return tracker
