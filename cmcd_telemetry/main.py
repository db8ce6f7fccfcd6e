"""FastAPI application exposing the tracking session for reporting UIs."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cmcd_telemetry.api.v1 import router as api_router
from cmcd_telemetry.core.config import Settings, get_settings
from cmcd_telemetry.core.logging import setup_logging
from cmcd_telemetry.services.cmcd_codec import CMCD_HEADER
from cmcd_telemetry.services.tracker import Tracker

logger = logging.getLogger(__name__)


def create_app(tracker: Tracker | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the export API around an explicitly supplied tracker.

    Without a tracker, one is built from settings at startup. The tracker
    lives on app.state and is closed on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        # Startup
        setup_logging(debug=settings.debug)
        if app.state.tracker is None:
            app.state.tracker = Tracker.from_settings(settings)
            logger.info(f"Tracker created, delivery_mode={settings.delivery_mode}")
        yield
        # Shutdown
        await app.state.tracker.aclose()

    app = FastAPI(
        title=settings.app_name,
        description="Client-side CMCD playback telemetry: session export and local log",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.tracker = tracker
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Origin", CMCD_HEADER],
    )

    app.include_router(api_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"service": settings.app_name, "status": "running"}

    return app


app = create_app()
