"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from .health import router as health_router
from .local_log import router as local_log_router
from .session import router as session_router

router = APIRouter(prefix="/api/v1")

router.include_router(health_router)
router.include_router(session_router)
router.include_router(local_log_router)
