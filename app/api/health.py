"""
Health check endpoint.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from datetime import datetime

from app.utils.config import get_settings
from domains.organizing.engine import OrganizingEngine, get_engine

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    watching: bool
    watched_folders: int
    version: str


@router.get("/health", response_model=HealthResponse)
def health_check(engine: OrganizingEngine = Depends(get_engine)):
    """
    Health check endpoint.

    Reports whether the engine is watching anything. An enabled folder whose
    watcher failed to start marks the service as degraded.
    """
    settings = get_settings()
    snapshot = engine.snapshot()
    enabled = sum(1 for folder in engine.folders if folder.enabled)
    watched = len(snapshot.watched_folders)

    return HealthResponse(
        status="degraded" if snapshot.is_running and watched < enabled else "healthy",
        timestamp=datetime.now(),
        watching=snapshot.is_running,
        watched_folders=watched,
        version=settings.api_version
    )
