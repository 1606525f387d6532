"""Health check endpoint."""

import structlog
from fastapi import APIRouter
from pydantic import BaseModel

from provisioner import __version__
from provisioner.routers import jobs

router = APIRouter()
logger = structlog.get_logger(__name__)


class HealthResponse(BaseModel):
    status: str
    version: str
    jobs: int = 0
    running_jobs: int = 0


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Service liveness plus in-memory job counts."""
    engine = jobs.get_engine()
    if engine is None:
        return HealthResponse(status="starting", version=__version__)

    stats = engine.store.stats()
    return HealthResponse(
        status="ok",
        version=__version__,
        jobs=stats["jobs"],
        running_jobs=stats["running"],
    )
