"""Health, readiness and liveness endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel

from payroll_batch import __version__
from payroll_batch.api.dependencies import ServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Service health: storage reachability plus the wired FX providers."""

    status: str
    version: str
    timestamp: datetime
    storage: str
    fx_providers: list[str]


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
def health_check(service: ServiceDep) -> HealthResponse:
    """Degraded when the batch store cannot be read."""
    try:
        service.repository.exists("__health__")
        storage = "healthy"
    except Exception:
        logger.exception("Batch store health check failed")
        storage = "unhealthy"

    return HealthResponse(
        status="healthy" if storage == "healthy" else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        storage=storage,
        fx_providers=[p.provider_name for p in service.fx.providers],
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check() -> dict[str, str]:
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
