"""
Load Generation Controller - Health Endpoints

Endpoint Design:
- GET /health         - Controller status with generator counts
- GET /health/live    - Liveness probe (is the process alive?)
- GET /health/ready   - Readiness probe (is the controller ticking?)
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from loadgen.server.dependencies import get_controller, get_host, get_maintainer

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Overall status: healthy, degraded")
    generators_registered: int = Field(description="Number of registered generators")
    generators_active: int = Field(description="Generators in ramp-up or load test")
    queued_runs: int = Field(description="Queued items across all generators")
    running_runs: int = Field(description="Live runs across all generators")
    maintainer_running: bool = Field(description="Whether the periodic tick is running")
    tick_count: int = Field(description="Reconciliation ticks completed")
    host: Optional[dict] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "generators_registered": 2,
                "generators_active": 1,
                "queued_runs": 0,
                "running_runs": 8,
                "maintainer_running": True,
                "tick_count": 42,
            }
        }


class LivenessResponse(BaseModel):
    status: str
    timestamp: str


class ReadinessResponse(BaseModel):
    ready: bool
    timestamp: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """
    Controller health status.

    Raises:
        503: Controller not initialized
    """
    controller = get_controller()
    maintainer = get_maintainer()
    host = get_host()

    if not controller:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Controller not initialized"
        )

    active = queued = running = 0
    bindings = controller.registry.snapshot()
    for binding in bindings:
        with binding.state.lock:
            active += 1 if binding.state.active else 0
            queued += binding.state.queued_count
            running += binding.state.running_count

    maintainer_running = bool(maintainer and maintainer.running)

    return HealthResponse(
        status="healthy" if maintainer_running else "degraded",
        generators_registered=len(bindings),
        generators_active=active,
        queued_runs=queued,
        running_runs=running,
        maintainer_running=maintainer_running,
        tick_count=maintainer.tick_count if maintainer else 0,
        host=host.to_dict() if host else None,
    )


@router.get("/live", response_model=LivenessResponse, tags=["health"])
async def liveness_probe() -> LivenessResponse:
    """Always 200 while the HTTP server responds."""
    return LivenessResponse(status="alive", timestamp=_now())


@router.get("/ready", response_model=ReadinessResponse, tags=["health"])
async def readiness_probe() -> ReadinessResponse:
    """
    Ready once the controller is initialized and the periodic tick runs.

    Raises:
        503: Controller not ready
    """
    controller = get_controller()
    maintainer = get_maintainer()

    if not controller or not maintainer or not maintainer.running:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Controller not ready"
        )

    return ReadinessResponse(ready=True, timestamp=_now())
