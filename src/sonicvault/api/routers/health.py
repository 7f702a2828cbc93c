"""Health check endpoints for Docker/Kubernetes health checks.

Endpoints:
- /health       -> status with a database check (503 when the DB is unreachable)
- /health/live  -> liveness check, no dependency checks
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from sonicvault import __version__

router = APIRouter()


class HealthStatus(BaseModel):
    """Overall health status response."""

    status: str = Field(description="Overall status: healthy or unhealthy")
    timestamp: str = Field(description="ISO timestamp of health check")
    version: str = Field(default=__version__, description="Application version")
    uptime_seconds: float | None = Field(
        default=None, description="Seconds since app started"
    )
    checks: dict[str, Any] = Field(
        default_factory=dict, description="Individual component checks"
    )


class LivenessStatus(BaseModel):
    """Simple liveness check response."""

    status: str = Field(description="alive or dead")
    timestamp: str = Field(description="ISO timestamp")


@router.get("/live", response_model=LivenessStatus)
async def liveness_check() -> LivenessStatus:
    """Liveness check: 200 as long as the process serves requests."""
    return LivenessStatus(status="alive", timestamp=datetime.now(UTC).isoformat())


@router.get("", response_model=HealthStatus)
async def health_check(request: Request) -> JSONResponse:
    """Health check with database connectivity."""
    timestamp = datetime.now(UTC).isoformat()
    checks: dict[str, Any] = {}

    db = getattr(request.app.state, "db", None)
    if db is None:
        checks["database"] = {"status": "error", "connected": False, "error": "Not initialized"}
    elif await db.ping():
        checks["database"] = {"status": "ok", "connected": True}
    else:
        checks["database"] = {"status": "error", "connected": False}

    settings = getattr(request.app.state, "settings", None)
    blob_store = getattr(request.app.state, "blob_store", None)
    checks["storage"] = {
        "status": "ok" if blob_store is not None else "error",
        "backend": settings.storage.backend if settings is not None else None,
    }

    uptime = None
    startup_time = getattr(request.app.state, "startup_time", None)
    if startup_time is not None:
        uptime = (datetime.now(UTC) - startup_time).total_seconds()

    healthy = checks["database"]["status"] == "ok"
    response = HealthStatus(
        status="healthy" if healthy else "unhealthy",
        timestamp=timestamp,
        uptime_seconds=uptime,
        checks=checks,
    )
    status_code = status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=response.model_dump(), status_code=status_code)
