"""Unauthenticated health endpoints for probes and dashboards."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.core.config import get_settings
from src.core.database import DbSession
from src.core.health import HealthCheckService, HealthStatus

router = APIRouter(prefix="/health", tags=["health"])


def get_health_service(session: DbSession) -> HealthCheckService:
    return HealthCheckService(db_session=session, settings=get_settings())


Health = Annotated[HealthCheckService, Depends(get_health_service)]


@router.get("")
async def health_check() -> dict[str, str]:
    """Basic liveness: the process is up and serving."""
    return {"status": "healthy"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(health: Health) -> JSONResponse:
    """200 unless a critical dependency is down, then 503.

    A degraded blob store or key service still reports ready: reads of
    requests and record metadata keep working.
    """
    result = await health.check_all()
    status_code = 503 if result.status == HealthStatus.UNHEALTHY else 200
    return JSONResponse(content=result.to_dict(), status_code=status_code)


@router.get("/detailed")
async def detailed_health_check(health: Health) -> dict[str, Any]:
    """Every component's status and latency."""
    result = await health.check_all()
    return result.to_dict()
