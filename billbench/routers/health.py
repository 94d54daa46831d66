"""Health check endpoint."""

from fastapi import APIRouter
from pydantic import BaseModel

from billbench.database import check_db_connection
from billbench.settings import settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    environment: str
    database: str
    version: str = "1.0.0"


@router.get("/health", response_model=HealthResponse, include_in_schema=False)
def health_check() -> HealthResponse:
    """
    Returns 200 while the service is up. `status` is "degraded" when the
    reference database is unreachable; analyses then report lines as
    data-unavailable rather than failing.
    """
    db_ok = check_db_connection()
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        environment=settings.environment,
        database="connected" if db_ok else "unreachable",
    )
