"""Health check endpoints with database connectivity and blacklist status."""

from typing import Any

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tokenguard.core import check_db_connection, get_db, settings
from tokenguard.services.blacklist import BlacklistService
from tokenguard.services.blacklist_store import SqlBlacklistStore

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(response: Response) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the database is unavailable.
    """
    db_healthy = await check_db_connection()

    # Set appropriate status code for container orchestration
    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=settings.app_version,
        database="connected" if db_healthy else "disconnected",
    )


@router.get("/health/blacklist")
async def blacklist_health(
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Blacklist size and cleanup recommendations."""
    health = await BlacklistService(SqlBlacklistStore(db)).get_health_status()
    if not health.get("healthy", False):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health
