"""
Status API routes - Health check for the load balancer.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guitar_dice.db.session import get_read_db
from guitar_dice.models.api import HealthResponse
from guitar_dice.observability.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["status"])


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": HealthResponse}},
)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse | JSONResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    timestamp = datetime.now(UTC).isoformat()
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("health_check_database_failed", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=HealthResponse(
                status="unhealthy", database="disconnected", timestamp=timestamp
            ).model_dump(),
        )

    return HealthResponse(status="healthy", database="connected", timestamp=timestamp)
