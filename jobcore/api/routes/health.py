"""
Health check and metrics routes.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore import __version__
from jobcore.db import get_async_session
from jobcore.db.repository import JobRepository
from jobcore.observability.metrics import get_metrics
from jobcore.types.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and database connection.",
)
async def health_check(
    session: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Perform a health check.

    Reports "degraded" rather than failing when the database is unreachable.
    """
    db_status = "healthy"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        await session.rollback()
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    """Readiness probe: the database answers a trivial query."""
    try:
        await session.execute(text("SELECT 1"))
        return {"ready": True}
    except Exception:
        logger.warning("Readiness check failed", exc_info=True)
        await session.rollback()
        return {"ready": False}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics, refreshing the queue occupancy gauges.",
)
async def metrics(
    session: AsyncSession = Depends(get_async_session),
) -> Response:
    """
    Expose Prometheus metrics.

    Queue depth and processing gauges are read from the database on each
    scrape so they reflect every worker, not just this process.
    """
    metrics_collector = get_metrics()

    try:
        occupancy = await JobRepository(session).get_queue_occupancy()
    except Exception:
        logger.warning("Could not refresh queue gauges", exc_info=True)
        await session.rollback()
    else:
        for queue, counts in occupancy.items():
            metrics_collector.update_queue_occupancy(
                queue, counts["pending"], counts["processing"]
            )

    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
