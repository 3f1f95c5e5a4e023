"""
Read-only job inspection routes.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.constants import API_V1_PREFIX, JobStatus
from jobcore.db import get_async_session
from jobcore.db.repository import JobRepository
from jobcore.queues import JobQueue
from jobcore.types.api import JobListResponse, JobResponse, JobStatsResponse

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs, newest first, with optional status and queue filters.",
)
async def list_jobs(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: JobStatus | None = Query(default=None),
    queue: JobQueue | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    """
    List jobs.

    Args:
        page: Page number (1-indexed).
        page_size: Number of items per page.
        status: Optional status filter.
        queue: Optional queue filter.
        session: Database session.

    Returns:
        JobListResponse with paginated jobs.
    """
    repo = JobRepository(session)
    offset = (page - 1) * page_size

    jobs, total = await repo.list_jobs(
        status=status,
        queue=queue,
        limit=page_size,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )


@router.get(
    "/failed",
    response_model=list[JobResponse],
    summary="List failed jobs",
    description="Jobs in the terminal failed state, most recently failed first.",
)
async def list_failed_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    session: AsyncSession = Depends(get_async_session),
) -> list[JobResponse]:
    jobs = await JobRepository(session).find_failed(limit=limit)
    return [JobResponse.model_validate(job) for job in jobs]


@router.get(
    "/stats/summary",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Job counts by status, optionally for one queue.",
)
async def get_job_stats(
    queue: JobQueue | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    """
    Get job statistics.

    Args:
        queue: Optional queue filter.
        session: Database session.

    Returns:
        Counts for every status plus the pending depth.
    """
    repo = JobRepository(session)
    stats = await repo.get_job_stats(queue=queue)
    queue_depth = await repo.get_queue_depth(queue=queue)

    return JobStatsResponse(queue=queue, stats=stats, queue_depth=queue_depth)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job does not exist.
    """
    job = await JobRepository(session).get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.model_validate(job)
