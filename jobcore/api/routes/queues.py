"""
Queue family inspection routes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.constants import API_V1_PREFIX, JobStatus
from jobcore.db import get_async_session
from jobcore.db.repository import JobRepository
from jobcore.queues import get_queue_table
from jobcore.types.api import QueueResponse

router = APIRouter(prefix=f"{API_V1_PREFIX}/queues", tags=["Queues"])


@router.get(
    "",
    response_model=list[QueueResponse],
    summary="List queue families",
    description="Policy of every queue family with its pending and processing counts.",
)
async def list_queues(
    session: AsyncSession = Depends(get_async_session),
) -> list[QueueResponse]:
    occupancy = await JobRepository(session).get_queue_occupancy()

    return [
        QueueResponse(
            queue=family.queue,
            description=family.description,
            base_priority=family.base_priority,
            max_concurrency=family.max_concurrency,
            stale_lease_timeout_seconds=family.stale_lease_timeout,
            pending=occupancy[family.queue.value][JobStatus.PENDING.value],
            processing=occupancy[family.queue.value][JobStatus.PROCESSING.value],
        )
        for family in get_queue_table().values()
    ]
