"""
Producer API for code that does not manage its own database session.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from jobcore.constants import SPAN_ENQUEUE_JOB
from jobcore.db import get_session_context
from jobcore.db.repository import JobRepository
from jobcore.observability.metrics import get_metrics
from jobcore.observability.tracing import get_tracer
from jobcore.queues import JobType


async def enqueue(
    job_type: JobType | str,
    payload: Mapping[str, Any] | None = None,
    scheduled_at: datetime | None = None,
    max_attempts: int | None = None,
    priority: int | None = None,
) -> UUID:
    """
    Enqueue a job in its own transaction.

    Callers that already hold a session should use JobRepository.enqueue so
    the job commits together with their own writes.

    Args:
        job_type: The handler contract to run.
        payload: Opaque mapping handed to the handler.
        scheduled_at: Earliest execution time. Defaults to now.
        max_attempts: Attempt ceiling. Defaults to settings.default_max_attempts.
        priority: Overrides the queue's base priority.

    Returns:
        The new job's id.

    Raises:
        UnknownJobTypeError: If the job type is not declared.
        ValueError: If max_attempts is below 1.
    """
    with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
        span.set_attribute("job.type", str(job_type))

        async with get_session_context() as session:
            job = await JobRepository(session).enqueue(
                job_type,
                payload=payload,
                scheduled_at=scheduled_at,
                max_attempts=max_attempts,
                priority=priority,
            )

        span.set_attribute("job.id", str(job.id))
        span.set_attribute("job.queue", job.queue.value)

    get_metrics().record_job_enqueued(job.queue.value, job.job_type)
    return job.id
