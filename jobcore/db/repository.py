"""
Job repository for database operations.
Implements the job record store and the lease manager.

Every state transition is a single conditional UPDATE ... RETURNING whose
WHERE clause re-checks the state the caller expects. Two workers racing on
the same row therefore end with exactly one winner; the loser gets None.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement

from jobcore.config import get_settings
from jobcore.constants import EXHAUSTED_LEASE_ERROR, JobStatus
from jobcore.db.models import Job
from jobcore.queues import JobQueue, JobType, QueueFamily, classify, get_queue_table, to_job_type

logger = logging.getLogger(__name__)

_DML_OPTIONS = {"synchronize_session": False, "populate_existing": True}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Enqueueing with queue classification
    - Ready-job selection including stale-lease recovery
    - Conditional lease claims with per-queue concurrency caps
    - Completion, retry and failure write-backs guarded by lease generation
    """

    def __init__(
        self,
        session: AsyncSession,
        queue_table: Mapping[JobQueue, QueueFamily] | None = None,
    ):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            queue_table: Queue policies. Defaults to the process-wide table.
        """
        self._session = session
        self._settings = get_settings()
        self._queues = queue_table if queue_table is not None else get_queue_table()

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def _family(self, queue: JobQueue | str) -> QueueFamily:
        return self._queues[JobQueue(queue)]

    def _stale_cutoff(self, queue: JobQueue | str, now: datetime) -> datetime:
        return now - timedelta(seconds=self._family(queue).stale_lease_timeout)

    @staticmethod
    def _claimable(now: datetime, stale_cutoff: datetime) -> ColumnElement[bool]:
        """
        Readiness predicate shared by find_ready and claim_job.

        A job is claimable when it is due, has attempts left, and is either
        unleased and pending, or processing under a lease at least as old as
        the queue's stale-lease timeout.
        """
        return and_(
            Job.scheduled_at <= now,
            Job.attempts < Job.max_attempts,
            or_(
                and_(
                    Job.status == JobStatus.PENDING,
                    Job.lease_owner.is_(None),
                ),
                and_(
                    Job.status == JobStatus.PROCESSING,
                    Job.leased_at <= stale_cutoff,
                ),
            ),
        )

    @staticmethod
    def _lease_held(job_id: UUID, worker_id: str, attempt: int) -> ColumnElement[bool]:
        """The row is still processing under this worker's lease generation."""
        return and_(
            Job.id == job_id,
            Job.status == JobStatus.PROCESSING,
            Job.lease_owner == worker_id,
            Job.attempts == attempt,
        )

    async def _returning_one(self, stmt: Any) -> Job | None:
        result = await self._session.execute(
            stmt.returning(Job).execution_options(**_DML_OPTIONS)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        job_type: JobType | str,
        payload: Mapping[str, Any] | None = None,
        scheduled_at: datetime | None = None,
        max_attempts: int | None = None,
        priority: int | None = None,
    ) -> Job:
        """
        Create a new pending job.

        The queue and base priority come from the job type's classification
        and are stored on the row. The payload is stored untouched.

        Args:
            job_type: The handler contract to run.
            payload: Opaque mapping handed to the handler.
            scheduled_at: Earliest execution time. Defaults to now.
            max_attempts: Attempt ceiling. Defaults to settings.default_max_attempts.
            priority: Overrides the queue's base priority.

        Returns:
            The persisted Job.

        Raises:
            UnknownJobTypeError: If the job type is not declared.
            ValueError: If max_attempts is below 1.
        """
        job_type = to_job_type(job_type)
        queue, base_priority = classify(job_type)

        if max_attempts is None:
            max_attempts = self._settings.default_max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        now = utcnow()
        stmt = insert(Job).values(
            job_type=job_type.value,
            queue=queue,
            priority=base_priority if priority is None else priority,
            payload=dict(payload or {}),
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts,
            scheduled_at=_aware(scheduled_at) if scheduled_at else now,
            created_at=now,
            updated_at=now,
        )
        result = await self._session.execute(stmt.returning(Job))
        job = result.scalar_one()

        logger.info(
            "Enqueued job",
            extra={
                "job_id": str(job.id),
                "job_type": job.job_type,
                "queue": job.queue.value,
                "scheduled_at": job.scheduled_at.isoformat(),
            },
        )
        return job

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_job(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_ready(
        self,
        queue: JobQueue | str,
        limit: int,
        now: datetime | None = None,
    ) -> Sequence[Job]:
        """
        Find claimable jobs in a queue.

        Args:
            queue: The queue family to poll.
            limit: Maximum number of jobs to return.
            now: Evaluation instant. Defaults to the current time.

        Returns:
            Jobs ordered by priority DESC, scheduled_at ASC.
        """
        if limit <= 0:
            return []

        now = _aware(now) if now else utcnow()
        queue = JobQueue(queue)

        stmt = (
            select(Job)
            .where(
                Job.queue == queue,
                self._claimable(now, self._stale_cutoff(queue, now)),
            )
            .order_by(
                Job.priority.desc(),
                Job.scheduled_at.asc(),
                Job.created_at.asc(),
            )
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def find_by_status(
        self,
        status: JobStatus,
        queue: JobQueue | str | None = None,
        limit: int | None = None,
    ) -> Sequence[Job]:
        """Find jobs in a status, newest first."""
        stmt = select(Job).where(Job.status == status)
        if queue is not None:
            stmt = stmt.where(Job.queue == JobQueue(queue))
        stmt = stmt.order_by(Job.created_at.desc()).execution_options(populate_existing=True)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def find_failed(self, limit: int | None = None) -> Sequence[Job]:
        """Find failed jobs, most recently failed first."""
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.FAILED)
            .order_by(Job.failed_at.desc().nulls_last())
            .execution_options(populate_existing=True)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        queue: JobQueue | str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs with optional filtering.

        Args:
            status: Optional status filter.
            queue: Optional queue filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (jobs, total_count).
        """
        filters = []
        if status is not None:
            filters.append(Job.status == status)
        if queue is not None:
            filters.append(Job.queue == JobQueue(queue))

        count_stmt = select(func.count()).select_from(Job).where(*filters)
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = (
            select(Job)
            .where(*filters)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        jobs = result.scalars().all()

        return jobs, total

    async def count_processing(self, queue: JobQueue | str) -> int:
        """Count jobs of a queue currently in PROCESSING, stale leases included."""
        stmt = select(func.count()).select_from(Job).where(
            Job.queue == JobQueue(queue),
            Job.status == JobStatus.PROCESSING,
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def count_live_leases(self, queue: JobQueue | str, now: datetime | None = None) -> int:
        """
        Count processing jobs of a queue whose lease has not gone stale.

        Stale leases belong to workers presumed dead and do not take up a
        concurrency slot; the rows are reclaimable.
        """
        now = _aware(now) if now else utcnow()
        stmt = select(func.count()).select_from(Job).where(
            Job.queue == JobQueue(queue),
            Job.status == JobStatus.PROCESSING,
            Job.leased_at > self._stale_cutoff(queue, now),
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def get_queue_depth(self, queue: JobQueue | str | None = None) -> int:
        """
        Get the number of pending jobs.

        Args:
            queue: Optional queue filter.

        Returns:
            Number of pending jobs.
        """
        filters = [Job.status == JobStatus.PENDING]
        if queue is not None:
            filters.append(Job.queue == JobQueue(queue))

        stmt = select(func.count()).select_from(Job).where(and_(*filters))
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def get_job_stats(
        self,
        queue: JobQueue | str | None = None,
    ) -> dict[str, int]:
        """
        Get job statistics by status.

        Args:
            queue: Optional queue filter.

        Returns:
            Dictionary of status -> count, with every status present.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        if queue is not None:
            stmt = stmt.where(Job.queue == JobQueue(queue))

        result = await self._session.execute(stmt)
        stats = {status.value: 0 for status in JobStatus}
        stats.update({status.value: count for status, count in result.all()})
        return stats

    async def get_queue_occupancy(self) -> dict[str, dict[str, int]]:
        """Get pending and processing counts per queue."""
        stmt = (
            select(Job.queue, Job.status, func.count())
            .where(Job.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]))
            .group_by(Job.queue, Job.status)
        )
        result = await self._session.execute(stmt)

        occupancy = {
            queue.value: {JobStatus.PENDING.value: 0, JobStatus.PROCESSING.value: 0}
            for queue in JobQueue
        }
        for queue, status, count in result.all():
            occupancy[queue.value][status.value] = count
        return occupancy

    async def has_active_job(self, job_type: JobType | str) -> bool:
        """Check whether a job of this type is pending or processing."""
        stmt = (
            select(Job.id)
            .where(
                Job.job_type == to_job_type(job_type).value,
                Job.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]),
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    # ------------------------------------------------------------------
    # Lease manager
    # ------------------------------------------------------------------

    async def claim_job(
        self,
        job_id: UUID,
        worker_id: str,
        queue: JobQueue | str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Claim a ready job for a worker.

        The UPDATE re-checks the readiness predicate at write time, so of
        several workers racing for the same row exactly one gets it back.
        For a capped queue the statement also requires fewer than cap other
        live leases (stale ones do not hold a slot), and a transaction-scoped
        advisory lock on the queue serialises concurrent cap checks. The caller commits right after.

        Args:
            job_id: The candidate job.
            worker_id: The claiming worker.
            queue: The queue the candidate was selected from.
            now: Lease timestamp. Defaults to the current time.

        Returns:
            The claimed Job, or None if another worker won or the cap is full.
        """
        now = _aware(now) if now else utcnow()
        family = self._family(queue)
        stale_cutoff = self._stale_cutoff(family.queue, now)

        conditions = [
            Job.id == job_id,
            Job.queue == family.queue,
            self._claimable(now, stale_cutoff),
        ]

        if family.is_capped:
            await self._session.execute(
                select(func.pg_advisory_xact_lock(func.hashtext(f"jobcore.queue.{family.queue.value}")))
            )
            other = aliased(Job)
            running = (
                select(func.count())
                .select_from(other)
                .where(
                    other.queue == family.queue,
                    other.status == JobStatus.PROCESSING,
                    other.leased_at > stale_cutoff,
                    other.id != job_id,
                )
                .scalar_subquery()
            )
            conditions.append(running < family.max_concurrency)

        stmt = (
            update(Job)
            .where(*conditions)
            .values(
                status=JobStatus.PROCESSING,
                lease_owner=worker_id,
                leased_at=now,
                attempts=Job.attempts + 1,
                updated_at=now,
            )
        )
        job = await self._returning_one(stmt)

        if job is None:
            logger.debug(
                "Claim lost",
                extra={"job_id": str(job_id), "worker_id": worker_id, "queue": family.queue.value},
            )
        else:
            logger.debug(
                "Claimed job",
                extra={
                    "job_id": str(job_id),
                    "worker_id": worker_id,
                    "queue": family.queue.value,
                    "attempt": job.attempts,
                },
            )
        return job

    async def fail_exhausted_leases(
        self,
        queue: JobQueue | str,
        now: datetime | None = None,
    ) -> int:
        """
        Fail stale processing jobs that have no attempts left.

        Such jobs cannot be reclaimed without exceeding max_attempts.

        Args:
            queue: The queue family.
            now: Evaluation instant. Defaults to the current time.

        Returns:
            Number of jobs failed.
        """
        now = _aware(now) if now else utcnow()
        queue = JobQueue(queue)

        stmt = (
            update(Job)
            .where(
                Job.queue == queue,
                Job.status == JobStatus.PROCESSING,
                Job.leased_at <= self._stale_cutoff(queue, now),
                Job.attempts >= Job.max_attempts,
            )
            .values(
                status=JobStatus.FAILED,
                failed_at=now,
                last_error=EXHAUSTED_LEASE_ERROR,
                lease_owner=None,
                leased_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.warning(
                f"Failed {count} jobs whose final lease expired",
                extra={"queue": queue.value},
            )
        return count

    # ------------------------------------------------------------------
    # Outcome write-backs
    # ------------------------------------------------------------------

    async def complete_job(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Mark job as successfully completed.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier.
            attempt: The attempt number returned by the claim.
            now: Completion time. Defaults to the current time.

        Returns:
            Updated Job, or None if the lease is no longer held.
        """
        now = _aware(now) if now else utcnow()
        stmt = (
            update(Job)
            .where(self._lease_held(job_id, worker_id, attempt))
            .values(
                status=JobStatus.COMPLETED,
                completed_at=now,
                lease_owner=None,
                leased_at=None,
                updated_at=now,
            )
        )
        job = await self._returning_one(stmt)

        if job:
            logger.info(
                "Job completed successfully",
                extra={"job_id": str(job_id), "attempt": attempt},
            )
        return job

    async def schedule_retry(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        delay_seconds: float,
        error: str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Return a job to PENDING with a backoff delay.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier.
            attempt: The attempt number returned by the claim.
            delay_seconds: Backoff before the job becomes ready again.
            error: Error message from the failed attempt.
            now: Evaluation instant. Defaults to the current time.

        Returns:
            Updated Job, or None if the lease is no longer held or no attempts remain.
        """
        now = _aware(now) if now else utcnow()
        scheduled_at = now + timedelta(seconds=delay_seconds)

        stmt = (
            update(Job)
            .where(
                self._lease_held(job_id, worker_id, attempt),
                Job.attempts < Job.max_attempts,
            )
            .values(
                status=JobStatus.PENDING,
                scheduled_at=scheduled_at,
                last_error=error,
                lease_owner=None,
                leased_at=None,
                updated_at=now,
            )
        )
        job = await self._returning_one(stmt)

        if job:
            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": str(job_id),
                    "attempt": attempt,
                    "max_attempts": job.max_attempts,
                    "delay_seconds": round(delay_seconds, 3),
                },
            )
        return job

    async def fail_job(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        error: str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Move a job to the terminal FAILED state.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier.
            attempt: The attempt number returned by the claim.
            error: Error message.
            now: Failure time. Defaults to the current time.

        Returns:
            Updated Job, or None if the lease is no longer held.
        """
        now = _aware(now) if now else utcnow()
        stmt = (
            update(Job)
            .where(self._lease_held(job_id, worker_id, attempt))
            .values(
                status=JobStatus.FAILED,
                failed_at=now,
                last_error=error,
                lease_owner=None,
                leased_at=None,
                updated_at=now,
            )
        )
        job = await self._returning_one(stmt)

        if job:
            logger.warning(
                f"Job failed after {attempt} attempts",
                extra={"job_id": str(job_id), "error": error},
            )
        return job
