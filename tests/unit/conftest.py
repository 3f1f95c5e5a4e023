"""
In-memory doubles for the job repository, used by poller and periodic tests.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import pytest

from jobcore.constants import EXHAUSTED_LEASE_ERROR, JobStatus
from jobcore.queues import JobQueue, classify, to_job_type


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FakeJob:
    job_type: str
    queue: JobQueue
    priority: int
    payload: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 5
    scheduled_at: datetime = field(default_factory=_now)
    lease_owner: str | None = None
    leased_at: datetime | None = None
    last_error: str | None = None


class InMemoryStore:
    """
    Job rows plus knobs for steering the repository double.

    Attributes:
        lose_races: Job ids whose claim returns None.
        fail_find: Number of upcoming find_ready calls that raise.
        fail_writes: Make every outcome write-back raise.
        retries: (job_id, delay_seconds) for every schedule_retry call.
        stale_lease_timeout: Seconds after which a processing lease is stale.
    """

    def __init__(self) -> None:
        self.jobs: dict[UUID, FakeJob] = {}
        self.lose_races: set[UUID] = set()
        self.fail_find = 0
        self.fail_writes = False
        self.find_calls = 0
        self.retries: list[tuple[UUID, float]] = []
        self.stale_lease_timeout = 300

    def add(self, job_type: str, **kwargs: Any) -> FakeJob:
        queue, priority = classify(job_type)
        kwargs.setdefault("priority", priority)
        job = FakeJob(job_type=to_job_type(job_type).value, queue=queue, **kwargs)
        self.jobs[job.id] = job
        return job

    def add_leased(
        self,
        job_type: str,
        owner: str,
        leased_at: datetime,
        attempts: int = 1,
        **kwargs: Any,
    ) -> FakeJob:
        """Add a job already held by a worker since leased_at."""
        job = self.add(job_type, attempts=attempts, **kwargs)
        job.status = JobStatus.PROCESSING
        job.lease_owner = owner
        job.leased_at = leased_at
        return job

    def by_status(self, status: JobStatus) -> list[FakeJob]:
        return [job for job in self.jobs.values() if job.status == status]

    @asynccontextmanager
    async def session(self):
        yield self


class FakeRepository:
    """Mimics the JobRepository methods the poller and periodic enqueuer call."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    def _is_stale(self, job: FakeJob, now: datetime) -> bool:
        return (
            job.status == JobStatus.PROCESSING
            and job.leased_at is not None
            and job.leased_at <= now - timedelta(seconds=self.store.stale_lease_timeout)
        )

    def _is_ready(self, job: FakeJob, now: datetime) -> bool:
        if job.scheduled_at > now or job.attempts >= job.max_attempts:
            return False
        pending = job.status == JobStatus.PENDING and job.lease_owner is None
        return pending or self._is_stale(job, now)

    async def fail_exhausted_leases(self, queue: JobQueue, now: datetime | None = None) -> int:
        now = now or _now()
        exhausted = [
            job
            for job in self.store.jobs.values()
            if job.queue == queue
            and self._is_stale(job, now)
            and job.attempts >= job.max_attempts
        ]
        for job in exhausted:
            job.status = JobStatus.FAILED
            job.last_error = EXHAUSTED_LEASE_ERROR
            job.lease_owner = job.leased_at = None
        return len(exhausted)

    async def count_live_leases(self, queue: JobQueue, now: datetime | None = None) -> int:
        now = now or _now()
        return sum(
            1
            for job in self.store.jobs.values()
            if job.queue == queue
            and job.status == JobStatus.PROCESSING
            and not self._is_stale(job, now)
        )

    async def find_ready(self, queue: JobQueue, limit: int, now: datetime | None = None) -> list[FakeJob]:
        self.store.find_calls += 1
        if self.store.fail_find > 0:
            self.store.fail_find -= 1
            raise ConnectionError("database unavailable")

        now = now or _now()
        ready = [
            job
            for job in self.store.jobs.values()
            if job.queue == queue and self._is_ready(job, now)
        ]
        ready.sort(key=lambda job: (-job.priority, job.scheduled_at))
        return ready[:limit]

    async def claim_job(self, job_id: UUID, worker_id: str, queue: JobQueue, now: datetime | None = None) -> FakeJob | None:
        now = now or _now()
        job = self.store.jobs[job_id]
        if job_id in self.store.lose_races or not self._is_ready(job, now):
            return None
        job.status = JobStatus.PROCESSING
        job.lease_owner = worker_id
        job.leased_at = now
        job.attempts += 1
        return job

    def _held(self, job_id: UUID, worker_id: str, attempt: int) -> FakeJob | None:
        if self.store.fail_writes:
            raise ConnectionError("database unavailable")
        job = self.store.jobs[job_id]
        if (
            job.status == JobStatus.PROCESSING
            and job.lease_owner == worker_id
            and job.attempts == attempt
        ):
            return job
        return None

    async def complete_job(self, job_id: UUID, worker_id: str, attempt: int, now: datetime | None = None) -> FakeJob | None:
        job = self._held(job_id, worker_id, attempt)
        if job:
            job.status = JobStatus.COMPLETED
            job.lease_owner = job.leased_at = None
        return job

    async def schedule_retry(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        delay_seconds: float,
        error: str,
        now: datetime | None = None,
    ) -> FakeJob | None:
        job = self._held(job_id, worker_id, attempt)
        if job:
            self.store.retries.append((job_id, delay_seconds))
            job.status = JobStatus.PENDING
            job.scheduled_at = (now or _now()) + timedelta(seconds=delay_seconds)
            job.last_error = error
            job.lease_owner = job.leased_at = None
        return job

    async def fail_job(self, job_id: UUID, worker_id: str, attempt: int, error: str, now: datetime | None = None) -> FakeJob | None:
        job = self._held(job_id, worker_id, attempt)
        if job:
            job.status = JobStatus.FAILED
            job.last_error = error
            job.lease_owner = job.leased_at = None
        return job

    async def has_active_job(self, job_type: str) -> bool:
        value = to_job_type(job_type).value
        return any(
            job.job_type == value
            and job.status in (JobStatus.PENDING, JobStatus.PROCESSING)
            for job in self.store.jobs.values()
        )

    async def enqueue(self, job_type: str, payload: dict | None = None, **kwargs: Any) -> FakeJob:
        return self.store.add(job_type, payload=dict(payload or {}))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def repository_cls() -> type[FakeRepository]:
    return FakeRepository
