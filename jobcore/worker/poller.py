"""
Per-queue polling loop.

One QueuePoller runs per queue family. Each tick selects ready jobs in
priority order, claims them one by one and dispatches every claimed job as
its own asyncio task, so a slow handler never blocks the loop.
"""

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from typing import Any, Awaitable, Callable
from uuid import UUID

from jobcore.config import get_settings
from jobcore.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB, JobStatus
from jobcore.db import get_session_context
from jobcore.db.repository import JobRepository
from jobcore.observability.logging import bind_context
from jobcore.observability.metrics import get_metrics
from jobcore.observability.tracing import get_tracer
from jobcore.queues import QueueFamily
from jobcore.retry import BackoffPolicy, ErrorClass, decide
from jobcore.types.job import LeasedJob, Outcome
from jobcore.worker.handlers import execute_job

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[Any]]
Dispatcher = Callable[[str, dict[str, Any]], Awaitable[Outcome]]


class QueuePoller:
    """
    Polls one queue family and runs its jobs.

    Features:
    - Conditional claims, each committed in its own transaction
    - Stale-lease reclamation through the readiness predicate
    - Concurrency cap for capped families, batch size otherwise
    - Outcome write-back guarded by the lease generation
    - Graceful stop that waits for in-flight handlers
    """

    def __init__(
        self,
        family: QueueFamily,
        worker_id: str,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        policy: BackoffPolicy | None = None,
        session_factory: SessionFactory = get_session_context,
        repository_cls: Callable[[Any], JobRepository] = JobRepository,
        dispatcher: Dispatcher = execute_job,
        shutdown_timeout: float | None = None,
    ):
        """
        Initialize the poller.

        Args:
            family: The queue family to poll.
            worker_id: Lease owner identity for this process.
            batch_size: Maximum jobs in flight for an uncapped family.
            poll_interval: Seconds between ticks.
            policy: Backoff policy for retryable failures.
            session_factory: Async context manager yielding a session that
                commits on exit.
            repository_cls: Repository built around each session.
            dispatcher: Coroutine turning (job_type, payload) into an Outcome.
            shutdown_timeout: Seconds stop waits for in-flight handlers.
        """
        settings = get_settings()

        self.family = family
        self.worker_id = worker_id
        self.batch_size = batch_size or settings.worker_batch_size
        self.poll_interval = (
            settings.worker_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.shutdown_timeout = (
            settings.worker_shutdown_timeout_seconds
            if shutdown_timeout is None
            else shutdown_timeout
        )
        self.policy = policy or BackoffPolicy.from_settings(settings)

        self._session_factory = session_factory
        self._repository_cls = repository_cls
        self._dispatcher = dispatcher
        self._metrics = get_metrics()

        self._running = False
        self._wakeup = asyncio.Event()
        self._tasks: dict[UUID, asyncio.Task] = {}

    @property
    def queue(self) -> str:
        return self.family.queue.value

    @property
    def in_flight(self) -> int:
        """Number of this poller's handler tasks still running."""
        return len(self._tasks)

    async def tick(self) -> list[LeasedJob]:
        """
        Run one poll cycle.

        Returns:
            The jobs claimed and dispatched during this tick.
        """
        async with self._session_factory() as session:
            repo = self._repository_cls(session)
            await repo.fail_exhausted_leases(self.family.queue)

            slots = self.batch_size - self.in_flight
            if self.family.is_capped:
                running = await repo.count_live_leases(self.family.queue)
                slots = min(slots, self.family.max_concurrency - running)

            if slots <= 0:
                return []

            candidates = [
                (job.id, job.status == JobStatus.PROCESSING)
                for job in await repo.find_ready(self.family.queue, slots)
            ]

        claimed: list[LeasedJob] = []
        for job_id, stale in candidates:
            leased = await self._claim(job_id, stale)
            if leased is not None:
                claimed.append(leased)

        if claimed:
            self._metrics.record_lease_acquired(self.queue, self.worker_id, len(claimed))
            logger.info(
                f"Acquired {len(claimed)} jobs",
                extra={"worker_id": self.worker_id, "queue": self.queue},
            )

        for leased in claimed:
            task = asyncio.create_task(self._dispatch(leased))
            self._tasks[leased.job_id] = task
            task.add_done_callback(lambda _t, job_id=leased.job_id: self._tasks.pop(job_id, None))

        return claimed

    async def _claim(self, job_id: UUID, stale: bool) -> LeasedJob | None:
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("job.id", str(job_id))
            span.set_attribute("job.queue", self.queue)
            async with self._session_factory() as session:
                repo = self._repository_cls(session)
                job = await repo.claim_job(job_id, self.worker_id, self.family.queue)
                leased = None if job is None else LeasedJob(
                    job_id=job.id,
                    job_type=job.job_type,
                    queue=self.queue,
                    payload=dict(job.payload or {}),
                    attempt=job.attempts,
                    max_attempts=job.max_attempts,
                    lease_owner=self.worker_id,
                    leased_at=job.leased_at,
                    reclaimed=stale,
                )
            span.set_attribute("job.claimed", leased is not None)

        if leased is None:
            self._metrics.record_lease_race_lost(self.queue)
            return None

        if stale:
            self._metrics.record_lease_reclaimed(self.queue)
            logger.warning(
                "Reclaimed stale lease",
                extra={"job_id": str(job_id), "queue": self.queue, "attempt": leased.attempt},
            )
        return leased

    async def _dispatch(self, job: LeasedJob) -> None:
        """
        Run a claimed job's handler and write back its outcome.

        Nothing raised here escapes the task. If the write-back fails the
        lease is left to go stale and the job is picked up again.
        """
        bind_context(job_id=str(job.job_id), job_type=job.job_type, queue=job.queue)
        logger.info(
            "Executing job",
            extra={
                "worker_id": self.worker_id,
                "attempt": job.attempt,
                "remaining_attempts": job.remaining_attempts,
            },
        )

        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job.id", str(job.job_id))
                span.set_attribute("job.type", job.job_type)
                span.set_attribute("job.queue", job.queue)
                span.set_attribute("job.attempt", job.attempt)

                outcome = await self._dispatcher(job.job_type, job.payload)
                span.set_attribute("job.outcome", outcome.kind.value)

            await self._record_outcome(job, outcome)
        except Exception:
            logger.exception(
                "Failed to record job outcome, lease will expire",
                extra={"worker_id": self.worker_id, "attempt": job.attempt},
            )

    async def _record_outcome(self, job: LeasedJob, outcome: Outcome) -> JobStatus | None:
        """
        Apply an outcome to the job row.

        Returns:
            The status written, or None if the lease was lost.
        """
        async with self._session_factory() as session:
            repo = self._repository_cls(session)

            if outcome.succeeded:
                status = JobStatus.COMPLETED
                updated = await repo.complete_job(job.job_id, self.worker_id, job.attempt)
            else:
                reason = outcome.reason or outcome.kind.value
                decision = decide(
                    job.attempt,
                    job.max_attempts,
                    ErrorClass.from_outcome(outcome.kind),
                    self.policy,
                )
                if decision.should_retry:
                    status = JobStatus.PENDING
                    updated = await repo.schedule_retry(
                        job.job_id,
                        self.worker_id,
                        job.attempt,
                        decision.delay_seconds,
                        reason,
                    )
                else:
                    status = JobStatus.FAILED
                    updated = await repo.fail_job(
                        job.job_id, self.worker_id, job.attempt, reason
                    )

        if updated is None:
            self._metrics.record_lease_lost(self.queue)
            logger.warning(
                "Lease lost before outcome was recorded",
                extra={
                    "worker_id": self.worker_id,
                    "attempt": job.attempt,
                    "outcome": outcome.kind.value,
                },
            )
            return None

        if outcome.duration_ms is not None:
            self._metrics.record_job_duration(
                self.queue, status.value, outcome.duration_ms / 1000
            )
        if status == JobStatus.PENDING:
            self._metrics.record_job_retry(self.queue, job.job_type)
        else:
            self._metrics.record_job_finished(self.queue, job.job_type, status.value)
        return status

    async def run(self) -> None:
        """Tick every poll_interval seconds until stop() is called."""
        logger.info(
            "Queue poller starting",
            extra={
                "worker_id": self.worker_id,
                "queue": self.queue,
                "max_concurrency": self.family.max_concurrency,
            },
        )
        self._running = True
        self._wakeup.clear()

        while self._running:
            try:
                await self.tick()
            except Exception as e:
                self._metrics.record_poll_error(self.queue)
                logger.exception(
                    f"Error in poll loop: {e}",
                    extra={"worker_id": self.worker_id, "queue": self.queue},
                )

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        await self.drain()
        logger.info(
            "Queue poller stopped",
            extra={"worker_id": self.worker_id, "queue": self.queue},
        )

    def stop(self) -> None:
        """Ask the loop to exit after the current tick."""
        self._running = False
        self._wakeup.set()

    async def drain(self) -> None:
        """
        Wait for in-flight handler tasks.

        Tasks still running after shutdown_timeout are cancelled; their leases
        go stale and another worker picks the jobs up.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return

        logger.info(
            f"Waiting for {len(tasks)} jobs to complete",
            extra={"queue": self.queue},
        )
        _, pending = await asyncio.wait(tasks, timeout=self.shutdown_timeout)
        if pending:
            logger.warning(
                f"Cancelling {len(pending)} jobs still running at shutdown",
                extra={"queue": self.queue},
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
