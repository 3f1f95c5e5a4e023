"""
Periodic enqueueing of maintenance jobs.

The enqueuer keeps a list of schedules and, on every tick, enqueues the job
types whose interval has elapsed. A schedule is skipped while a job of the
same type is still pending or processing, so a slow run never piles up
duplicates behind it.

Several workers may run the enqueuer; the duplicate check is best-effort
across processes, and handlers are idempotent anyway.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from jobcore.config import get_settings
from jobcore.db import get_session_context
from jobcore.db.repository import JobRepository, utcnow
from jobcore.observability.metrics import get_metrics
from jobcore.queues import JobType, to_job_type
from jobcore.worker.poller import SessionFactory

logger = logging.getLogger(__name__)


@dataclass
class PeriodicSchedule:
    """
    A job type enqueued on a fixed cadence.

    Attributes:
        job_type: Type of job to enqueue.
        interval: Time between enqueues.
        payload: Payload passed to every enqueued job.
        enabled: Whether this schedule is active.
        last_enqueued: When the schedule last produced a job.
    """

    job_type: JobType
    interval: timedelta
    payload: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    last_enqueued: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        if self.last_enqueued is None:
            return True
        return now >= self.last_enqueued + self.interval


def default_schedules() -> list[PeriodicSchedule]:
    """Schedules for the built-in maintenance job types."""
    return [
        PeriodicSchedule(JobType.RSS_FEED_REFRESH, timedelta(minutes=5)),
        PeriodicSchedule(JobType.STOCK_REFRESH, timedelta(minutes=5)),
        PeriodicSchedule(JobType.WEATHER_REFRESH, timedelta(hours=1)),
        PeriodicSchedule(JobType.SOCIAL_REFRESH, timedelta(minutes=30)),
        PeriodicSchedule(JobType.RANK_RECALCULATION, timedelta(hours=1)),
        PeriodicSchedule(JobType.CLICK_ROLLUP, timedelta(hours=1)),
        PeriodicSchedule(JobType.AI_TAGGING, timedelta(hours=1)),
        PeriodicSchedule(JobType.AI_CATEGORIZATION, timedelta(hours=1)),
        PeriodicSchedule(JobType.LISTING_EXPIRATION, timedelta(hours=24)),
        PeriodicSchedule(JobType.PROMOTION_EXPIRATION, timedelta(hours=24)),
        PeriodicSchedule(JobType.OAUTH_TOKEN_REFRESH, timedelta(hours=24)),
        PeriodicSchedule(JobType.SITEMAP_GENERATION, timedelta(hours=24)),
        PeriodicSchedule(JobType.LINK_HEALTH_CHECK, timedelta(days=7)),
    ]


class PeriodicEnqueuer:
    """
    Enqueues due schedules on every tick.

    Example:
        enqueuer = PeriodicEnqueuer()
        enqueuer.add_schedule(PeriodicSchedule(JobType.CLICK_ROLLUP, timedelta(hours=1)))
        await enqueuer.tick()
    """

    def __init__(
        self,
        schedules: list[PeriodicSchedule] | None = None,
        interval: float | None = None,
        session_factory: SessionFactory = get_session_context,
        repository_cls: Callable[[Any], JobRepository] = JobRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the enqueuer.

        Args:
            schedules: Initial schedules. Defaults to none.
            interval: Seconds between ticks in run().
            session_factory: Async context manager yielding a committing session.
            repository_cls: Repository built around each session.
            clock: Source of the current time.
        """
        settings = get_settings()
        self.interval = (
            settings.worker_periodic_interval_seconds if interval is None else interval
        )
        self._schedules: list[PeriodicSchedule] = list(schedules or [])
        self._session_factory = session_factory
        self._repository_cls = repository_cls
        self._clock = clock
        self._running = False
        self._wakeup = asyncio.Event()

    @property
    def schedules(self) -> list[PeriodicSchedule]:
        return list(self._schedules)

    def add_schedule(self, schedule: PeriodicSchedule) -> None:
        """
        Add a schedule.

        Raises:
            UnknownJobTypeError: If the job type is not declared.
        """
        schedule.job_type = to_job_type(schedule.job_type)
        self._schedules.append(schedule)
        logger.debug(
            "Added schedule",
            extra={"job_type": schedule.job_type.value, "interval": str(schedule.interval)},
        )

    async def tick(self) -> list[JobType]:
        """
        Enqueue every schedule that is due and has no active job.

        Returns:
            The job types enqueued during this tick.
        """
        now = self._clock()
        enqueued: list[JobType] = []

        for schedule in self._schedules:
            if not schedule.enabled or not schedule.is_due(now):
                continue

            async with self._session_factory() as session:
                repo = self._repository_cls(session)

                if await repo.has_active_job(schedule.job_type):
                    logger.debug(
                        "Skipping schedule, job already active",
                        extra={"job_type": schedule.job_type.value},
                    )
                    continue

                job = await repo.enqueue(schedule.job_type, payload=schedule.payload)

            schedule.last_enqueued = now
            enqueued.append(schedule.job_type)
            get_metrics().record_job_enqueued(job.queue.value, job.job_type)

            logger.info(
                "Enqueued periodic job",
                extra={
                    "job_type": schedule.job_type.value,
                    "next_due": (now + schedule.interval).isoformat(),
                },
            )

        return enqueued

    async def run(self) -> None:
        """Tick every interval seconds until stop() is called."""
        self._running = True
        self._wakeup.clear()
        logger.info(
            "Periodic enqueuer starting",
            extra={"schedules": len(self._schedules)},
        )

        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Error in periodic enqueuer: {e}")

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Periodic enqueuer stopped")

    def stop(self) -> None:
        self._running = False
        self._wakeup.set()
