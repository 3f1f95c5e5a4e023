"""
Worker process for executing jobs.

The worker runs one QueuePoller per configured queue family, plus the
optional periodic enqueuer, in a single asyncio event loop. SIGTERM and
SIGINT stop every loop and wait for in-flight handlers.
"""

import asyncio
import logging
import signal

from jobcore.config import Settings, get_settings
from jobcore.db import close_db, get_engine, init_db
from jobcore.observability.logging import setup_logging
from jobcore.observability.metrics import setup_metrics
from jobcore.observability.tracing import instrument_sqlalchemy, setup_tracing
from jobcore.queues import JobQueue, QueueFamily, get_queue_table
from jobcore.retry import BackoffPolicy
from jobcore.worker.periodic import PeriodicEnqueuer, default_schedules
from jobcore.worker.poller import QueuePoller

logger = logging.getLogger(__name__)


def select_families(settings: Settings) -> list[QueueFamily]:
    """
    Queue families this worker polls.

    Raises:
        ValueError: If worker_queues names an unknown queue.
    """
    table = get_queue_table()
    if not settings.worker_queues:
        return list(table.values())
    return [table[JobQueue(name)] for name in settings.worker_queues]


class Worker:
    """
    Job worker process.

    Features:
    - One polling loop per queue family, sharing one event loop
    - Optional periodic enqueuing of maintenance jobs
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        worker_id: str | None = None,
        families: list[QueueFamily] | None = None,
        enable_periodic: bool | None = None,
    ):
        """
        Initialize the worker.

        Args:
            worker_id: Unique worker identifier. Defaults to hostname:pid.
            families: Queue families to poll. Defaults to settings.worker_queues.
            enable_periodic: Run the periodic enqueuer. Defaults to settings.
        """
        settings = get_settings()

        self.worker_id = worker_id or settings.worker_id
        policy = BackoffPolicy.from_settings(settings)

        self.pollers = [
            QueuePoller(family, self.worker_id, policy=policy)
            for family in (families or select_families(settings))
        ]

        if enable_periodic is None:
            enable_periodic = settings.worker_enable_periodic
        self.periodic = PeriodicEnqueuer(default_schedules()) if enable_periodic else None

    async def start(self) -> None:
        """Run every loop until stop() is called."""
        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "queues": [p.queue for p in self.pollers],
                "periodic": self.periodic is not None,
            },
        )

        loops = [poller.run() for poller in self.pollers]
        if self.periodic is not None:
            loops.append(self.periodic.run())

        await asyncio.gather(*loops)
        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    def stop(self) -> None:
        """Stop every loop gracefully."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        for poller in self.pollers:
            poller.stop()
        if self.periodic is not None:
            self.periodic.stop()


async def run_async() -> None:
    """Run the worker asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    setup_metrics()
    setup_tracing(settings)
    await init_db()
    if settings.otel_enabled:
        instrument_sqlalchemy(get_engine().sync_engine)

    worker = Worker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
