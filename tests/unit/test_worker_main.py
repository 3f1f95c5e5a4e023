"""
Unit tests for worker process assembly.
"""

import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from jobcore.config import Settings
from jobcore.constants import JobStatus
from jobcore.queues import JobQueue, JobType, get_queue_family
from jobcore.types.job import LeasedJob, Outcome
from jobcore.worker.main import Worker, select_families
from jobcore.worker.periodic import PeriodicEnqueuer
from jobcore.worker.poller import QueuePoller


class TestSelectFamilies:
    """Tests for choosing the polled queue families."""

    def test_all_families_by_default(self):
        families = select_families(Settings(worker_queues=None))

        assert {family.queue for family in families} == set(JobQueue)

    def test_configured_subset(self):
        families = select_families(Settings(worker_queues=["screenshot", "bulk"]))

        assert [family.queue for family in families] == [JobQueue.SCREENSHOT, JobQueue.BULK]
        assert families[0].max_concurrency == 3

    def test_unknown_queue_rejected(self):
        with pytest.raises(ValueError):
            select_families(Settings(worker_queues=["archive"]))


class TestWorker:
    """Tests for the Worker wrapper around pollers and the periodic enqueuer."""

    def test_one_poller_per_family(self):
        families = [get_queue_family(JobQueue.HIGH), get_queue_family(JobQueue.LOW)]
        worker = Worker(worker_id="worker-7", families=families, enable_periodic=False)

        assert [poller.queue for poller in worker.pollers] == ["high", "low"]
        assert all(poller.worker_id == "worker-7" for poller in worker.pollers)
        assert worker.periodic is None

    def test_periodic_enabled(self):
        worker = Worker(
            worker_id="worker-7",
            families=[get_queue_family(JobQueue.DEFAULT)],
            enable_periodic=True,
        )

        assert isinstance(worker.periodic, PeriodicEnqueuer)
        assert worker.periodic.schedules

    async def test_start_runs_until_stop(self, store, repository_cls):
        """start() drives every poller and returns once stop() is called."""
        job = store.add(JobType.AI_TAGGING)

        async def succeed(job_type: str, payload: dict) -> Outcome:
            return Outcome.success()

        family = get_queue_family(JobQueue.BULK)
        worker = Worker(worker_id="worker-7", families=[family], enable_periodic=False)
        worker.pollers = [
            QueuePoller(
                family,
                worker.worker_id,
                poll_interval=0.01,
                session_factory=store.session,
                repository_cls=repository_cls,
                dispatcher=succeed,
            )
        ]

        task = asyncio.create_task(worker.start())
        deadline = asyncio.get_running_loop().time() + 2.0
        while job.status != JobStatus.COMPLETED:
            assert asyncio.get_running_loop().time() < deadline
            await asyncio.sleep(0.005)

        worker.stop()
        await asyncio.wait_for(task, timeout=2.0)
        assert task.done()


class TestLeasedJob:
    """Tests for the claimed-job snapshot."""

    def _leased(self, attempt: int, max_attempts: int = 3) -> LeasedJob:
        return LeasedJob(
            job_id=uuid4(),
            job_type="ai_tagging",
            queue="bulk",
            payload={},
            attempt=attempt,
            max_attempts=max_attempts,
            lease_owner="worker-1",
            leased_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

    def test_remaining_attempts(self):
        assert self._leased(1).remaining_attempts == 2
        assert not self._leased(1).is_last_attempt

    def test_last_attempt(self):
        assert self._leased(3).remaining_attempts == 0
        assert self._leased(3).is_last_attempt
