"""Tests for the single-worker compression queue.

**Property: jobs start strictly in enqueue order, one at a time**
"""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from reelshop.core.logging import get_correlation_id
from reelshop.modules.compression.models import CompressionStatus
from reelshop.modules.compression.queue import CompressionJobQueue, QueueClosedError
from reelshop.modules.compression.schemas import IngestionJob


def make_job(job_id: int) -> IngestionJob:
    return IngestionJob(
        id=job_id,
        source_path=f"/tmp/uploads/temp/videos/{job_id}.mov",
        working_path=f"/tmp/uploads/temp/videos/{job_id}_opt.mp4",
    )


class SlowRunner:
    """Records start order and the maximum number of concurrent runs."""

    def __init__(self, delay: float = 0.01, failing: frozenset = frozenset()):
        self.delay = delay
        self.failing = failing
        self.started: list[int] = []
        self.finished: list[int] = []
        self.correlation_ids: dict[int, str] = {}
        self.active = 0
        self.max_active = 0

    async def run(self, job: IngestionJob) -> CompressionStatus:
        self.started.append(job.id)
        self.correlation_ids[job.id] = get_correlation_id()
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if job.id in self.failing:
                raise RuntimeError(f"job {job.id} crashed")
            return CompressionStatus.COMPLETED
        finally:
            self.active -= 1
            self.finished.append(job.id)


class TestQueueOrdering:

    @pytest.mark.asyncio
    async def test_fifo_single_worker(self) -> None:
        runner = SlowRunner()
        queue = CompressionJobQueue(runner)

        for job_id in ("A", "B", "C"):
            queue.enqueue(make_job(job_id))
        await queue.join()

        assert runner.started == ["A", "B", "C"]
        assert runner.max_active == 1

    @pytest.mark.asyncio
    async def test_job_enqueued_while_busy_runs_after_earlier_jobs(self) -> None:
        runner = SlowRunner(delay=0.02)
        queue = CompressionJobQueue(runner)

        queue.enqueue(make_job(1))
        await asyncio.sleep(0.005)
        queue.enqueue(make_job(2))
        queue.enqueue(make_job(3))
        await queue.join()

        assert runner.started == [1, 2, 3]
        assert runner.finished == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_failing_job_does_not_stop_queue(self) -> None:
        runner = SlowRunner(failing=frozenset({2}))
        queue = CompressionJobQueue(runner)

        for job_id in (1, 2, 3):
            queue.enqueue(make_job(job_id))
        await queue.join()

        assert runner.finished == [1, 2, 3]
        assert queue.status().is_processing is False

    @pytest.mark.asyncio
    async def test_each_job_runs_under_its_own_correlation_id(self) -> None:
        runner = SlowRunner(delay=0)
        queue = CompressionJobQueue(runner)
        jobs = [make_job(1), make_job(2)]

        for job in jobs:
            queue.enqueue(job)
        await queue.join()

        assert runner.correlation_ids == {job.id: job.correlation_id for job in jobs}

    @given(job_ids=st.lists(st.integers(min_value=1, max_value=10_000), min_size=1, max_size=25, unique=True))
    @settings(max_examples=50, deadline=None)
    def test_processing_order_matches_enqueue_order(self, job_ids: list[int]) -> None:
        async def scenario() -> SlowRunner:
            runner = SlowRunner(delay=0)
            queue = CompressionJobQueue(runner)
            for job_id in job_ids:
                queue.enqueue(make_job(job_id))
            await queue.join()
            return runner

        runner = asyncio.run(scenario())

        assert runner.started == job_ids
        assert runner.max_active == 1


class TestQueueStatus:

    @pytest.mark.asyncio
    async def test_idle_status(self) -> None:
        status = CompressionJobQueue(SlowRunner()).status()

        assert status.queue_length == 0
        assert status.is_processing is False
        assert status.pending_job_ids == []
        assert status.current_job_id is None

    @pytest.mark.asyncio
    async def test_status_while_draining(self) -> None:
        runner = SlowRunner(delay=0.05)
        queue = CompressionJobQueue(runner)

        for job_id in (10, 11, 12):
            queue.enqueue(make_job(job_id))
        await asyncio.sleep(0.01)

        status = queue.status()
        assert status.is_processing is True
        assert status.current_job_id == 10
        assert status.pending_job_ids == [11, 12]
        assert status.queue_length == 2

        await queue.join()
        status = queue.status()
        assert status.is_processing is False
        assert status.queue_length == 0

    @pytest.mark.asyncio
    async def test_enqueue_returns_position(self) -> None:
        queue = CompressionJobQueue(SlowRunner())

        assert queue.enqueue(make_job(1)) == 1
        assert queue.enqueue(make_job(2)) == 2
        await queue.join()


class TestShutdown:

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_queued_jobs(self) -> None:
        runner = SlowRunner()
        queue = CompressionJobQueue(runner)
        for job_id in (1, 2):
            queue.enqueue(make_job(job_id))

        await queue.shutdown(timeout=5)

        assert runner.finished == [1, 2]

    @pytest.mark.asyncio
    async def test_shutdown_refuses_new_jobs(self) -> None:
        queue = CompressionJobQueue(SlowRunner())
        await queue.shutdown()

        with pytest.raises(QueueClosedError):
            queue.enqueue(make_job(1))
