"""Single-worker FIFO queue feeding the ingestion pipeline.

At most one job is mid-pipeline at a time. All state is touched from the
event loop thread only, so no locking is needed.
"""

import asyncio
import logging
from collections import deque
from typing import Optional, Protocol

from reelshop.core.logging import correlation_scope, log_error, log_info
from reelshop.core.metrics import COMPRESSION_QUEUE_DEPTH, COMPRESSION_WORKER_BUSY
from reelshop.modules.compression.models import CompressionStatus
from reelshop.modules.compression.schemas import IngestionJob, QueueStatus

logger = logging.getLogger(__name__)


class QueueClosedError(RuntimeError):
    """The queue is shutting down and accepts no new jobs."""


class JobRunner(Protocol):
    async def run(self, job: IngestionJob) -> CompressionStatus:
        ...


class CompressionJobQueue:
    """FIFO of IngestionJobs drained by one background task.

    ``enqueue`` never blocks; the drain task is started on demand and exits
    when the queue is empty.
    """

    def __init__(self, runner: JobRunner):
        self._runner = runner
        self._jobs: deque[IngestionJob] = deque()
        self._current: Optional[IngestionJob] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._accepting = True
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_processing(self) -> bool:
        return self._drain_task is not None

    def __len__(self) -> int:
        return len(self._jobs)

    def enqueue(self, job: IngestionJob) -> int:
        """Append a job and start draining if idle.

        Returns:
            Position of the job among waiting jobs (1 = next)

        Raises:
            QueueClosedError: After shutdown() was called
        """
        if not self._accepting:
            raise QueueClosedError("Compression queue is shutting down")

        self._jobs.append(job)
        position = len(self._jobs)
        COMPRESSION_QUEUE_DEPTH.set(position)
        log_info(logger, "Compression job queued", job_id=job.id, queue_length=position)

        if self._drain_task is None:
            self._idle.clear()
            self._drain_task = asyncio.get_running_loop().create_task(
                self._drain(), name="compression-queue-drain"
            )
            self._drain_task.add_done_callback(self._on_drain_done)
        return position

    async def _drain(self) -> None:
        try:
            while self._jobs:
                job = self._jobs.popleft()
                self._current = job
                COMPRESSION_QUEUE_DEPTH.set(len(self._jobs))
                COMPRESSION_WORKER_BUSY.set(1)

                with correlation_scope(job.correlation_id):
                    try:
                        await self._runner.run(job)
                    except Exception as e:
                        log_error(
                            logger,
                            "Compression job raised, continuing with next job",
                            exception=e,
                            job_id=job.id,
                        )
                self._current = None
        finally:
            self._current = None
            self._drain_task = None
            COMPRESSION_WORKER_BUSY.set(0)
            COMPRESSION_QUEUE_DEPTH.set(len(self._jobs))
            self._idle.set()

    @staticmethod
    def _on_drain_done(task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("Compression queue drain task cancelled")
            return
        exc = task.exception()
        if exc is not None:
            log_error(logger, "Compression queue drain task crashed", exception=exc)

    def status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._jobs),
            is_processing=self.is_processing,
            pending_job_ids=[job.id for job in self._jobs],
            current_job_id=self._current.id if self._current is not None else None,
        )

    async def join(self) -> None:
        """Wait until every queued job has reached a terminal state."""
        while self._drain_task is not None or self._jobs:
            if self._drain_task is None:
                # Left over after a cancelled drain
                self._idle.clear()
                self._drain_task = asyncio.get_running_loop().create_task(self._drain())
                self._drain_task.add_done_callback(self._on_drain_done)
            await self._idle.wait()

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting jobs and wait for the queued ones to finish."""
        self._accepting = False
        pending = len(self._jobs) + (1 if self._current is not None else 0)
        if pending:
            log_info(logger, "Waiting for compression queue to drain", pending_jobs=pending)
        await asyncio.wait_for(self.join(), timeout)
