"""In-process FIFO of distribution jobs with a single drain loop.

``enqueue`` never waits for delivery: it appends the job and, if no drain
loop is running, starts one as a background task on the running event loop.
Jobs are processed strictly one after another. The drain task is exposed so
callers (and tests) can await it instead of relying on timing.
"""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable

from src.core.schemas import DistributionJob, JobSummary

logger = logging.getLogger(__name__)

JobProcessor = Callable[[DistributionJob], Awaitable[JobSummary]]


class DispatchQueue:
    """Serializes distribution jobs through one processor."""

    def __init__(self, processor: JobProcessor, job_delay_ms: int = 0) -> None:
        self._processor = processor
        self._job_delay_s = job_delay_ms / 1000
        self._jobs: deque[DistributionJob] = deque()
        self._processing = False
        self._drain_task: asyncio.Task[None] | None = None
        self.completed: deque[JobSummary] = deque(maxlen=100)

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def drain_task(self) -> asyncio.Task[None] | None:
        """Handle of the running drain loop, or None when idle."""
        return self._drain_task

    def __len__(self) -> int:
        return len(self._jobs)

    def enqueue(self, job: DistributionJob) -> asyncio.Task[None]:
        """Append a job and make sure a drain loop is running. Returns its handle."""
        self._jobs.append(job)
        logger.debug("Queued job %s (%d pending)", job.id, len(self._jobs))
        if self._drain_task is None:
            self._processing = True
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())
        return self._drain_task

    async def join(self) -> None:
        """Wait until the queue is empty and no job is in flight."""
        while self._drain_task is not None:
            await asyncio.shield(self._drain_task)

    def clear(self) -> int:
        """Drop all pending jobs (the one in flight finishes). Returns the count."""
        dropped = len(self._jobs)
        self._jobs.clear()
        if dropped:
            logger.warning("Dropped %d pending distribution jobs", dropped)
        return dropped

    async def close(self, wait: bool = True) -> None:
        """Stop the drain loop, draining the backlog first when ``wait`` is set."""
        if wait:
            await self.join()
            return
        self.clear()
        task = self._drain_task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        # A task cancelled before its first step never reaches _drain's finally.
        self._processing = False
        self._drain_task = None

    async def _drain(self) -> None:
        logger.info("Processing distribution queue: %d jobs", len(self._jobs))
        try:
            while self._jobs:
                job = self._jobs.popleft()
                try:
                    summary = await self._processor(job)
                    self.completed.append(summary)
                except Exception:
                    logger.exception("Distribution job %s failed", job.id)
                if self._jobs and self._job_delay_s > 0:
                    await asyncio.sleep(self._job_delay_s)
        finally:
            self._processing = False
            self._drain_task = None
