"""
Job dispatcher between the upload path and the thumbnail worker.

Producers call enqueue() and never wait on the worker. The worker's
dequeue() is the only suspension point; it polls the persisted queue.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from sharehub.core.files.models import utcnow
from sharehub.logging.setup import get_logger
from .models import NackOutcome, ThumbnailJob
from .queue import JobQueue

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class JobDispatcher:
    """
    FIFO thumbnail queue with supersede-on-duplicate semantics.

    Attributes:
        max_attempts: Retry ceiling; a nack that would push a job's
            attempt count past it drops the job instead
        poll_interval: Seconds between queue polls while dequeue waits
    """

    def __init__(
        self,
        queue: JobQueue,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        self.queue = queue
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self._clock = clock

    def enqueue(
            self, file_id: str, source_key: str,
            mime_hint: str | None = None) -> ThumbnailJob:
        job = self.queue.enqueue(file_id, source_key, mime_hint, self._clock())
        logger.debug(f"Queued thumbnail job {job.job_id} for file {file_id}")
        return job

    async def dequeue(self, timeout: float | None = None) -> ThumbnailJob | None:
        """
        Wait for the next eligible job and claim it.

        Args:
            timeout: Seconds to wait; None waits until a job arrives

        Returns:
            Claimed job, or None if the timeout elapsed
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while True:
            job = self.queue.claim(self._clock())
            if job is not None:
                logger.debug(
                    f"Claimed thumbnail job {job.job_id} "
                    f"(file {job.file_id}, attempt {job.attempts + 1})")
                return job

            if deadline is None:
                await asyncio.sleep(self.poll_interval)
                continue
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    def ack(self, job_id: str) -> bool:
        done = self.queue.ack(job_id)
        if not done:
            logger.debug(f"Ack for superseded or unknown job {job_id} ignored")
        return done

    def nack(self, job_id: str, error: str | None = None) -> NackOutcome:
        outcome = self.queue.nack(job_id, error, self.max_attempts, self._clock())
        if outcome == NackOutcome.DROPPED:
            logger.error(
                f"Dropping thumbnail job {job_id} after exceeding "
                f"{self.max_attempts} retries: {error}")
        elif outcome == NackOutcome.REQUEUED:
            logger.warning(f"Requeued thumbnail job {job_id}: {error}")
        else:
            logger.debug(f"Nack for superseded or unknown job {job_id} ignored")
        return outcome

    def discard(self, file_id: str) -> bool:
        return self.queue.discard(file_id)

    def recover_stale(self, older_than: timedelta | float) -> int:
        """Requeue jobs whose worker has held them longer than older_than."""
        if not isinstance(older_than, timedelta):
            older_than = timedelta(seconds=older_than)
        now = self._clock()
        recovered = self.queue.recover_stale(
            now - older_than, self.max_attempts, now)
        if recovered:
            logger.warning(f"Recovered {recovered} stale thumbnail job(s)")
        return recovered

    def pending_count(self) -> int:
        return self.queue.pending_count()
