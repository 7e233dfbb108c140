"""
Persisted thumbnail job queue.

The queue lives in the ``thumbnail_jobs`` table so the API process and
any number of offload workers can share it through the database alone.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError

from sharehub.core.database import Database, to_db_time
from sharehub.logging.setup import get_logger
from .models import JobState, NackOutcome, ThumbnailJob

logger = get_logger(__name__)

_MAX_ERROR_LENGTH = 1024
_CLAIM_ATTEMPTS = 5


class JobQueue(ABC):
    """Abstract interface for the thumbnail job transport."""

    @abstractmethod
    def enqueue(
            self, file_id: str, source_key: str, mime_hint: str | None,
            now: datetime) -> ThumbnailJob:
        """
        Add a job for file_id, or supersede the live one.

        A queued job keeps its position and gets the new content under a
        fresh job_id. A job that is being processed is turned back into a
        queued job (fresh job_id, eligible now) so the in-flight worker's
        ack/nack no longer match it.
        """
        pass

    @abstractmethod
    def get(self, file_id: str) -> ThumbnailJob | None:
        """Live job of a file, or None."""
        pass

    @abstractmethod
    def claim(self, now: datetime) -> ThumbnailJob | None:
        """Move the oldest eligible queued job to processing and return it."""
        pass

    @abstractmethod
    def ack(self, job_id: str) -> bool:
        """Remove a job. Returns False if job_id is no longer live."""
        pass

    @abstractmethod
    def nack(
            self, job_id: str, error: str | None, max_attempts: int,
            now: datetime) -> NackOutcome:
        """Requeue a failed job with one more attempt, or drop it past max_attempts."""
        pass

    @abstractmethod
    def discard(self, file_id: str) -> bool:
        """Remove any job for file_id, whatever its state."""
        pass

    @abstractmethod
    def recover_stale(
            self, claimed_before: datetime, max_attempts: int,
            now: datetime) -> int:
        """
        Requeue jobs stuck in processing since before claimed_before.

        The lost run counts as an attempt; jobs past max_attempts are dropped.

        Returns:
            Number of jobs requeued or dropped
        """
        pass

    @abstractmethod
    def pending_count(self) -> int:
        """Number of live jobs (queued or processing)."""
        pass


class SQLJobQueue(JobQueue):
    """JobQueue over the shared SQL database."""

    def __init__(self, database: Database):
        self.engine = database.engine
        self.table = database.thumbnail_jobs

    def _supersede(
            self, conn, file_id: str, job_id: str, source_key: str,
            mime_hint: str | None, now: datetime) -> bool:
        t = self.table
        content = dict(
            job_id=job_id, source_key=source_key, mime_hint=mime_hint,
            attempts=0, last_error=None)

        queued = conn.execute(
            update(t)
            .where(t.c.file_id == file_id, t.c.state == JobState.QUEUED.value)
            .values(**content)
        )
        if queued.rowcount:
            return True

        processing = conn.execute(
            update(t)
            .where(t.c.file_id == file_id, t.c.state == JobState.PROCESSING.value)
            .values(
                state=JobState.QUEUED.value,
                eligible_at=to_db_time(now),
                claimed_at=None,
                **content,
            )
        )
        return processing.rowcount > 0

    def enqueue(
            self, file_id: str, source_key: str, mime_hint: str | None,
            now: datetime) -> ThumbnailJob:
        job_id = ThumbnailJob.new_job_id()
        with self.engine.begin() as conn:
            superseded = self._supersede(
                conn, file_id, job_id, source_key, mime_hint, now)

        if superseded:
            logger.debug(f"Superseded thumbnail job for file {file_id}")
        else:
            try:
                with self.engine.begin() as conn:
                    conn.execute(insert(self.table).values(
                        file_id=file_id,
                        job_id=job_id,
                        source_key=source_key,
                        mime_hint=mime_hint,
                        attempts=0,
                        state=JobState.QUEUED.value,
                        eligible_at=to_db_time(now),
                    ))
            except IntegrityError:
                # Another enqueue for the same file inserted first
                with self.engine.begin() as conn:
                    self._supersede(
                        conn, file_id, job_id, source_key, mime_hint, now)

        return self.get(file_id)

    def get(self, file_id: str) -> ThumbnailJob | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.table).where(self.table.c.file_id == file_id)
            ).fetchone()
        return ThumbnailJob.from_dict(dict(row._mapping)) if row else None

    def claim(self, now: datetime) -> ThumbnailJob | None:
        t = self.table
        db_now = to_db_time(now)
        for _ in range(_CLAIM_ATTEMPTS):
            with self.engine.begin() as conn:
                row = conn.execute(
                    select(t)
                    .where(t.c.state == JobState.QUEUED.value,
                           t.c.eligible_at <= db_now)
                    .order_by(t.c.eligible_at)
                    .limit(1)
                ).fetchone()
                if row is None:
                    return None

                claimed = conn.execute(
                    update(t)
                    .where(t.c.job_id == row.job_id,
                           t.c.state == JobState.QUEUED.value)
                    .values(state=JobState.PROCESSING.value, claimed_at=db_now)
                )
                if claimed.rowcount == 1:
                    data = dict(row._mapping)
                    data.update(state=JobState.PROCESSING, claimed_at=now)
                    return ThumbnailJob.from_dict(data)
            # Lost the race to another worker; look again
        return None

    def ack(self, job_id: str) -> bool:
        with self.engine.begin() as conn:
            return conn.execute(
                delete(self.table).where(self.table.c.job_id == job_id)
            ).rowcount > 0

    def nack(
            self, job_id: str, error: str | None, max_attempts: int,
            now: datetime) -> NackOutcome:
        t = self.table
        live = (t.c.job_id == job_id, t.c.state == JobState.PROCESSING.value)
        with self.engine.begin() as conn:
            row = conn.execute(select(t.c.attempts).where(*live)).fetchone()
            if row is None:
                return NackOutcome.STALE

            attempts = row.attempts + 1
            if attempts > max_attempts:
                dropped = conn.execute(delete(t).where(*live)).rowcount
                return NackOutcome.DROPPED if dropped else NackOutcome.STALE

            requeued = conn.execute(
                update(t)
                .where(*live)
                .values(
                    attempts=attempts,
                    state=JobState.QUEUED.value,
                    eligible_at=to_db_time(now),
                    claimed_at=None,
                    last_error=(error or "")[:_MAX_ERROR_LENGTH] or None,
                )
            ).rowcount
            return NackOutcome.REQUEUED if requeued else NackOutcome.STALE

    def discard(self, file_id: str) -> bool:
        with self.engine.begin() as conn:
            return conn.execute(
                delete(self.table).where(self.table.c.file_id == file_id)
            ).rowcount > 0

    def recover_stale(
            self, claimed_before: datetime, max_attempts: int,
            now: datetime) -> int:
        t = self.table
        stale = (
            t.c.state == JobState.PROCESSING.value,
            t.c.claimed_at <= to_db_time(claimed_before),
        )
        with self.engine.begin() as conn:
            dropped = conn.execute(
                delete(t).where(*stale, t.c.attempts + 1 > max_attempts)
            ).rowcount
            requeued = conn.execute(
                update(t)
                .where(*stale)
                .values(
                    attempts=t.c.attempts + 1,
                    state=JobState.QUEUED.value,
                    eligible_at=to_db_time(now),
                    claimed_at=None,
                    last_error="worker lost the job",
                )
            ).rowcount

        if dropped:
            logger.error(f"Dropped {dropped} stale thumbnail job(s) past the retry limit")
        return dropped + requeued

    def pending_count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count()).select_from(self.table)
            ).scalar_one()
