"""Tests for the thumbnail job dispatcher and its SQL queue."""

from __future__ import annotations

import asyncio
import pytest
from datetime import datetime, timedelta, timezone

from sharehub.core.jobs import JobDispatcher, JobState, NackOutcome, SQLJobQueue


class Clock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def tick(self, seconds: float = 1):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def jobs(database, clock):
    return JobDispatcher(
        SQLJobQueue(database), max_attempts=2, poll_interval=0.01, clock=clock)


def enqueue_all(jobs, clock, *file_ids):
    for file_id in file_ids:
        jobs.enqueue(file_id, f"{file_id}.png", "image/png")
        clock.tick()


class TestEnqueue:
    def test_new_job_is_queued(self, jobs):
        job = jobs.enqueue("f1", "abc.png", "image/png")

        assert job.file_id == "f1"
        assert job.source_key == "abc.png"
        assert job.state == JobState.QUEUED
        assert job.attempts == 0
        assert jobs.pending_count() == 1

    @pytest.mark.asyncio
    async def test_fifo_order(self, jobs, clock):
        enqueue_all(jobs, clock, "a", "b", "c")

        claimed = [(await jobs.dequeue(timeout=0)).file_id for _ in range(3)]

        assert claimed == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_duplicate_supersedes_in_place(self, jobs, clock):
        enqueue_all(jobs, clock, "a", "b")
        first = jobs.queue.get("a")

        again = jobs.enqueue("a", "a-v2.png", "image/png")

        assert jobs.pending_count() == 2
        assert again.job_id != first.job_id
        assert again.source_key == "a-v2.png"
        # Keeps its place ahead of b
        assert (await jobs.dequeue(timeout=0)).file_id == "a"

    @pytest.mark.asyncio
    async def test_supersede_while_processing(self, jobs, clock):
        jobs.enqueue("a", "a.png")
        clock.tick()
        claimed = await jobs.dequeue(timeout=0)
        assert claimed.state == JobState.PROCESSING

        jobs.enqueue("a", "a-v2.png")

        # The old claim can no longer settle the job
        assert not jobs.ack(claimed.job_id)
        assert jobs.nack(claimed.job_id, "late") == NackOutcome.STALE
        assert jobs.pending_count() == 1

        rerun = await jobs.dequeue(timeout=0)
        assert rerun.source_key == "a-v2.png"
        assert rerun.attempts == 0


class TestSettle:
    @pytest.mark.asyncio
    async def test_ack_removes_job(self, jobs):
        jobs.enqueue("a", "a.png")
        job = await jobs.dequeue(timeout=0)

        assert jobs.ack(job.job_id)
        assert jobs.pending_count() == 0
        assert not jobs.ack(job.job_id)

    @pytest.mark.asyncio
    async def test_nack_requeues_until_ceiling(self, jobs):
        jobs.enqueue("a", "a.png")

        outcomes = []
        for _ in range(3):
            job = await jobs.dequeue(timeout=0)
            outcomes.append(jobs.nack(job.job_id, "decode failed"))

        assert outcomes == [
            NackOutcome.REQUEUED, NackOutcome.REQUEUED, NackOutcome.DROPPED]
        assert jobs.pending_count() == 0
        assert await jobs.dequeue(timeout=0) is None

    @pytest.mark.asyncio
    async def test_nack_records_error_and_attempts(self, jobs):
        jobs.enqueue("a", "a.png")
        job = await jobs.dequeue(timeout=0)

        jobs.nack(job.job_id, "boom")

        stored = jobs.queue.get("a")
        assert stored.state == JobState.QUEUED
        assert stored.attempts == 1
        assert stored.last_error == "boom"

    @pytest.mark.asyncio
    async def test_zero_attempts_drops_on_first_failure(self, database):
        jobs = JobDispatcher(SQLJobQueue(database), max_attempts=0)
        jobs.enqueue("a", "a.png")
        job = await jobs.dequeue(timeout=0)

        assert jobs.nack(job.job_id, "boom") == NackOutcome.DROPPED

    def test_negative_ceiling_rejected(self, database):
        with pytest.raises(ValueError):
            JobDispatcher(SQLJobQueue(database), max_attempts=-1)

    def test_discard(self, jobs):
        jobs.enqueue("a", "a.png")

        assert jobs.discard("a")
        assert not jobs.discard("a")
        assert jobs.pending_count() == 0


class TestDequeue:
    @pytest.mark.asyncio
    async def test_timeout_returns_none(self, jobs):
        assert await jobs.dequeue(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_waits_for_new_job(self, jobs):
        waiter = asyncio.create_task(jobs.dequeue(timeout=5))
        await asyncio.sleep(0.03)
        jobs.enqueue("a", "a.png")

        job = await waiter
        assert job.file_id == "a"


class TestRecovery:
    @pytest.mark.asyncio
    async def test_stale_claim_requeued(self, jobs, clock):
        jobs.enqueue("a", "a.png")
        await jobs.dequeue(timeout=0)

        assert jobs.recover_stale(timedelta(minutes=5)) == 0

        clock.tick(600)
        assert jobs.recover_stale(300) == 1

        job = jobs.queue.get("a")
        assert job.state == JobState.QUEUED
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_stale_claim_past_ceiling_dropped(self, jobs, clock):
        jobs.enqueue("a", "a.png")
        for _ in range(2):
            job = await jobs.dequeue(timeout=0)
            jobs.nack(job.job_id, "boom")
        await jobs.dequeue(timeout=0)

        clock.tick(600)
        assert jobs.recover_stale(300) == 1
        assert jobs.pending_count() == 0
