"""Thumbnail job model."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sharehub.core.files.models import as_utc


class JobState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"


class NackOutcome(str, Enum):
    """What a nack did to the job."""
    REQUEUED = "requeued"
    DROPPED = "dropped"
    STALE = "stale"  # job was superseded, discarded or already settled


@dataclass
class ThumbnailJob:
    """
    One pending thumbnail generation.

    file_id is the job's identity: there is at most one live job per
    file. job_id names this incarnation only and changes whenever the job
    is superseded, so ack/nack from a worker holding an old claim become
    no-ops.
    """

    file_id: str
    job_id: str
    source_key: str
    mime_hint: str | None = None
    attempts: int = 0
    state: JobState = JobState.QUEUED
    eligible_at: datetime | None = None
    claimed_at: datetime | None = None
    last_error: str | None = None

    def __post_init__(self):
        self.state = JobState(self.state)
        self.eligible_at = as_utc(self.eligible_at)
        self.claimed_at = as_utc(self.claimed_at)

    @staticmethod
    def new_job_id() -> str:
        return uuid.uuid4().hex

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ThumbnailJob:
        return cls(
            file_id=data['file_id'],
            job_id=data['job_id'],
            source_key=data['source_key'],
            mime_hint=data.get('mime_hint'),
            attempts=data.get('attempts') or 0,
            state=data.get('state') or JobState.QUEUED,
            eligible_at=data.get('eligible_at'),
            claimed_at=data.get('claimed_at'),
            last_error=data.get('last_error'),
        )
