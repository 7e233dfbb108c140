"""Thumbnail job queue and dispatcher."""

from .models import JobState, NackOutcome, ThumbnailJob
from .queue import JobQueue, SQLJobQueue
from .dispatcher import JobDispatcher

__all__ = [
    'JobState', 'NackOutcome', 'ThumbnailJob',
    'JobQueue', 'SQLJobQueue', 'JobDispatcher',
]
