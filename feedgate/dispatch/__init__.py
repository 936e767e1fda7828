"""
Job dispatch: enqueue feed runs and quarantine reprocess jobs.
"""

from .base import (
    FEED_RUN_QUEUE,
    REPROCESS_QUEUE,
    BatchEnqueueResult,
    JobDispatcher,
    JobState,
    feed_run_job_id,
    reprocess_job_id,
)
from .memory import InMemoryJobDispatcher

__all__ = [
    "FEED_RUN_QUEUE",
    "REPROCESS_QUEUE",
    "BatchEnqueueResult",
    "InMemoryJobDispatcher",
    "JobDispatcher",
    "JobState",
    "feed_run_job_id",
    "reprocess_job_id",
]
