"""
Job dispatch contract.

Job ids are deterministic where idempotency matters: a reprocess job for a
record is always QUARANTINE_REPROCESS_<recordId>, so re-enqueuing it is a no-op.
Checking has_active_job() and then enqueuing is not atomic; a rare duplicate
feed run is tolerated because catalog upserts are idempotent.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from feedgate.core.errors import DuplicateJobError
from feedgate.core.models import RunTrigger
from feedgate.observability.logger import get_logger

logger = get_logger(__name__)

FEED_RUN_QUEUE = "feed-ingest"
REPROCESS_QUEUE = "quarantine-reprocess"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_open(self) -> bool:
        return self in (JobState.WAITING, JobState.ACTIVE)


@dataclass
class BatchEnqueueResult:
    batch_id: str
    enqueued_count: int
    skipped_job_ids: list[str]


def feed_run_job_id(feed_id: str, now: datetime | None = None) -> str:
    stamp = int((now or datetime.utcnow()).timestamp() * 1000)
    return f"FEED_RUN_{feed_id}_{stamp}"


def reprocess_job_id(record_id: str) -> str:
    return f"QUARANTINE_REPROCESS_{record_id}"


class JobDispatcher(ABC):
    """
    Enqueues feed runs and reprocess jobs on an external runner.

    Subclasses implement _add_job(), which must raise DuplicateJobError when
    the job id already exists in an open state.
    """

    @abstractmethod
    def _add_job(self, queue: str, job_id: str, payload: dict[str, Any]) -> None:
        """Store a job in WAITING state."""

    @abstractmethod
    def has_active_job(self, feed_id: str) -> bool:
        """Whether a feed run for this feed is waiting or active."""

    @abstractmethod
    def set_job_state(self, job_id: str, state: JobState) -> None:
        """Record a job's progress (called by workers)."""

    @abstractmethod
    def get_job_state(self, job_id: str) -> JobState | None:
        """Current state of a job, or None if unknown."""

    def enqueue_feed_run(self, feed_id: str, trigger: RunTrigger) -> str:
        """
        Enqueue a run for a feed.

        Args:
            feed_id: Feed to run
            trigger: Why the run is requested

        Returns:
            The job id
        """
        job_id = feed_run_job_id(feed_id)
        payload = {"feed_id": feed_id, "trigger": trigger.value, "job_id": job_id}
        try:
            self._add_job(FEED_RUN_QUEUE, job_id, payload)
        except DuplicateJobError:
            logger.info(f"Feed run job {job_id} already queued", extra={"job_id": job_id, "feed_id": feed_id})
            return job_id

        logger.info(
            f"Enqueued feed run for {feed_id}",
            extra={"job_id": job_id, "feed_id": feed_id, "trigger": trigger.value},
        )
        return job_id

    def enqueue_batch_reprocess(self, records: list[dict[str, Any]], triggered_by: str) -> BatchEnqueueResult:
        """
        Enqueue one reprocess job per quarantined record.

        Args:
            records: Items shaped {"id": ..., "feed_type": ...}
            triggered_by: Operator requesting the batch

        Returns:
            BatchEnqueueResult; records whose job already exists are skipped
        """
        batch_id = uuid.uuid4().hex
        enqueued = 0
        skipped: list[str] = []

        for record in records:
            job_id = reprocess_job_id(record["id"])
            payload = {
                "record_id": record["id"],
                "feed_type": record.get("feed_type"),
                "batch_id": batch_id,
                "triggered_by": triggered_by,
            }
            try:
                self._add_job(REPROCESS_QUEUE, job_id, payload)
                enqueued += 1
            except DuplicateJobError:
                skipped.append(job_id)

        logger.info(
            f"Enqueued reprocess batch {batch_id}",
            extra={"batch_id": batch_id, "enqueued_count": enqueued, "skipped_count": len(skipped)},
        )
        return BatchEnqueueResult(batch_id=batch_id, enqueued_count=enqueued, skipped_job_ids=skipped)
