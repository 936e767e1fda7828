"""
In-process JobDispatcher for tests and single-process deployments.
"""

from collections import deque
from typing import Any

from feedgate.core.errors import DuplicateJobError

from .base import FEED_RUN_QUEUE, JobDispatcher, JobState


class InMemoryJobDispatcher(JobDispatcher):
    """Keeps queues and job states in dictionaries."""

    def __init__(self) -> None:
        self.queues: dict[str, deque[str]] = {}
        self.jobs: dict[str, dict[str, Any]] = {}
        self.states: dict[str, JobState] = {}

    def _add_job(self, queue: str, job_id: str, payload: dict[str, Any]) -> None:
        state = self.states.get(job_id)
        if state is not None and state.is_open:
            raise DuplicateJobError(job_id)
        self.jobs[job_id] = {"queue": queue, **payload}
        self.states[job_id] = JobState.WAITING
        self.queues.setdefault(queue, deque()).append(job_id)

    def has_active_job(self, feed_id: str) -> bool:
        return any(
            self.states[job_id].is_open
            for job_id, job in self.jobs.items()
            if job["queue"] == FEED_RUN_QUEUE and job.get("feed_id") == feed_id
        )

    def set_job_state(self, job_id: str, state: JobState) -> None:
        if job_id not in self.jobs:
            raise KeyError(f"Unknown job: {job_id}")
        self.states[job_id] = state

    def get_job_state(self, job_id: str) -> JobState | None:
        return self.states.get(job_id)

    def next_job(self, queue: str) -> dict[str, Any] | None:
        """Pop the next waiting job and mark it active."""
        pending = self.queues.get(queue)
        while pending:
            job_id = pending.popleft()
            if self.states.get(job_id) == JobState.WAITING:
                self.states[job_id] = JobState.ACTIVE
                return {"job_id": job_id, **self.jobs[job_id]}
        return None
