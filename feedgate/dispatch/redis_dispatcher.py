"""
Redis-backed JobDispatcher.

Each queue is a Redis list of job ids. Job payloads and states live in a hash
per job, created with HSETNX so a duplicate id is detected atomically; the
per-feed open-job count is a plain counter key.
"""

import json
from typing import Any

import redis

from feedgate.core.errors import DuplicateJobError

from .base import FEED_RUN_QUEUE, JobDispatcher, JobState

KEY_PREFIX = "feedgate"


class RedisJobDispatcher(JobDispatcher):
    """Dispatcher over a redis.Redis client constructed by the caller."""

    def __init__(self, client: redis.Redis, key_prefix: str = KEY_PREFIX):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisJobDispatcher":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def _job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}"

    def _queue_key(self, queue: str) -> str:
        return f"{self.key_prefix}:q:{queue}"

    def _open_feed_key(self, feed_id: str) -> str:
        return f"{self.key_prefix}:open:{feed_id}"

    def _add_job(self, queue: str, job_id: str, payload: dict[str, Any]) -> None:
        job_key = self._job_key(job_id)
        current = self.client.hget(job_key, "state")
        if current is not None and JobState(current).is_open:
            raise DuplicateJobError(job_id)
        if current is not None:
            self.client.delete(job_key)

        if not self.client.hsetnx(job_key, "state", JobState.WAITING.value):
            raise DuplicateJobError(job_id)

        pipe = self.client.pipeline()
        pipe.hset(job_key, mapping={"queue": queue, "payload": json.dumps(payload)})
        if queue == FEED_RUN_QUEUE:
            pipe.incr(self._open_feed_key(payload["feed_id"]))
        pipe.rpush(self._queue_key(queue), job_id)
        pipe.execute()

    def has_active_job(self, feed_id: str) -> bool:
        count = self.client.get(self._open_feed_key(feed_id))
        return int(count or 0) > 0

    def set_job_state(self, job_id: str, state: JobState) -> None:
        job_key = self._job_key(job_id)
        job = self.client.hgetall(job_key)
        if not job:
            raise KeyError(f"Unknown job: {job_id}")

        previous = JobState(job["state"])
        self.client.hset(job_key, "state", state.value)

        if job.get("queue") == FEED_RUN_QUEUE and previous.is_open and not state.is_open:
            feed_id = json.loads(job["payload"])["feed_id"]
            self.client.decr(self._open_feed_key(feed_id))

    def get_job_state(self, job_id: str) -> JobState | None:
        state = self.client.hget(self._job_key(job_id), "state")
        return JobState(state) if state is not None else None

    def next_job(self, queue: str) -> dict[str, Any] | None:
        """Pop the next job id from a queue and mark it active."""
        job_id = self.client.lpop(self._queue_key(queue))
        if job_id is None:
            return None
        job = self.client.hgetall(self._job_key(job_id))
        if not job:
            return None
        self.client.hset(self._job_key(job_id), "state", JobState.ACTIVE.value)
        return {"job_id": job_id, "queue": job["queue"], **json.loads(job["payload"])}
