"""
Error taxonomy for feed runs.

Record-level validation problems are never raised; they travel as FieldError
entries on a ValidationOutcome. Everything here is run-level or operator-level.
"""

from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    """How a failure should be treated by retry and auto-disable logic."""

    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"
    CONFIG = "CONFIG"


class FeedgateError(Exception):
    """Base class for all feedgate errors."""

    code = "FEEDGATE_ERROR"
    kind = FailureKind.PERMANENT

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind == FailureKind.TRANSIENT

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "kind": self.kind.value, "message": self.message}


class FetchError(FeedgateError):
    """
    Raised when a feed cannot be downloaded.

    Timeouts, connection failures and 5xx/429 responses are transient;
    other non-success statuses are permanent.
    """

    code = "FETCH_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        timed_out: bool = False,
        kind: FailureKind | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out
        if timed_out:
            self.code = "TIMEOUT_ERROR"
        if kind is not None:
            self.kind = kind
        elif timed_out or status_code is None or status_code >= 500 or status_code == 429:
            self.kind = FailureKind.TRANSIENT
        else:
            self.kind = FailureKind.PERMANENT

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class ParseError(FeedgateError):
    """Raised when feed content is unrecognized or malformed. Fatal for the run."""

    code = "PARSE_ERROR"


class PersistenceError(FeedgateError):
    """Raised when the catalog store rejects a write."""

    code = "PERSISTENCE_ERROR"
    kind = FailureKind.TRANSIENT


class ConfigurationError(FeedgateError):
    """Raised for invalid feed or pipeline configuration."""

    code = "CONFIG_ERROR"
    kind = FailureKind.CONFIG


class CircuitBreakerBlocked(FeedgateError):
    """
    Deliberate halt: the run looked like it would corrupt the catalog.

    Not a failure. Carries the trip reason and the metrics that caused it.
    """

    code = "CIRCUIT_BREAKER_BLOCKED"

    def __init__(self, reason: str, metrics: dict[str, Any]):
        super().__init__(f"Circuit breaker tripped: {reason}")
        self.reason = reason
        self.metrics = metrics


class DuplicateJobError(FeedgateError):
    """Raised by dispatchers when a job id is already queued or running."""

    code = "DUPLICATE_JOB"

    def __init__(self, job_id: str):
        super().__init__(f"Job already exists: {job_id}")
        self.job_id = job_id


class NotFoundError(FeedgateError):
    """Raised when a feed, run, record or correction does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(FeedgateError):
    """Raised when a state machine is asked for a transition it does not allow."""

    code = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_state: str, to_state: str):
        super().__init__(f"{entity} cannot transition from {from_state} to {to_state}")
        self.from_state = from_state
        self.to_state = to_state
