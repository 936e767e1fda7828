"""
Domain models for feed ingestion.

All models use Pydantic for runtime validation and type safety.
"""

from .circuit_breaker import CircuitBreakerMetrics, CircuitBreakerReason, CircuitBreakerResult
from .feed import (
    Feed,
    FeedFormat,
    FeedHealth,
    FeedRun,
    FeedStatus,
    FeedType,
    RunStats,
    RunStatus,
    RunTrigger,
)
from .feed_correction import FeedCorrection
from .feed_record import (
    CANONICAL_FIELDS,
    FieldCoercion,
    FieldError,
    ParsedRecord,
    RecordLane,
    ValidationOutcome,
)
from .quarantine_record import QuarantinedRecord, QuarantineStatus
from .retailer_sku import IdentityType, MappingConfidence, RetailerSku
from .test_run import ErrorSample, TestRunResult, TestRunStatus

__all__ = [
    "CANONICAL_FIELDS",
    "CircuitBreakerMetrics",
    "CircuitBreakerReason",
    "CircuitBreakerResult",
    "ErrorSample",
    "Feed",
    "FeedCorrection",
    "FeedFormat",
    "FeedHealth",
    "FeedRun",
    "FeedStatus",
    "FeedType",
    "FieldCoercion",
    "FieldError",
    "IdentityType",
    "MappingConfidence",
    "ParsedRecord",
    "QuarantinedRecord",
    "QuarantineStatus",
    "RecordLane",
    "RetailerSku",
    "RunStats",
    "RunStatus",
    "RunTrigger",
    "TestRunResult",
    "TestRunStatus",
    "ValidationOutcome",
]
