"""
Feed and FeedRun models.

A Feed is a retailer's configured source; a FeedRun is one discrete batch
over a fetched snapshot of it.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .circuit_breaker import CircuitBreakerMetrics


class FeedFormat(str, Enum):
    CSV = "CSV"
    XML = "XML"
    JSON = "JSON"


class FeedType(str, Enum):
    """Who supplies the feed."""

    RETAILER = "RETAILER"
    AFFILIATE = "AFFILIATE"


class FeedStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class FeedHealth(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    FAILED = "FAILED"


class RunTrigger(str, Enum):
    """Reason a run was started."""

    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"
    MANUAL_PENDING = "MANUAL_PENDING"
    ADMIN_TEST = "ADMIN_TEST"
    RETRY = "RETRY"

    @property
    def bypasses_disabled(self) -> bool:
        return self in (RunTrigger.MANUAL, RunTrigger.ADMIN_TEST)


class RunStatus(str, Enum):
    """States of the run state machine."""

    PENDING = "PENDING"
    FETCHING = "FETCHING"
    PARSING = "PARSING"
    VALIDATING = "VALIDATING"
    MATCHING = "MATCHING"
    CIRCUIT_CHECK = "CIRCUIT_CHECK"
    PROMOTING = "PROMOTING"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    DISCARDED = "DISCARDED"


class Feed(BaseModel):
    """
    A configured product feed.

    Attributes:
        id: Feed identifier
        retailer_id: Retailer whose catalog the feed populates
        name: Display name
        url: Download location
        status: ACTIVE or DISABLED
        health: Result of the last completed run
        consecutive_failures: Failed runs since the last success
        last_content_hash: sha256 of the last successfully processed content
        last_error: Message of the last failure
    """

    id: str = Field(..., min_length=1)
    retailer_id: str = Field(..., min_length=1)
    name: str = ""
    url: str = Field(..., min_length=1)
    feed_type: FeedType = FeedType.RETAILER
    format_hint: FeedFormat | None = None
    status: FeedStatus = FeedStatus.ACTIVE
    health: FeedHealth = FeedHealth.HEALTHY
    consecutive_failures: int = Field(default=0, ge=0)
    last_content_hash: str | None = None
    last_error: str | None = None
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "id": "feed_001",
                "retailer_id": "ret_001",
                "name": "Example Outdoors ShareASale",
                "url": "https://feeds.example.com/products.csv",
                "status": "ACTIVE",
                "consecutive_failures": 0,
            }
        }


class RunStats(BaseModel):
    """Counters collected over one run."""

    records_total: int = 0
    indexable: int = 0
    quarantined: int = 0
    rejected: int = 0
    upserted: int = 0
    deactivated: int = 0
    url_hash_fallback_count: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)
    coercion_summary: dict[str, int] = Field(default_factory=dict)

    @property
    def reject_ratio(self) -> float:
        return self.rejected / self.records_total if self.records_total else 0.0

    @property
    def quarantine_ratio(self) -> float:
        return self.quarantined / self.records_total if self.records_total else 0.0


class FeedRun(BaseModel):
    """
    One execution of a feed.

    Staged upserts and expiries are held on the run until promotion so that a
    blocked or failed run leaves the catalog untouched.
    """

    id: str
    feed_id: str
    retailer_id: str
    trigger: RunTrigger
    status: RunStatus = RunStatus.PENDING
    content_hash: str | None = None
    detected_format: FeedFormat | None = None
    stats: RunStats = Field(default_factory=RunStats)
    circuit_breaker_metrics: CircuitBreakerMetrics | None = None
    circuit_breaker_reason: str | None = None
    staged_upserts: list[dict[str, Any]] = Field(default_factory=list)
    staged_expiries: list[str] = Field(default_factory=list)
    error_code: str | None = None
    error_kind: str | None = None
    error_message: str | None = None
    skipped_reason: str | None = None
    resolved_by: str | None = None
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None
    duration_ms: int | None = None
