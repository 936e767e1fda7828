"""
Circuit breaker metrics and decision models.
"""

from enum import Enum

from pydantic import BaseModel, Field


class CircuitBreakerReason(str, Enum):
    """Why a circuit breaker tripped."""

    SPIKE_THRESHOLD_EXCEEDED = "SPIKE_THRESHOLD_EXCEEDED"
    DATA_QUALITY_URL_HASH_SPIKE = "DATA_QUALITY_URL_HASH_SPIKE"


class CircuitBreakerMetrics(BaseModel):
    """
    Per-run snapshot the breaker decides on.

    Attributes:
        active_count_before: Active SKUs for the retailer before promotion
        seen_success_count: Records that would be upserted this run
        would_expire_count: Active SKUs this run would deactivate
        url_hash_fallback_count: Seen records identified only by URL hash
        expiry_percentage: would_expire_count / active_count_before * 100
    """

    active_count_before: int = Field(..., ge=0)
    seen_success_count: int = Field(..., ge=0)
    would_expire_count: int = Field(..., ge=0)
    url_hash_fallback_count: int = Field(default=0, ge=0)
    expiry_percentage: float = Field(default=0.0, ge=0.0)

    @property
    def url_hash_fallback_ratio(self) -> float:
        if self.seen_success_count == 0:
            return 0.0
        return self.url_hash_fallback_count / self.seen_success_count


class CircuitBreakerResult(BaseModel):
    """Outcome of a breaker evaluation."""

    passed: bool
    reason: CircuitBreakerReason | None = None
    metrics: CircuitBreakerMetrics
