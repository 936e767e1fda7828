"""
Run-level circuit breaker.

Evaluated once per run before promotion. Both thresholds are strict: an
expiry percentage of exactly 20 does not trip.
"""

from feedgate.core.models import CircuitBreakerMetrics, CircuitBreakerReason, CircuitBreakerResult
from feedgate.observability.logger import get_logger
from feedgate.storage import CatalogStore

logger = get_logger(__name__)


def build_metrics(
    active_count_before: int,
    seen_success_count: int,
    would_expire_count: int | None = None,
    url_hash_fallback_count: int = 0,
) -> CircuitBreakerMetrics:
    """
    Assemble breaker metrics.

    When would_expire_count is not known exactly it is estimated as
    active_count_before - seen_success_count, clamped at zero.
    """
    if would_expire_count is None:
        would_expire_count = active_count_before - seen_success_count
        if would_expire_count < 0:
            logger.warning(
                "Seen count exceeds active count, clamping expiry estimate to zero",
                extra={"active_count_before": active_count_before, "seen_success_count": seen_success_count},
            )
            would_expire_count = 0

    expiry_percentage = (
        would_expire_count * 100 / active_count_before if active_count_before > 0 else 0.0
    )
    return CircuitBreakerMetrics(
        active_count_before=active_count_before,
        seen_success_count=seen_success_count,
        would_expire_count=would_expire_count,
        url_hash_fallback_count=url_hash_fallback_count,
        expiry_percentage=expiry_percentage,
    )


class CircuitBreaker:
    """
    Decides whether a run may promote.

    Trips with SPIKE_THRESHOLD_EXCEEDED when expiry_percentage is above
    expiry_threshold_percent, or DATA_QUALITY_URL_HASH_SPIKE when more than
    url_hash_threshold_ratio of the seen records only have a URL-hash identity.
    """

    def __init__(self, expiry_threshold_percent: float = 20.0, url_hash_threshold_ratio: float = 0.5):
        self.expiry_threshold_percent = expiry_threshold_percent
        self.url_hash_threshold_ratio = url_hash_threshold_ratio

    def evaluate(self, metrics: CircuitBreakerMetrics) -> CircuitBreakerResult:
        if metrics.expiry_percentage > self.expiry_threshold_percent:
            return CircuitBreakerResult(
                passed=False, reason=CircuitBreakerReason.SPIKE_THRESHOLD_EXCEEDED, metrics=metrics
            )

        if metrics.seen_success_count > 0 and metrics.url_hash_fallback_ratio > self.url_hash_threshold_ratio:
            return CircuitBreakerResult(
                passed=False, reason=CircuitBreakerReason.DATA_QUALITY_URL_HASH_SPIKE, metrics=metrics
            )

        return CircuitBreakerResult(passed=True, metrics=metrics)

    def check(
        self,
        store: CatalogStore,
        retailer_id: str,
        seen_hashes: set[str],
        url_hash_fallback_count: int,
    ) -> tuple[CircuitBreakerResult, list[str]]:
        """
        Read the retailer's active SKUs and evaluate the run against them.

        The read is not isolated from concurrent writers; runs for one feed
        are serialized by the dispatcher.

        Returns:
            Tuple of (result, hashes the run would deactivate)
        """
        active_hashes = store.list_active_sku_hashes(retailer_id)
        expiring = sorted(active_hashes - seen_hashes)
        metrics = build_metrics(
            active_count_before=len(active_hashes),
            seen_success_count=len(seen_hashes),
            would_expire_count=len(expiring),
            url_hash_fallback_count=url_hash_fallback_count,
        )
        result = self.evaluate(metrics)
        logger.info(
            "Circuit breaker evaluated",
            extra={
                "retailer_id": retailer_id,
                "passed": result.passed,
                "reason": result.reason.value if result.reason else None,
                **metrics.model_dump(),
            },
        )
        return result, expiring
