"""
Prometheus metrics collection for feedgate

Counters and histograms for feed runs, record routing, quarantine and the
circuit breaker. All metrics live on a private registry.
"""
import time
from contextlib import contextmanager

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# =======================
# RUN METRICS
# =======================

feed_runs_total = Counter(
    name="feedgate_feed_runs_total",
    documentation="Feed runs by final status",
    labelnames=["feed_id", "status", "trigger"],
    registry=REGISTRY,
)

run_duration_seconds = Histogram(
    name="feedgate_run_duration_seconds",
    documentation="Wall-clock time of a feed run in seconds",
    labelnames=["feed_id"],
    buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=REGISTRY,
)

fetch_duration_seconds = Histogram(
    name="feedgate_fetch_duration_seconds",
    documentation="Time spent downloading feeds in seconds",
    labelnames=["feed_id"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

fetch_failures_total = Counter(
    name="feedgate_fetch_failures_total",
    documentation="Feed download failures by error code",
    labelnames=["feed_id", "code"],
    registry=REGISTRY,
)

consecutive_failures = Gauge(
    name="feedgate_feed_consecutive_failures",
    documentation="Consecutive failed runs per feed",
    labelnames=["feed_id"],
    registry=REGISTRY,
)

# =======================
# RECORD METRICS
# =======================

records_processed_total = Counter(
    name="feedgate_records_processed_total",
    documentation="Records routed by lane",
    labelnames=["feed_id", "lane"],  # lane: indexable, quarantine, reject
    registry=REGISTRY,
)

field_coercions_total = Counter(
    name="feedgate_field_coercions_total",
    documentation="Field coercions applied during normalization",
    labelnames=["feed_id", "field_name", "coercion_type"],
    registry=REGISTRY,
)

skus_upserted_total = Counter(
    name="feedgate_skus_upserted_total",
    documentation="Retailer SKUs upserted on promotion",
    labelnames=["feed_id"],
    registry=REGISTRY,
)

skus_deactivated_total = Counter(
    name="feedgate_skus_deactivated_total",
    documentation="Retailer SKUs deactivated on promotion",
    labelnames=["feed_id"],
    registry=REGISTRY,
)

# =======================
# QUARANTINE METRICS
# =======================

quarantine_size = Gauge(
    name="feedgate_quarantine_size",
    documentation="Records currently in QUARANTINED status",
    labelnames=["feed_id"],
    registry=REGISTRY,
)

reprocess_outcomes_total = Counter(
    name="feedgate_reprocess_outcomes_total",
    documentation="Quarantine reprocess attempts by outcome",
    labelnames=["outcome"],  # outcome: resolved, failed
    registry=REGISTRY,
)

# =======================
# SAFETY METRICS
# =======================

circuit_breaker_trips_total = Counter(
    name="feedgate_circuit_breaker_trips_total",
    documentation="Circuit breaker trips by reason",
    labelnames=["feed_id", "reason"],
    registry=REGISTRY,
)

dry_runs_total = Counter(
    name="feedgate_dry_runs_total",
    documentation="Dry runs by status",
    labelnames=["feed_id", "status"],
    registry=REGISTRY,
)

notification_failures_total = Counter(
    name="feedgate_notification_failures_total",
    documentation="Notifications that raised during delivery",
    labelnames=["event"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Render the feedgate registry in the Prometheus exposition format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


@contextmanager
def track_duration(histogram: Histogram, **labels):
    """Observe the wall time of the block on a labelled histogram, failures included."""
    started = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - started)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """Increment a labelled counter; zero increments do not create the series."""
    if value:
        counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def record_run_outcome(feed_id: str, status: str, trigger: str, stats: dict[str, int]) -> None:
    """
    Record the counters for one finished run.

    Args:
        feed_id: Feed identifier
        status: Final run status
        trigger: Run trigger
        stats: Dict with indexable, quarantined, rejected, upserted, deactivated
    """
    increment_counter(feed_runs_total, feed_id=feed_id, status=status, trigger=trigger)
    increment_counter(records_processed_total, stats.get("indexable", 0), feed_id=feed_id, lane="indexable")
    increment_counter(records_processed_total, stats.get("quarantined", 0), feed_id=feed_id, lane="quarantine")
    increment_counter(records_processed_total, stats.get("rejected", 0), feed_id=feed_id, lane="reject")
    increment_counter(skus_upserted_total, stats.get("upserted", 0), feed_id=feed_id)
    increment_counter(skus_deactivated_total, stats.get("deactivated", 0), feed_id=feed_id)
