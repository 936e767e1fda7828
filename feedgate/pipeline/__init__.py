"""
Feed run pipeline: fetch, classify, stage, guard and promote.
"""

from .circuit_breaker import CircuitBreaker, build_metrics
from .dry_run import DryRunEvaluator
from .fetcher import FeedFetcher, FetchedFeed
from .orchestrator import VALID_TRANSITIONS, RunOrchestrator, compute_feed_health

__all__ = [
    "VALID_TRANSITIONS",
    "CircuitBreaker",
    "DryRunEvaluator",
    "FeedFetcher",
    "FetchedFeed",
    "RunOrchestrator",
    "build_metrics",
    "compute_feed_health",
]
