"""
Dry runs: evaluate a feed sample without touching the catalog.

Only a TestRunResult is persisted. Fetch and parse failures still produce a
FAIL result carrying the error code, so operators see why a feed is unusable.
"""

import math
import time
import uuid

from feedgate.connectors import parse_feed
from feedgate.core.errors import FeedgateError
from feedgate.core.models import ErrorSample, Feed, RecordLane, TestRunResult, TestRunStatus
from feedgate.core.rules import RuleEngine
from feedgate.observability import metrics
from feedgate.observability.logger import get_logger, log_operation
from feedgate.settings import Settings
from feedgate.storage import CatalogStore

from .fetcher import FeedFetcher

logger = get_logger(__name__)


def percentage(ratio: float) -> int:
    """Round a ratio to a whole percentage, halves rounding up."""
    return int(math.floor(ratio * 100 + 0.5))


class DryRunEvaluator:
    """
    Classifies the first N records of a feed and grades the result.

    PASS when the indexable ratio is at least pass_threshold, WARN when at
    least warn_threshold, FAIL otherwise.
    """

    def __init__(
        self,
        store: CatalogStore,
        fetcher: FeedFetcher,
        rule_engine: RuleEngine | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.rule_engine = rule_engine or RuleEngine()
        self.settings = settings or Settings()

    def grade(self, ratio: float) -> TestRunStatus:
        if ratio >= self.settings.pass_threshold:
            return TestRunStatus.PASS
        if ratio >= self.settings.warn_threshold:
            return TestRunStatus.WARN
        return TestRunStatus.FAIL

    def evaluate_content(self, feed: Feed, content: str, triggered_by: str | None = None) -> TestRunResult:
        """
        Evaluate already-fetched content. Nothing is persisted.

        Args:
            feed: Feed the content belongs to
            content: Raw feed body
            triggered_by: Operator requesting the dry run

        Returns:
            TestRunResult for the sample
        """
        started = time.monotonic()
        try:
            _, records = parse_feed(content, feed.format_hint)
        except FeedgateError as e:
            return self._failed(feed, triggered_by, e, started)

        sample = records[: self.settings.dry_run_sample_size]
        result = TestRunResult(
            id=uuid.uuid4().hex,
            feed_id=feed.id,
            triggered_by=triggered_by,
            sample_size=len(sample),
            records_parsed=len(records),
            status=TestRunStatus.FAIL,
        )

        for record in sample:
            try:
                outcome = self.rule_engine.validate_record(record)
            except (ValueError, TypeError, KeyError) as e:
                result.would_reject += 1
                self._sample_error(
                    result, record.row_index, record.title, [{"field": None, "code": "RECORD_ERROR", "message": str(e)}]
                )
                continue

            for coercion in outcome.coercions:
                key = coercion.summary_key
                result.coercion_summary[key] = result.coercion_summary.get(key, 0) + 1

            if outcome.lane == RecordLane.INDEXABLE:
                result.would_index += 1
            elif outcome.lane == RecordLane.QUARANTINE:
                result.would_quarantine += 1
            else:
                result.would_reject += 1

            if outcome.errors:
                self._sample_error(
                    result, record.row_index, record.title, [error.model_dump() for error in outcome.errors]
                )

        ratio = result.would_index / result.sample_size if result.sample_size else 0.0
        result.status = self.grade(ratio)
        result.indexable_ratio = percentage(ratio)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    def _sample_error(self, result: TestRunResult, row_index: int, title: str | None, errors: list[dict]) -> None:
        if len(result.error_samples) < self.settings.dry_run_error_sample_limit:
            result.error_samples.append(ErrorSample(row_index=row_index, title=title, errors=errors))

    def _failed(
        self, feed: Feed, triggered_by: str | None, error: FeedgateError, started: float
    ) -> TestRunResult:
        return TestRunResult(
            id=uuid.uuid4().hex,
            feed_id=feed.id,
            triggered_by=triggered_by,
            status=TestRunStatus.FAIL,
            primary_error_code=error.code,
            error_message=error.message,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    def run(self, feed_id: str, triggered_by: str | None = None) -> TestRunResult:
        """
        Fetch a feed, evaluate its sample and persist the TestRunResult.

        Raises:
            NotFoundError: If the feed does not exist
        """
        feed = self.store.get_feed(feed_id)
        started = time.monotonic()

        with log_operation("Dry run", logger, feed_id=feed.id, triggered_by=triggered_by):
            try:
                fetched = self.fetcher.fetch(feed.url, feed_id=feed.id)
            except FeedgateError as e:
                result = self._failed(feed, triggered_by, e, started)
            else:
                result = self.evaluate_content(feed, fetched.content, triggered_by)
                result.duration_ms = int((time.monotonic() - started) * 1000)

        self.store.save_test_run(result)
        metrics.increment_counter(metrics.dry_runs_total, feed_id=feed.id, status=result.status.value)
        logger.info(
            f"Dry run {result.id} for {feed.id}: {result.status.value}",
            extra={
                "feed_id": feed.id,
                "test_run_id": result.id,
                "indexable_ratio": result.indexable_ratio,
                "primary_error_code": result.primary_error_code,
            },
        )
        return result

    def list_results(self, feed_id: str, limit: int = 10) -> list[TestRunResult]:
        """Most recent dry runs for a feed, newest first."""
        return self.store.list_test_runs(feed_id, limit=limit)

    def get_result(self, test_run_id: str) -> TestRunResult:
        return self.store.get_test_run(test_run_id)
