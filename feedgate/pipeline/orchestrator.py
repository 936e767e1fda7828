"""
Feed run orchestration.

A run moves through a fixed state machine:

    PENDING -> FETCHING -> PARSING -> VALIDATING -> MATCHING -> CIRCUIT_CHECK
            -> PROMOTING -> COMPLETED

with BLOCKED when the circuit breaker trips, FAILED on fetch, parse or
persistence errors, and SKIPPED for disabled feeds. Catalog writes are staged
on the run and committed together during PROMOTING, so a blocked or failed
run leaves active SKUs untouched.
"""

import time
import uuid
from datetime import datetime
from typing import Any

from feedgate.connectors import parse_feed
from feedgate.core.errors import CircuitBreakerBlocked, FeedgateError, InvalidTransitionError, PersistenceError
from feedgate.core.identity import hash_fields, resolve_identity_type
from feedgate.core.models import (
    Feed,
    FeedHealth,
    FeedRun,
    FeedStatus,
    IdentityType,
    ParsedRecord,
    RecordLane,
    RunStats,
    RunStatus,
    RunTrigger,
)
from feedgate.core.rules import RuleEngine
from feedgate.dispatch import JobDispatcher, JobState
from feedgate.matching import CanonicalMatcher, MatchResult
from feedgate.notifications import Notifier, deliver
from feedgate.observability import metrics
from feedgate.observability.logger import get_logger, log_operation
from feedgate.quarantine import QuarantineManager
from feedgate.settings import Settings
from feedgate.storage import CatalogStore, StagedUpsert

from .circuit_breaker import CircuitBreaker
from .fetcher import FeedFetcher

logger = get_logger(__name__)

NO_CHANGES = "no_changes"
FEED_DISABLED = "feed_disabled"

IN_FLIGHT = (
    RunStatus.FETCHING,
    RunStatus.PARSING,
    RunStatus.VALIDATING,
    RunStatus.MATCHING,
    RunStatus.CIRCUIT_CHECK,
    RunStatus.PROMOTING,
)

VALID_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.FETCHING, RunStatus.SKIPPED},
    RunStatus.FETCHING: {RunStatus.PARSING, RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.PARSING: {RunStatus.VALIDATING, RunStatus.FAILED},
    RunStatus.VALIDATING: {RunStatus.MATCHING, RunStatus.FAILED},
    RunStatus.MATCHING: {RunStatus.CIRCUIT_CHECK, RunStatus.FAILED},
    RunStatus.CIRCUIT_CHECK: {RunStatus.PROMOTING, RunStatus.BLOCKED, RunStatus.FAILED},
    RunStatus.PROMOTING: {RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.BLOCKED: {RunStatus.PROMOTING, RunStatus.DISCARDED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
    RunStatus.SKIPPED: set(),
    RunStatus.DISCARDED: set(),
}


def compute_feed_health(stats: RunStats, settings: Settings) -> FeedHealth:
    """
    Derive feed health from one run's lane ratios.

    FAILED when rejects exceed failed_reject_ratio, WARNING when quarantines
    exceed warning_quarantine_ratio or rejects exceed warning_reject_ratio.
    """
    if stats.reject_ratio > settings.failed_reject_ratio:
        return FeedHealth.FAILED
    if (
        stats.quarantine_ratio > settings.warning_quarantine_ratio
        or stats.reject_ratio > settings.warning_reject_ratio
    ):
        return FeedHealth.WARNING
    return FeedHealth.HEALTHY


class RunOrchestrator:
    """
    Runs feeds end to end and owns the per-feed failure counters.

    Usage:
        orchestrator = RunOrchestrator(store, fetcher, notifier)
        run = orchestrator.run_feed("feed_001", RunTrigger.SCHEDULED)
    """

    def __init__(
        self,
        store: CatalogStore,
        fetcher: FeedFetcher,
        notifier: Notifier,
        quarantine_manager: QuarantineManager | None = None,
        rule_engine: RuleEngine | None = None,
        matcher: CanonicalMatcher | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.notifier = notifier
        self.settings = settings or Settings()
        self.rule_engine = rule_engine or RuleEngine()
        self.matcher = matcher
        self.quarantine_manager = quarantine_manager or QuarantineManager(
            store, rule_engine=self.rule_engine, matcher=matcher, settings=self.settings
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            expiry_threshold_percent=self.settings.expiry_threshold_percent,
            url_hash_threshold_ratio=self.settings.url_hash_threshold_ratio,
        )

    # State machine

    def _transition(self, run: FeedRun, to_state: RunStatus) -> None:
        if to_state not in VALID_TRANSITIONS[run.status]:
            raise InvalidTransitionError("FeedRun", run.status.value, to_state.value)
        logger.debug(
            f"Run {run.id}: {run.status.value} -> {to_state.value}",
            extra={"run_id": run.id, "feed_id": run.feed_id},
        )
        run.status = to_state

    # Entry points

    def run_feed(self, feed_id: str, trigger: RunTrigger = RunTrigger.SCHEDULED) -> FeedRun:
        """
        Execute one run for a feed.

        Args:
            feed_id: Feed to run
            trigger: Why the run was started; only MANUAL and ADMIN_TEST run
                a DISABLED feed

        Returns:
            The finished FeedRun (COMPLETED, BLOCKED, FAILED or SKIPPED)

        Raises:
            NotFoundError: If the feed does not exist
        """
        feed = self.store.get_feed(feed_id)
        run = FeedRun(id=uuid.uuid4().hex, feed_id=feed.id, retailer_id=feed.retailer_id, trigger=trigger)
        started = time.monotonic()

        if feed.status == FeedStatus.DISABLED and not trigger.bypasses_disabled:
            self._transition(run, RunStatus.SKIPPED)
            run.skipped_reason = FEED_DISABLED
            self._finish(run, started)
            logger.info(
                f"Skipping disabled feed {feed.id}",
                extra={"feed_id": feed.id, "run_id": run.id, "trigger": trigger.value},
            )
            return run

        self.store.save_run(run)

        with log_operation("Feed run", logger, feed_id=feed.id, run_id=run.id, trigger=trigger.value):
            try:
                self._execute(feed, run)
            except CircuitBreakerBlocked as e:
                self._block(feed, run, e)
            except FeedgateError as e:
                self._fail(feed, run, e.code, e.message, e.kind.value)
            except Exception as e:
                self._fail(feed, run, "INTERNAL_ERROR", str(e), "PERMANENT")
                self._finish(run, started)
                raise

        self._finish(run, started)
        return run

    def _execute(self, feed: Feed, run: FeedRun) -> None:
        self._transition(run, RunStatus.FETCHING)
        fetched = self.fetcher.fetch(feed.url, feed_id=feed.id)
        run.content_hash = fetched.content_hash

        if (
            feed.last_content_hash == run.content_hash
            and run.trigger != RunTrigger.ADMIN_TEST
        ):
            self._transition(run, RunStatus.COMPLETED)
            run.skipped_reason = NO_CHANGES
            self._record_success(feed, run, notify_recovery=False)
            logger.info(f"Feed {feed.id} content unchanged", extra={"feed_id": feed.id, "run_id": run.id})
            return

        self._transition(run, RunStatus.PARSING)
        run.detected_format, records = parse_feed(fetched.content, feed.format_hint)

        self._transition(run, RunStatus.VALIDATING)
        indexable = self._validate(feed, run, records)

        self._transition(run, RunStatus.MATCHING)
        staged = self._stage(run, indexable)

        self._transition(run, RunStatus.CIRCUIT_CHECK)
        result, expiring = self.circuit_breaker.check(
            self.store,
            feed.retailer_id,
            set(staged),
            run.stats.url_hash_fallback_count,
        )
        run.circuit_breaker_metrics = result.metrics
        run.staged_upserts = [upsert.to_dict() for upsert in staged.values()]
        run.staged_expiries = expiring

        if not result.passed:
            raise CircuitBreakerBlocked(result.reason.value, result.metrics.model_dump())

        self._promote(feed, run)
        self._record_success(feed, run)

    # Stages

    def _validate(self, feed: Feed, run: FeedRun, records: list[ParsedRecord]) -> list[ParsedRecord]:
        stats = run.stats
        stats.records_total = len(records)
        indexable: list[ParsedRecord] = []

        for record in records:
            try:
                outcome = self.rule_engine.validate_record(record)
                for coercion in outcome.coercions:
                    key = coercion.summary_key
                    stats.coercion_summary[key] = stats.coercion_summary.get(key, 0) + 1
                    metrics.increment_counter(
                        metrics.field_coercions_total,
                        feed_id=feed.id,
                        field_name=coercion.field,
                        coercion_type=coercion.coercion_type,
                    )

                if outcome.lane == RecordLane.INDEXABLE:
                    indexable.append(record)
                    stats.indexable += 1
                    continue

                if outcome.lane == RecordLane.QUARANTINE:
                    self.quarantine_manager.quarantine(feed, record, outcome, run.id)
                    stats.quarantined += 1
                else:
                    stats.rejected += 1
                self._add_error(run, record.row_index + 1, record.title, ", ".join(outcome.error_codes))
            except (ValueError, TypeError, KeyError) as e:
                stats.rejected += 1
                self._add_error(run, record.row_index + 1, record.title, str(e))

        logger.info(
            f"Validated {stats.records_total} records",
            extra={
                "feed_id": feed.id,
                "run_id": run.id,
                "indexable": stats.indexable,
                "quarantined": stats.quarantined,
                "rejected": stats.rejected,
            },
        )
        return indexable

    def _add_error(self, run: FeedRun, row: int, title: str | None, message: str) -> None:
        if len(run.stats.errors) < self.settings.run_error_sample_limit:
            run.stats.errors.append({"row": row, "title": title, "message": message})

    def _stage(self, run: FeedRun, records: list[ParsedRecord]) -> dict[str, StagedUpsert]:
        staged: dict[str, StagedUpsert] = {}
        for record in records:
            fields = record.canonical_fields()
            sku_hash = hash_fields(fields)
            match = self.matcher.propose(fields).to_dict() if self.matcher else None
            # last duplicate in the feed wins
            staged[sku_hash] = StagedUpsert(
                sku_hash=sku_hash,
                fields=fields,
                identity_type=resolve_identity_type(fields),
                match=match,
            )

        run.stats.url_hash_fallback_count = sum(
            1 for upsert in staged.values() if upsert.identity_type == IdentityType.URL_HASH
        )
        return staged

    def _promote(self, feed: Feed, run: FeedRun) -> None:
        self._transition(run, RunStatus.PROMOTING)
        upserts = [StagedUpsert.from_dict(item) for item in run.staged_upserts]
        upserted, deactivated = self.store.apply_promotion(
            feed.retailer_id, feed.id, run.id, upserts, run.staged_expiries
        )
        run.stats.upserted = upserted
        run.stats.deactivated = deactivated

        if self.matcher:
            for upsert in upserts:
                if upsert.match:
                    self.matcher.apply_match(feed.retailer_id, upsert.sku_hash, MatchResult.from_dict(upsert.match))

        run.staged_upserts = []
        run.staged_expiries = []
        self._transition(run, RunStatus.COMPLETED)
        feed.last_content_hash = run.content_hash
        feed.health = compute_feed_health(run.stats, self.settings)

    def _block(self, feed: Feed, run: FeedRun, blocked: CircuitBreakerBlocked) -> None:
        self._transition(run, RunStatus.BLOCKED)
        run.circuit_breaker_reason = blocked.reason
        self.store.save_run(run)
        metrics.increment_counter(metrics.circuit_breaker_trips_total, feed_id=feed.id, reason=blocked.reason)
        logger.warning(
            f"Circuit breaker blocked run {run.id}",
            extra={"feed_id": feed.id, "run_id": run.id, "reason": blocked.reason},
        )
        self._record_success(feed, run)
        deliver(self.notifier, "circuit_breaker_triggered", feed, blocked.reason, blocked.metrics)

    # Feed bookkeeping

    def _record_success(self, feed: Feed, run: FeedRun, notify_recovery: bool = True) -> None:
        previous_failures = feed.consecutive_failures
        now = datetime.utcnow()
        feed.consecutive_failures = 0
        feed.last_error = None
        feed.last_run_at = now
        feed.last_success_at = now
        self.store.save_feed(feed)
        metrics.set_gauge(metrics.consecutive_failures, 0, feed_id=feed.id)

        if previous_failures > 0 and notify_recovery:
            logger.info(
                f"Feed {feed.id} recovered after {previous_failures} failures",
                extra={"feed_id": feed.id, "previous_failures": previous_failures},
            )
            deliver(self.notifier, "feed_recovered", feed, run.stats.model_dump(exclude={"errors"}))

    def _fail(self, feed: Feed, run: FeedRun, code: str, message: str, kind: str) -> None:
        if run.status in IN_FLIGHT:
            self._transition(run, RunStatus.FAILED)
        else:
            run.status = RunStatus.FAILED
        run.error_code = code
        run.error_kind = kind
        run.error_message = message
        run.staged_upserts = []
        run.staged_expiries = []

        feed.consecutive_failures += 1
        feed.last_error = message
        feed.last_run_at = datetime.utcnow()
        metrics.set_gauge(metrics.consecutive_failures, feed.consecutive_failures, feed_id=feed.id)
        logger.error(
            f"Run {run.id} failed: {message}",
            extra={
                "feed_id": feed.id,
                "run_id": run.id,
                "error_code": code,
                "consecutive_failures": feed.consecutive_failures,
            },
        )
        auto_disabled = (
            feed.status == FeedStatus.ACTIVE
            and feed.consecutive_failures >= self.settings.max_consecutive_failures
        )
        if auto_disabled:
            feed.status = FeedStatus.DISABLED
            logger.warning(
                f"Auto-disabling feed {feed.id}",
                extra={"feed_id": feed.id, "consecutive_failures": feed.consecutive_failures},
            )
        self.store.save_feed(feed)
        self.store.save_run(run)

        deliver(self.notifier, "run_failed", feed, message, feed.consecutive_failures)
        if auto_disabled:
            deliver(self.notifier, "feed_auto_disabled", feed, feed.consecutive_failures, message)

    def _finish(self, run: FeedRun, started: float) -> None:
        run.finished_at = datetime.utcnow()
        run.duration_ms = int((time.monotonic() - started) * 1000)
        self.store.save_run(run)
        metrics.observe_histogram(metrics.run_duration_seconds, run.duration_ms / 1000, feed_id=run.feed_id)
        metrics.record_run_outcome(
            run.feed_id, run.status.value, run.trigger.value, run.stats.model_dump(exclude={"errors", "coercion_summary"})
        )

    # Blocked runs

    def approve_blocked_run(self, run_id: str, actor: str) -> FeedRun:
        """
        Promote a BLOCKED run's staged changes.

        The expiry set was computed when the run was blocked; SKUs that became
        active since then are not expired.

        Raises:
            InvalidTransitionError: If the run is not BLOCKED
            PersistenceError: If promotion fails; the run stays BLOCKED
        """
        run = self.store.get_run(run_id)
        if run.status != RunStatus.BLOCKED:
            raise InvalidTransitionError("FeedRun", run.status.value, RunStatus.PROMOTING.value)
        feed = self.store.get_feed(run.feed_id)

        with log_operation("Approve blocked run", logger, run_id=run.id, feed_id=feed.id, actor=actor):
            try:
                self._promote(feed, run)
            except PersistenceError:
                run.status = RunStatus.BLOCKED
                raise
            run.resolved_by = actor
            self.store.save_run(run)
            self.store.save_feed(feed)

        metrics.record_run_outcome(
            run.feed_id,
            run.status.value,
            run.trigger.value,
            {"upserted": run.stats.upserted, "deactivated": run.stats.deactivated},
        )
        return run

    def discard_blocked_run(self, run_id: str, actor: str) -> FeedRun:
        """Drop a BLOCKED run's staged changes without touching the catalog."""
        run = self.store.get_run(run_id)
        self._transition(run, RunStatus.DISCARDED)
        run.staged_upserts = []
        run.staged_expiries = []
        run.resolved_by = actor
        self.store.save_run(run)
        logger.info(f"Discarded blocked run {run.id}", extra={"run_id": run.id, "actor": actor})
        return run

    # Dispatch

    def enqueue_run(
        self, feed_id: str, dispatcher: JobDispatcher, trigger: RunTrigger = RunTrigger.MANUAL
    ) -> dict[str, Any]:
        """
        Queue a run unless one is already waiting or active for the feed.

        Returns:
            {"enqueued": bool, "job_id": str | None}
        """
        feed = self.store.get_feed(feed_id)
        if dispatcher.has_active_job(feed.id):
            logger.info(f"Run already queued for {feed.id}", extra={"feed_id": feed.id})
            return {"enqueued": False, "job_id": None}
        return {"enqueued": True, "job_id": dispatcher.enqueue_feed_run(feed.id, trigger)}

    def handle_feed_run_job(self, job: dict[str, Any], dispatcher: JobDispatcher) -> FeedRun:
        """
        Worker entry point for a dequeued feed-run job.

        A run that fails with a transient error is retried once with the
        RETRY trigger while the feed is still active.
        """
        trigger = RunTrigger(job.get("trigger", RunTrigger.SCHEDULED.value))
        try:
            run = self.run_feed(job["feed_id"], trigger)
        except Exception:
            dispatcher.set_job_state(job["job_id"], JobState.FAILED)
            raise

        if run.status == RunStatus.FAILED:
            dispatcher.set_job_state(job["job_id"], JobState.FAILED)
            feed = self.store.get_feed(run.feed_id)
            if (
                run.error_kind == "TRANSIENT"
                and trigger != RunTrigger.RETRY
                and feed.status == FeedStatus.ACTIVE
            ):
                dispatcher.enqueue_feed_run(feed.id, RunTrigger.RETRY)
        else:
            dispatcher.set_job_state(job["job_id"], JobState.COMPLETED)
        return run
