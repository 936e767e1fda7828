"""
Operator-facing service.

Every method takes and returns plain values (ids, strings, dicts) so the
service can sit behind a CLI or an HTTP layer without leaking models.
"""

from typing import Any

from feedgate.core.errors import ConfigurationError
from feedgate.core.models import FeedStatus, QuarantineStatus, RunTrigger
from feedgate.core.rules import RuleEngine
from feedgate.dispatch import JobDispatcher
from feedgate.matching import CanonicalMatcher
from feedgate.notifications import LoggingNotifier, Notifier
from feedgate.observability.logger import get_logger
from feedgate.pipeline import DryRunEvaluator, FeedFetcher, RunOrchestrator
from feedgate.quarantine import QuarantineEntry, QuarantineManager
from feedgate.settings import Settings
from feedgate.storage import CatalogStore
from feedgate.utils.validation import InputValidationError, validate_actor, validate_id

logger = get_logger(__name__)


def _entry_to_dict(entry: QuarantineEntry) -> dict[str, Any]:
    data = entry.record.model_dump(mode="json")
    data["corrections"] = [correction.model_dump(mode="json") for correction in entry.corrections]
    return data


class OperatorService:
    """
    Wires the pipeline components together and exposes operator actions.

    Args:
        store: Catalog store
        dispatcher: Job dispatcher; required for queued runs and queued reprocessing
        fetcher: Feed fetcher (defaults to one using settings.fetch_timeout_seconds)
        notifier: Notification sink (defaults to LoggingNotifier)
        rule_engine: Record classifier (defaults to rules from settings.rules_path)
        matcher: Canonical matcher (defaults to one that never auto-matches)
        settings: Pipeline settings
    """

    def __init__(
        self,
        store: CatalogStore,
        dispatcher: JobDispatcher | None = None,
        fetcher: FeedFetcher | None = None,
        notifier: Notifier | None = None,
        rule_engine: RuleEngine | None = None,
        matcher: CanonicalMatcher | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or Settings()
        self.store = store
        self.dispatcher = dispatcher
        self.fetcher = fetcher or FeedFetcher(timeout=self.settings.fetch_timeout_seconds)
        self.notifier = notifier or LoggingNotifier()
        self.rule_engine = rule_engine or RuleEngine.from_settings(self.settings)
        self.matcher = matcher or CanonicalMatcher(store)

        self.quarantine = QuarantineManager(
            store, rule_engine=self.rule_engine, matcher=self.matcher, settings=self.settings
        )
        self.orchestrator = RunOrchestrator(
            store,
            self.fetcher,
            self.notifier,
            quarantine_manager=self.quarantine,
            rule_engine=self.rule_engine,
            matcher=self.matcher,
            settings=self.settings,
        )
        self.dry_runs = DryRunEvaluator(store, self.fetcher, rule_engine=self.rule_engine, settings=self.settings)

    def _require_dispatcher(self) -> JobDispatcher:
        if self.dispatcher is None:
            raise ConfigurationError("No job dispatcher configured (set REDIS_URL)")
        return self.dispatcher

    # Quarantine

    def list_quarantine(
        self,
        status: str | None = None,
        search: str | None = None,
        feed_id: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        result = self.quarantine.list_records(
            status=QuarantineStatus(status) if status else None,
            search=search,
            feed_id=feed_id,
            page=page,
            limit=limit,
        )
        return {
            "records": [_entry_to_dict(entry) for entry in result.entries],
            "pagination": {
                "page": result.page,
                "limit": result.limit,
                "total": result.total,
                "total_pages": result.total_pages,
            },
            "status_counts": result.status_counts,
        }

    def get_quarantine_record(self, record_id: str) -> dict[str, Any]:
        return _entry_to_dict(self.quarantine.get_record(record_id))

    def update_quarantine_status(self, record_id: str, status: str, actor: str) -> dict[str, Any]:
        """
        Patch a record's status.

        Raises:
            InputValidationError: If status is not a known quarantine status
            InvalidTransitionError: If the record is already RESOLVED or DISMISSED
        """
        try:
            target = QuarantineStatus(status)
        except ValueError as e:
            raise InputValidationError(f"Unknown quarantine status: {status}") from e
        return self.quarantine.update_status(record_id, target, actor).model_dump(mode="json")

    def create_correction(self, record_id: str, field: str, new_value: Any, actor: str) -> dict[str, Any]:
        return self.quarantine.ledger.create_correction(record_id, field, new_value, actor).model_dump(mode="json")

    def delete_correction(self, correction_id: str, actor: str) -> dict[str, Any]:
        actor = validate_actor(actor)
        return self.quarantine.ledger.delete_correction(correction_id, actor).model_dump(mode="json")

    def reprocess(self, record_ids: list[str], actor: str) -> dict[str, Any]:
        """Reprocess records now, one at a time."""
        return self.quarantine.reprocess_records(record_ids, actor).to_dict()

    def enqueue_reprocess(self, record_ids: list[str], actor: str) -> dict[str, Any]:
        """Queue reprocess jobs; records already queued are skipped."""
        result = self.quarantine.enqueue_batch_reprocess(record_ids, actor, self._require_dispatcher())
        return {
            "batch_id": result.batch_id,
            "enqueued_count": result.enqueued_count,
            "skipped_job_ids": result.skipped_job_ids,
        }

    # Dry runs

    def trigger_dry_run(self, feed_id: str, actor: str) -> dict[str, Any]:
        actor = validate_actor(actor)
        return self.dry_runs.run(validate_id(feed_id, "feed_id"), triggered_by=actor).model_dump(mode="json")

    def get_dry_run(self, test_run_id: str) -> dict[str, Any]:
        return self.dry_runs.get_result(validate_id(test_run_id, "test_run_id")).model_dump(mode="json")

    def list_dry_runs(self, feed_id: str) -> list[dict[str, Any]]:
        return [result.model_dump(mode="json") for result in self.dry_runs.list_results(validate_id(feed_id, "feed_id"))]

    # Feed runs

    def trigger_feed_run(self, feed_id: str, actor: str, wait: bool = False) -> dict[str, Any]:
        """
        Start a manual run.

        With a dispatcher and wait=False the run is queued, unless a run for
        the feed is already waiting or active. Otherwise it executes inline.
        """
        actor = validate_actor(actor)
        feed_id = validate_id(feed_id, "feed_id")
        logger.info(f"Manual run requested for {feed_id}", extra={"feed_id": feed_id, "actor": actor})

        if self.dispatcher is not None and not wait:
            return self.orchestrator.enqueue_run(feed_id, self.dispatcher, RunTrigger.MANUAL)

        run = self.orchestrator.run_feed(feed_id, RunTrigger.MANUAL)
        return run.model_dump(mode="json", exclude={"staged_upserts", "staged_expiries"})

    def list_runs(self, feed_id: str, limit: int = 20) -> list[dict[str, Any]]:
        return [
            run.model_dump(mode="json", exclude={"staged_upserts", "staged_expiries"})
            for run in self.store.list_runs(validate_id(feed_id, "feed_id"), limit=limit)
        ]

    def approve_run(self, run_id: str, actor: str) -> dict[str, Any]:
        actor = validate_actor(actor)
        run = self.orchestrator.approve_blocked_run(validate_id(run_id, "run_id"), actor)
        return run.model_dump(mode="json", exclude={"staged_upserts", "staged_expiries"})

    def discard_run(self, run_id: str, actor: str) -> dict[str, Any]:
        actor = validate_actor(actor)
        run = self.orchestrator.discard_blocked_run(validate_id(run_id, "run_id"), actor)
        return run.model_dump(mode="json", exclude={"staged_upserts", "staged_expiries"})

    def reactivate_feed(self, feed_id: str, actor: str) -> dict[str, Any]:
        """Re-enable an auto-disabled feed and clear its failure streak."""
        actor = validate_actor(actor)
        feed = self.store.get_feed(validate_id(feed_id, "feed_id"))
        feed.status = FeedStatus.ACTIVE
        feed.consecutive_failures = 0
        feed.last_error = None
        self.store.save_feed(feed)
        logger.info(f"Feed {feed.id} reactivated", extra={"feed_id": feed.id, "actor": actor})
        return feed.model_dump(mode="json")

    # Canonical mapping

    def map_sku(self, sku_id: str, canonical_sku_id: str, actor: str) -> dict[str, Any]:
        actor = validate_actor(actor)
        canonical_sku_id = validate_id(canonical_sku_id, "canonical_sku_id")
        return self.matcher.map_sku(validate_id(sku_id, "sku_id"), canonical_sku_id, actor).model_dump(mode="json")

    def approve_sku(self, sku_id: str, actor: str) -> dict[str, Any]:
        actor = validate_actor(actor)
        return self.matcher.approve(validate_id(sku_id, "sku_id"), actor).model_dump(mode="json")

    def unmap_sku(self, sku_id: str, actor: str) -> dict[str, Any]:
        actor = validate_actor(actor)
        return self.matcher.unmap(validate_id(sku_id, "sku_id"), actor).model_dump(mode="json")
