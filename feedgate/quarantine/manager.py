"""
Quarantine workflow: persist soft failures, list them, and resolve them by
reprocessing with corrections applied.

QUARANTINED -> RESOLVED and QUARANTINED -> DISMISSED are the only legal
transitions; RESOLVED and DISMISSED are terminal.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any

from feedgate.core.errors import InvalidTransitionError, NotFoundError, PersistenceError
from feedgate.core.identity import compute_match_key, hash_fields, resolve_identity_type
from feedgate.core.models import (
    Feed,
    FeedCorrection,
    ParsedRecord,
    QuarantinedRecord,
    QuarantineStatus,
    ValidationOutcome,
)
from feedgate.core.rules import RuleEngine
from feedgate.dispatch import BatchEnqueueResult, JobDispatcher, JobState
from feedgate.matching import CanonicalMatcher
from feedgate.observability import metrics
from feedgate.observability.logger import get_logger, log_operation
from feedgate.settings import Settings
from feedgate.storage import CatalogStore, QuarantineFilter
from feedgate.utils.validation import (
    validate_actor,
    validate_id,
    validate_id_list,
    validate_limit,
    validate_page,
)

from .corrections import CorrectionLedger, apply_corrections

logger = get_logger(__name__)

VALID_TRANSITIONS: dict[QuarantineStatus, set[QuarantineStatus]] = {
    QuarantineStatus.QUARANTINED: {QuarantineStatus.RESOLVED, QuarantineStatus.DISMISSED},
    QuarantineStatus.RESOLVED: set(),
    QuarantineStatus.DISMISSED: set(),
}

RECENT_CORRECTIONS = 5

# Reprocess failure reasons
NOT_FOUND = "Record not found"
WRONG_STATUS = "Record is not quarantined"
NO_PARSED_FIELDS = "No parsed fields"
MISSING_VALID_UPC = "Missing valid UPC"
MISSING_REQUIRED_FIELDS = "Missing required fields"


@dataclass
class ReprocessOutcome:
    """Result of reprocessing one quarantined record."""

    record_id: str
    success: bool
    error: str | None = None
    error_code: str | None = None
    retailer_sku_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "success": self.success,
            "error": self.error,
            "error_code": self.error_code,
            "retailer_sku_id": self.retailer_sku_id,
        }


@dataclass
class BatchReprocessResult:
    total: int
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[ReprocessOutcome] = field(default_factory=list)

    def add(self, outcome: ReprocessOutcome) -> None:
        self.results.append(outcome)
        self.processed += 1
        if outcome.success:
            self.succeeded += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [outcome.to_dict() for outcome in self.results],
        }


@dataclass
class QuarantineEntry:
    record: QuarantinedRecord
    corrections: list[FeedCorrection]


@dataclass
class QuarantinePage:
    entries: list[QuarantineEntry]
    total: int
    page: int
    limit: int
    status_counts: dict[str, int]

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0


class QuarantineManager:
    """
    Owns the quarantine lifecycle for all feeds.

    Reprocessing applies the record's corrections (latest per field), re-runs
    classification and, when the record is now indexable, upserts it into the
    catalog and marks it RESOLVED.
    """

    def __init__(
        self,
        store: CatalogStore,
        rule_engine: RuleEngine | None = None,
        matcher: CanonicalMatcher | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the manager.

        Args:
            store: Catalog store
            rule_engine: Classifier used on reprocess (defaults to standard rules)
            matcher: Applies automatic canonical matches to resolved SKUs
            settings: Pagination and batch limits
        """
        self.store = store
        self.rule_engine = rule_engine or RuleEngine()
        self.matcher = matcher
        self.settings = settings or Settings()
        self.ledger = CorrectionLedger(store)

    # Entry

    def quarantine(
        self, feed: Feed, record: ParsedRecord, outcome: ValidationOutcome, run_id: str | None = None
    ) -> QuarantinedRecord:
        """
        Persist a record that failed soft validation.

        Records are deduplicated per feed on their match key; a record that was
        already resolved or dismissed is not reopened.
        """
        quarantined = QuarantinedRecord(
            id=uuid.uuid4().hex,
            feed_id=feed.id,
            retailer_id=feed.retailer_id,
            feed_type=feed.feed_type.value,
            run_id=run_id,
            match_key=compute_match_key(record.title, record.sku),
            parsed_fields=record.canonical_fields(),
            raw_data={key: value for key, value in record.raw.items() if key is not None},
            errors=[error.model_dump() for error in outcome.errors],
        )
        return self.store.create_quarantined_record(quarantined)

    # Reads

    def list_records(
        self,
        status: QuarantineStatus | None = None,
        search: str | None = None,
        feed_id: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> QuarantinePage:
        """
        List quarantined records newest first, with recent corrections and
        per-status counts.

        Raises:
            InputValidationError: If page or limit is out of range
        """
        page = validate_page(page)
        limit = validate_limit(
            limit if limit is not None else self.settings.quarantine_page_limit_default,
            max_limit=self.settings.quarantine_page_limit_max,
        )
        search = search.strip() if search else None

        records, total = self.store.list_quarantined_records(
            QuarantineFilter(status=status, search=search or None, feed_id=feed_id),
            offset=(page - 1) * limit,
            limit=limit,
        )
        entries = [
            QuarantineEntry(record, self.store.list_corrections(record.id, limit=RECENT_CORRECTIONS))
            for record in records
        ]
        counts = self.store.count_quarantine_by_status(feed_id)

        if feed_id is not None:
            metrics.set_gauge(metrics.quarantine_size, counts[QuarantineStatus.QUARANTINED.value], feed_id=feed_id)

        return QuarantinePage(entries=entries, total=total, page=page, limit=limit, status_counts=counts)

    def get_record(self, record_id: str) -> QuarantineEntry:
        record = self.store.get_quarantined_record(validate_id(record_id, "record_id"))
        return QuarantineEntry(record, self.store.list_corrections(record.id))

    # Status changes

    def update_status(self, record_id: str, status: QuarantineStatus, actor: str) -> QuarantinedRecord:
        """
        Move a record to a new status.

        Raises:
            NotFoundError: If the record does not exist
            InvalidTransitionError: If the transition is not allowed
        """
        actor = validate_actor(actor)
        record = self.store.get_quarantined_record(validate_id(record_id, "record_id"))

        if status not in VALID_TRANSITIONS[record.status]:
            raise InvalidTransitionError("QuarantinedRecord", record.status.value, status.value)

        updated = self.store.update_quarantine_status(record.id, status)
        logger.info(
            f"Quarantined record {record.id} moved to {status.value}",
            extra={"record_id": record.id, "from_status": record.status.value, "to_status": status.value, "actor": actor},
        )
        return updated

    def dismiss(self, record_id: str, actor: str) -> QuarantinedRecord:
        return self.update_status(record_id, QuarantineStatus.DISMISSED, actor)

    # Reprocessing

    def reprocess_record(self, record_id: str, actor: str) -> ReprocessOutcome:
        """
        Re-run classification on a record with its corrections applied.

        Never raises for an expected failure; the outcome carries the reason.

        Args:
            record_id: Quarantined record id
            actor: Operator or job requesting the reprocess

        Returns:
            ReprocessOutcome with the created RetailerSku id on success
        """
        try:
            record = self.store.get_quarantined_record(record_id)
        except NotFoundError:
            return ReprocessOutcome(record_id, False, NOT_FOUND, "NOT_FOUND")

        if record.status != QuarantineStatus.QUARANTINED:
            return ReprocessOutcome(record_id, False, WRONG_STATUS, "WRONG_STATUS")

        if not record.parsed_fields:
            return self._failed(record_id, NO_PARSED_FIELDS, "NO_PARSED_FIELDS")

        corrected = apply_corrections(record.parsed_fields, self.store.list_corrections(record_id))
        outcome = self.rule_engine.classify_fields(corrected)

        if any(error.field == "upc" for error in outcome.errors):
            return self._failed(record_id, MISSING_VALID_UPC, "MISSING_VALID_UPC")
        if not outcome.is_indexable:
            return self._failed(record_id, MISSING_REQUIRED_FIELDS, "MISSING_REQUIRED_FIELDS")

        sku_hash = hash_fields(corrected)
        sku = self.store.upsert_retailer_sku(
            record.retailer_id,
            sku_hash,
            corrected,
            feed_id=record.feed_id,
            identity_type=resolve_identity_type(corrected),
        )
        if self.matcher is not None:
            self.matcher.apply_match(record.retailer_id, sku_hash, self.matcher.propose(corrected))

        self.store.update_quarantine_status(record_id, QuarantineStatus.RESOLVED, resolved_sku_id=sku.id)
        metrics.increment_counter(metrics.reprocess_outcomes_total, outcome="resolved")
        logger.info(
            f"Quarantined record {record_id} resolved",
            extra={"record_id": record_id, "retailer_sku_id": sku.id, "actor": actor},
        )
        return ReprocessOutcome(record_id, True, retailer_sku_id=sku.id)

    def _failed(self, record_id: str, reason: str, code: str) -> ReprocessOutcome:
        metrics.increment_counter(metrics.reprocess_outcomes_total, outcome="failed")
        logger.info(
            f"Quarantined record {record_id} still not indexable: {reason}",
            extra={"record_id": record_id, "reason": reason},
        )
        return ReprocessOutcome(record_id, False, reason, code)

    def reprocess_records(self, record_ids: list[str], actor: str) -> BatchReprocessResult:
        """
        Reprocess a batch sequentially, isolating each record.

        An exception while handling one record is reported as that record's
        failure and the batch continues.

        Raises:
            InputValidationError: If the id list is empty or too long
        """
        actor = validate_actor(actor)
        record_ids = validate_id_list(record_ids, self.settings.reprocess_batch_limit)
        result = BatchReprocessResult(total=len(record_ids))

        with log_operation("Batch quarantine reprocess", logger=logger, record_count=len(record_ids), actor=actor):
            for record_id in record_ids:
                try:
                    outcome = self.reprocess_record(record_id, actor)
                except Exception as e:
                    logger.error(
                        f"Reprocess of {record_id} raised",
                        extra={"record_id": record_id, "error_message": str(e)},
                        exc_info=True,
                    )
                    metrics.increment_counter(metrics.reprocess_outcomes_total, outcome="failed")
                    outcome = ReprocessOutcome(record_id, False, str(e), getattr(e, "code", "ERROR"))
                result.add(outcome)

        return result

    def enqueue_batch_reprocess(
        self, record_ids: list[str], actor: str, dispatcher: JobDispatcher
    ) -> BatchEnqueueResult:
        """
        Queue reprocess jobs for the QUARANTINED records among record_ids.

        Job ids derive from record ids, so re-enqueuing is a no-op.
        """
        actor = validate_actor(actor)
        record_ids = validate_id_list(record_ids, self.settings.reprocess_batch_limit)

        eligible = []
        for record_id in record_ids:
            try:
                record = self.store.get_quarantined_record(record_id)
            except NotFoundError:
                continue
            if record.status == QuarantineStatus.QUARANTINED:
                eligible.append({"id": record.id, "feed_type": record.feed_type})

        return dispatcher.enqueue_batch_reprocess(eligible, triggered_by=actor)

    def handle_reprocess_job(self, job: dict[str, Any], dispatcher: JobDispatcher) -> ReprocessOutcome:
        """Worker entry point for a dequeued reprocess job."""
        try:
            outcome = self.reprocess_record(job["record_id"], job.get("triggered_by") or "worker")
        except PersistenceError:
            dispatcher.set_job_state(job["job_id"], JobState.FAILED)
            raise
        dispatcher.set_job_state(job["job_id"], JobState.COMPLETED)
        return outcome
