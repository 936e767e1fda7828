"""
In-memory CatalogStore.

Used by tests, dry-run tooling and local experiments. Objects are copied on
the way in and out so callers never share state with the store.
"""

import itertools
import uuid
from datetime import datetime
from typing import Any

from feedgate.core.errors import NotFoundError
from feedgate.core.models import (
    Feed,
    FeedCorrection,
    FeedRun,
    IdentityType,
    QuarantinedRecord,
    QuarantineStatus,
    RetailerSku,
    TestRunResult,
)

from .base import CatalogStore, QuarantineFilter, StagedUpsert


def _matches_search(record: QuarantinedRecord, search: str | None) -> bool:
    if not search:
        return True
    needle = search.lower()
    return needle in record.match_key.lower() or needle in record.title.lower()


class InMemoryCatalogStore(CatalogStore):
    """Dictionary-backed store with the same semantics as PostgresCatalogStore."""

    def __init__(self) -> None:
        self.feeds: dict[str, Feed] = {}
        self.runs: dict[str, FeedRun] = {}
        self.skus: dict[tuple[str, str], RetailerSku] = {}
        self.quarantine: dict[str, QuarantinedRecord] = {}
        self.corrections: dict[str, tuple[int, FeedCorrection]] = {}
        self.test_runs: dict[str, TestRunResult] = {}
        self._sequence = itertools.count(1)

    # Feeds

    def get_feed(self, feed_id: str) -> Feed:
        if feed_id not in self.feeds:
            raise NotFoundError("Feed", feed_id)
        return self.feeds[feed_id].model_copy(deep=True)

    def save_feed(self, feed: Feed) -> Feed:
        self.feeds[feed.id] = feed.model_copy(deep=True)
        return feed

    # Runs

    def save_run(self, run: FeedRun) -> FeedRun:
        self.runs[run.id] = run.model_copy(deep=True)
        return run

    def get_run(self, run_id: str) -> FeedRun:
        if run_id not in self.runs:
            raise NotFoundError("FeedRun", run_id)
        return self.runs[run_id].model_copy(deep=True)

    def list_runs(self, feed_id: str, limit: int = 20) -> list[FeedRun]:
        runs = [run for run in self.runs.values() if run.feed_id == feed_id]
        runs.sort(key=lambda run: run.started_at, reverse=True)
        return [run.model_copy(deep=True) for run in runs[:limit]]

    # Retailer SKUs

    def upsert_retailer_sku(
        self,
        retailer_id: str,
        sku_hash: str,
        fields: dict[str, Any],
        feed_id: str | None = None,
        run_id: str | None = None,
        identity_type: IdentityType = IdentityType.SKU,
    ) -> RetailerSku:
        key = (retailer_id, sku_hash)
        raw_fields = RetailerSku.fields_from_record(fields)
        existing = self.skus.get(key)

        if existing is None:
            sku = RetailerSku(
                id=uuid.uuid4().hex,
                retailer_id=retailer_id,
                retailer_sku_hash=sku_hash,
                feed_id=feed_id,
                last_seen_run_id=run_id,
                identity_type=identity_type,
                **raw_fields,
            )
        else:
            sku = existing.model_copy(
                update={
                    **raw_fields,
                    "is_active": True,
                    "feed_id": feed_id or existing.feed_id,
                    "last_seen_run_id": run_id or existing.last_seen_run_id,
                    "identity_type": identity_type,
                    "updated_at": datetime.utcnow(),
                }
            )

        self.skus[key] = sku
        return sku.model_copy(deep=True)

    def get_retailer_sku(self, retailer_id: str, sku_hash: str) -> RetailerSku | None:
        sku = self.skus.get((retailer_id, sku_hash))
        return sku.model_copy(deep=True) if sku else None

    def get_retailer_sku_by_id(self, sku_id: str) -> RetailerSku:
        for sku in self.skus.values():
            if sku.id == sku_id:
                return sku.model_copy(deep=True)
        raise NotFoundError("RetailerSku", sku_id)

    def save_retailer_sku(self, sku: RetailerSku) -> RetailerSku:
        key = (sku.retailer_id, sku.retailer_sku_hash)
        if key not in self.skus:
            raise NotFoundError("RetailerSku", sku.id or sku.retailer_sku_hash)
        self.skus[key] = sku.model_copy(update={"updated_at": datetime.utcnow()}, deep=True)
        return self.skus[key].model_copy(deep=True)

    def count_active_skus(self, retailer_id: str) -> int:
        return sum(1 for sku in self.skus.values() if sku.retailer_id == retailer_id and sku.is_active)

    def list_active_sku_hashes(self, retailer_id: str) -> set[str]:
        return {
            sku.retailer_sku_hash
            for sku in self.skus.values()
            if sku.retailer_id == retailer_id and sku.is_active
        }

    def apply_promotion(
        self,
        retailer_id: str,
        feed_id: str,
        run_id: str,
        upserts: list[StagedUpsert],
        expire_hashes: list[str],
    ) -> tuple[int, int]:
        for staged in upserts:
            self.upsert_retailer_sku(
                retailer_id,
                staged.sku_hash,
                staged.fields,
                feed_id=feed_id,
                run_id=run_id,
                identity_type=staged.identity_type,
            )

        deactivated = 0
        for sku_hash in expire_hashes:
            sku = self.skus.get((retailer_id, sku_hash))
            if sku is not None and sku.is_active:
                self.skus[(retailer_id, sku_hash)] = sku.model_copy(
                    update={"is_active": False, "updated_at": datetime.utcnow()}
                )
                deactivated += 1

        return len(upserts), deactivated

    # Quarantine

    def create_quarantined_record(self, record: QuarantinedRecord) -> QuarantinedRecord:
        for existing in self.quarantine.values():
            if existing.feed_id == record.feed_id and existing.match_key == record.match_key:
                if existing.status.is_terminal:
                    return existing.model_copy(deep=True)
                refreshed = existing.model_copy(
                    update={
                        "parsed_fields": record.parsed_fields,
                        "raw_data": record.raw_data,
                        "errors": record.errors,
                        "run_id": record.run_id,
                        "updated_at": datetime.utcnow(),
                    },
                    deep=True,
                )
                self.quarantine[existing.id] = refreshed
                return refreshed.model_copy(deep=True)

        self.quarantine[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    def get_quarantined_record(self, record_id: str) -> QuarantinedRecord:
        if record_id not in self.quarantine:
            raise NotFoundError("QuarantinedRecord", record_id)
        return self.quarantine[record_id].model_copy(deep=True)

    def list_quarantined_records(
        self, filters: QuarantineFilter, offset: int = 0, limit: int = 20
    ) -> tuple[list[QuarantinedRecord], int]:
        matching = [
            record
            for record in self.quarantine.values()
            if (filters.status is None or record.status == filters.status)
            and (filters.feed_id is None or record.feed_id == filters.feed_id)
            and _matches_search(record, filters.search)
        ]
        matching.sort(key=lambda record: record.created_at, reverse=True)
        page = matching[offset:offset + limit]
        return [record.model_copy(deep=True) for record in page], len(matching)

    def count_quarantine_by_status(self, feed_id: str | None = None) -> dict[str, int]:
        counts = {status.value: 0 for status in QuarantineStatus}
        for record in self.quarantine.values():
            if feed_id is None or record.feed_id == feed_id:
                counts[record.status.value] += 1
        return counts

    def update_quarantine_status(
        self, record_id: str, status: QuarantineStatus, resolved_sku_id: str | None = None
    ) -> QuarantinedRecord:
        record = self.get_quarantined_record(record_id)
        updated = record.model_copy(
            update={
                "status": status,
                "resolved_sku_id": resolved_sku_id or record.resolved_sku_id,
                "updated_at": datetime.utcnow(),
            }
        )
        self.quarantine[record_id] = updated
        return updated.model_copy(deep=True)

    # Corrections

    def create_correction(self, correction: FeedCorrection) -> FeedCorrection:
        if correction.quarantined_record_id not in self.quarantine:
            raise NotFoundError("QuarantinedRecord", correction.quarantined_record_id)
        self.corrections[correction.id] = (next(self._sequence), correction.model_copy(deep=True))
        return correction

    def list_corrections(self, record_id: str, limit: int | None = None) -> list[FeedCorrection]:
        entries = [
            (correction.created_at, seq, correction)
            for seq, correction in self.corrections.values()
            if correction.quarantined_record_id == record_id
        ]
        entries.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
        corrections = [correction.model_copy(deep=True) for _, _, correction in entries]
        return corrections[:limit] if limit is not None else corrections

    def delete_correction(self, correction_id: str) -> FeedCorrection:
        if correction_id not in self.corrections:
            raise NotFoundError("FeedCorrection", correction_id)
        _, correction = self.corrections.pop(correction_id)
        return correction

    # Dry runs

    def save_test_run(self, result: TestRunResult) -> TestRunResult:
        self.test_runs[result.id] = result.model_copy(deep=True)
        return result

    def get_test_run(self, test_run_id: str) -> TestRunResult:
        if test_run_id not in self.test_runs:
            raise NotFoundError("TestRunResult", test_run_id)
        return self.test_runs[test_run_id].model_copy(deep=True)

    def list_test_runs(self, feed_id: str, limit: int = 10) -> list[TestRunResult]:
        results = [result for result in self.test_runs.values() if result.feed_id == feed_id]
        results.sort(key=lambda result: result.created_at, reverse=True)
        return [result.model_copy(deep=True) for result in results[:limit]]
