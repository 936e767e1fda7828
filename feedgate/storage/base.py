"""
Persistence contract consumed by the pipeline.

Stores own durability only; lifecycle rules (which quarantine transitions are
legal, when a run may promote) live in the managers that call them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

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


@dataclass
class StagedUpsert:
    """A RetailerSku write held back until promotion."""

    sku_hash: str
    fields: dict[str, Any]
    identity_type: IdentityType = IdentityType.SKU
    match: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sku_hash": self.sku_hash,
            "fields": self.fields,
            "identity_type": self.identity_type.value,
            "match": self.match,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StagedUpsert":
        return cls(
            sku_hash=data["sku_hash"],
            fields=data["fields"],
            identity_type=IdentityType(data.get("identity_type", IdentityType.SKU.value)),
            match=data.get("match"),
        )


@dataclass
class QuarantineFilter:
    """Filter for quarantine listings."""

    status: QuarantineStatus | None = None
    search: str | None = None
    feed_id: str | None = None


class CatalogStore(ABC):
    """Read/write contract for feeds, runs, retailer SKUs and the quarantine workflow."""

    # Feeds

    @abstractmethod
    def get_feed(self, feed_id: str) -> Feed:
        """Return a feed or raise NotFoundError."""

    @abstractmethod
    def save_feed(self, feed: Feed) -> Feed:
        """Insert or replace a feed."""

    # Runs

    @abstractmethod
    def save_run(self, run: FeedRun) -> FeedRun:
        """Insert or replace a run."""

    @abstractmethod
    def get_run(self, run_id: str) -> FeedRun:
        """Return a run or raise NotFoundError."""

    @abstractmethod
    def list_runs(self, feed_id: str, limit: int = 20) -> list[FeedRun]:
        """Most recent runs first."""

    # Retailer SKUs

    @abstractmethod
    def upsert_retailer_sku(
        self,
        retailer_id: str,
        sku_hash: str,
        fields: dict[str, Any],
        feed_id: str | None = None,
        run_id: str | None = None,
        identity_type: IdentityType = IdentityType.SKU,
    ) -> RetailerSku:
        """
        Create or update the row keyed by (retailer_id, sku_hash).

        Raw fields are overwritten and the row is reactivated; the canonical
        mapping is left alone.
        """

    @abstractmethod
    def get_retailer_sku(self, retailer_id: str, sku_hash: str) -> RetailerSku | None:
        """Return the row for (retailer_id, sku_hash), if any."""

    @abstractmethod
    def get_retailer_sku_by_id(self, sku_id: str) -> RetailerSku:
        """Return a row by id or raise NotFoundError."""

    @abstractmethod
    def save_retailer_sku(self, sku: RetailerSku) -> RetailerSku:
        """Persist mapping changes to an existing row."""

    @abstractmethod
    def count_active_skus(self, retailer_id: str) -> int:
        """Active rows for a retailer."""

    @abstractmethod
    def list_active_sku_hashes(self, retailer_id: str) -> set[str]:
        """Hashes of active rows for a retailer."""

    @abstractmethod
    def apply_promotion(
        self,
        retailer_id: str,
        feed_id: str,
        run_id: str,
        upserts: list[StagedUpsert],
        expire_hashes: list[str],
    ) -> tuple[int, int]:
        """
        Commit a run's staged upserts and expiries together.

        Returns:
            Tuple of (upserted, deactivated)

        Raises:
            PersistenceError: If the write fails; nothing is committed
        """

    # Quarantine

    @abstractmethod
    def create_quarantined_record(self, record: QuarantinedRecord) -> QuarantinedRecord:
        """
        Store a quarantined record, deduplicated on (feed_id, match_key).

        An existing QUARANTINED record is refreshed with the new snapshot; an
        existing RESOLVED or DISMISSED record is returned unchanged.
        """

    @abstractmethod
    def get_quarantined_record(self, record_id: str) -> QuarantinedRecord:
        """Return a record or raise NotFoundError."""

    @abstractmethod
    def list_quarantined_records(
        self, filters: QuarantineFilter, offset: int = 0, limit: int = 20
    ) -> tuple[list[QuarantinedRecord], int]:
        """
        Newest first.

        Returns:
            Tuple of (page of records, total matching)
        """

    @abstractmethod
    def count_quarantine_by_status(self, feed_id: str | None = None) -> dict[str, int]:
        """Record counts keyed by status name, every status present."""

    @abstractmethod
    def update_quarantine_status(
        self, record_id: str, status: QuarantineStatus, resolved_sku_id: str | None = None
    ) -> QuarantinedRecord:
        """Write a new status."""

    # Corrections

    @abstractmethod
    def create_correction(self, correction: FeedCorrection) -> FeedCorrection:
        """Append a correction."""

    @abstractmethod
    def list_corrections(self, record_id: str, limit: int | None = None) -> list[FeedCorrection]:
        """Corrections for a record, most recently created first."""

    @abstractmethod
    def delete_correction(self, correction_id: str) -> FeedCorrection:
        """Remove a correction and return it, or raise NotFoundError."""

    # Dry runs

    @abstractmethod
    def save_test_run(self, result: TestRunResult) -> TestRunResult:
        """Persist a dry-run audit record."""

    @abstractmethod
    def get_test_run(self, test_run_id: str) -> TestRunResult:
        """Return a dry-run record or raise NotFoundError."""

    @abstractmethod
    def list_test_runs(self, feed_id: str, limit: int = 10) -> list[TestRunResult]:
        """Most recent dry runs first."""
