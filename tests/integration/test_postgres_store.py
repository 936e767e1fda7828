"""
Integration tests for PostgresCatalogStore.

Runs against a PostgreSQL container via testcontainers; mirrors the
in-memory store's behavior for the operations the pipeline relies on.
"""

from datetime import datetime, timedelta

import pytest

from feedgate.core.errors import NotFoundError
from feedgate.core.identity import hash_fields
from feedgate.core.models import (
    Feed,
    FeedCorrection,
    FeedRun,
    MappingConfidence,
    QuarantinedRecord,
    QuarantineStatus,
    RunStatus,
    RunTrigger,
    TestRunResult,
    TestRunStatus,
)
from feedgate.storage import QuarantineFilter, StagedUpsert

pytestmark = pytest.mark.integration


def sku_fields(i: int) -> dict:
    return {"title": f"Product {i}", "price": 10.0 + i, "upc": f"{100000000000 + i}", "sku": f"P-{i}"}


def quarantined(record_id: str, match_key: str, feed_id: str = "feed_001") -> QuarantinedRecord:
    return QuarantinedRecord(
        id=record_id,
        feed_id=feed_id,
        retailer_id="ret_001",
        match_key=match_key,
        parsed_fields={"title": match_key, "price": 5.0, "upc": None},
        raw_data={"Product Name": match_key},
        errors=[{"field": "upc", "code": "MISSING_UPC", "message": "upc is missing"}],
    )


class TestFeedsAndRuns:

    def test_feed_round_trip(self, pg_store):
        feed = Feed(id="feed_001", retailer_id="ret_001", url="https://feeds.test/a.csv")
        pg_store.save_feed(feed)

        feed.consecutive_failures = 2
        pg_store.save_feed(feed)

        assert pg_store.get_feed("feed_001").consecutive_failures == 2

    def test_missing_feed(self, pg_store):
        with pytest.raises(NotFoundError):
            pg_store.get_feed("feed_missing")

    def test_runs_newest_first(self, pg_store):
        now = datetime.utcnow()
        for i in range(3):
            pg_store.save_run(
                FeedRun(
                    id=f"run_{i}",
                    feed_id="feed_001",
                    retailer_id="ret_001",
                    trigger=RunTrigger.SCHEDULED,
                    status=RunStatus.COMPLETED,
                    started_at=now + timedelta(minutes=i),
                )
            )

        assert [run.id for run in pg_store.list_runs("feed_001", limit=2)] == ["run_2", "run_1"]
        assert pg_store.get_run("run_0").status == RunStatus.COMPLETED


class TestRetailerSkus:

    def test_upsert_is_keyed_by_hash(self, pg_store):
        fields = sku_fields(1)
        first = pg_store.upsert_retailer_sku("ret_001", hash_fields(fields), fields, feed_id="feed_001")
        second = pg_store.upsert_retailer_sku("ret_001", hash_fields(fields), {**fields, "brand": "Acme"})

        assert first.id == second.id
        assert second.raw_brand == "Acme"
        assert second.feed_id == "feed_001"
        assert pg_store.count_active_skus("ret_001") == 1

    def test_mapping_survives_upsert(self, pg_store):
        fields = sku_fields(1)
        sku = pg_store.upsert_retailer_sku("ret_001", hash_fields(fields), fields)
        sku.canonical_sku_id = "can_1"
        sku.mapping_confidence = MappingConfidence.HIGH
        pg_store.save_retailer_sku(sku)

        again = pg_store.upsert_retailer_sku("ret_001", hash_fields(fields), fields)

        assert again.canonical_sku_id == "can_1"
        assert again.mapping_confidence == MappingConfidence.HIGH

    def test_promotion_upserts_and_expires_together(self, pg_store):
        old = [sku_fields(i) for i in range(3)]
        for fields in old:
            pg_store.upsert_retailer_sku("ret_001", hash_fields(fields), fields)

        new = sku_fields(9)
        upserted, deactivated = pg_store.apply_promotion(
            "ret_001",
            "feed_001",
            "run_1",
            [StagedUpsert(sku_hash=hash_fields(new), fields=new)],
            [hash_fields(old[0]), hash_fields(old[1])],
        )

        assert (upserted, deactivated) == (1, 2)
        assert pg_store.list_active_sku_hashes("ret_001") == {hash_fields(old[2]), hash_fields(new)}
        assert pg_store.get_retailer_sku("ret_001", hash_fields(new)).last_seen_run_id == "run_1"

    def test_expired_sku_reactivates_on_upsert(self, pg_store):
        fields = sku_fields(1)
        pg_store.upsert_retailer_sku("ret_001", hash_fields(fields), fields)
        pg_store.apply_promotion("ret_001", "feed_001", "run_1", [], [hash_fields(fields)])
        assert pg_store.count_active_skus("ret_001") == 0

        pg_store.upsert_retailer_sku("ret_001", hash_fields(fields), fields)

        assert pg_store.count_active_skus("ret_001") == 1

    def test_unknown_sku_id(self, pg_store):
        with pytest.raises(NotFoundError):
            pg_store.get_retailer_sku_by_id("missing")


class TestQuarantine:

    def test_dedupe_refreshes_open_record(self, pg_store):
        pg_store.create_quarantined_record(quarantined("qr_1", "widget"))
        again = pg_store.create_quarantined_record(quarantined("qr_2", "widget"))

        assert again.id == "qr_1"
        assert pg_store.count_quarantine_by_status()["QUARANTINED"] == 1

    def test_terminal_record_is_not_reopened(self, pg_store):
        pg_store.create_quarantined_record(quarantined("qr_1", "widget"))
        pg_store.update_quarantine_status("qr_1", QuarantineStatus.DISMISSED)

        again = pg_store.create_quarantined_record(quarantined("qr_2", "widget"))

        assert again.id == "qr_1"
        assert again.status == QuarantineStatus.DISMISSED

    def test_listing_filters_and_counts(self, pg_store):
        pg_store.create_quarantined_record(quarantined("qr_1", "hornady 308"))
        pg_store.create_quarantined_record(quarantined("qr_2", "federal 9mm"))
        pg_store.create_quarantined_record(quarantined("qr_3", "federal 45", feed_id="feed_002"))

        records, total = pg_store.list_quarantined_records(QuarantineFilter(search="FEDERAL"))
        assert total == 2
        assert {record.id for record in records} == {"qr_2", "qr_3"}

        records, total = pg_store.list_quarantined_records(QuarantineFilter(feed_id="feed_001"), limit=1)
        assert total == 2
        assert len(records) == 1

        counts = pg_store.count_quarantine_by_status("feed_002")
        assert counts == {"QUARANTINED": 1, "RESOLVED": 0, "DISMISSED": 0}

    def test_resolve_records_sku(self, pg_store):
        pg_store.create_quarantined_record(quarantined("qr_1", "widget"))

        resolved = pg_store.update_quarantine_status("qr_1", QuarantineStatus.RESOLVED, resolved_sku_id="sku_1")

        assert resolved.status == QuarantineStatus.RESOLVED
        assert resolved.resolved_sku_id == "sku_1"

    def test_corrections_newest_first_and_delete(self, pg_store):
        pg_store.create_quarantined_record(quarantined("qr_1", "widget"))
        now = datetime.utcnow()
        for i, value in enumerate(["11111111", "22222222"]):
            pg_store.create_correction(
                FeedCorrection(
                    id=f"c_{i}",
                    quarantined_record_id="qr_1",
                    field="upc",
                    new_value=value,
                    created_by="ops@example.com",
                    created_at=now + timedelta(seconds=i),
                )
            )

        assert [c.id for c in pg_store.list_corrections("qr_1")] == ["c_1", "c_0"]
        assert [c.id for c in pg_store.list_corrections("qr_1", limit=1)] == ["c_1"]

        assert pg_store.delete_correction("c_1").new_value == "22222222"
        assert [c.id for c in pg_store.list_corrections("qr_1")] == ["c_0"]

        with pytest.raises(NotFoundError):
            pg_store.delete_correction("c_1")

    def test_correction_for_missing_record(self, pg_store):
        with pytest.raises(NotFoundError):
            pg_store.create_correction(
                FeedCorrection(
                    id="c_0",
                    quarantined_record_id="qr_missing",
                    field="upc",
                    new_value="12345678",
                    created_by="ops@example.com",
                )
            )


class TestTestRuns:

    def test_round_trip(self, pg_store):
        result = TestRunResult(id="t_1", feed_id="feed_001", status=TestRunStatus.PASS, records_parsed=5)
        pg_store.save_test_run(result)

        assert pg_store.get_test_run("t_1").records_parsed == 5
        assert [r.id for r in pg_store.list_test_runs("feed_001")] == ["t_1"]
