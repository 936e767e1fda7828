"""
PostgreSQL CatalogStore.

All writes use INSERT ... ON CONFLICT so re-running a feed or re-enqueuing a
reprocess job is idempotent. Promotion runs inside a single transaction.
"""

import uuid
from typing import Any

from psycopg import Error as PsycopgError
from psycopg.types.json import Jsonb

from feedgate.core.errors import NotFoundError, PersistenceError
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
from feedgate.observability.logger import get_logger

from .base import CatalogStore, QuarantineFilter, StagedUpsert
from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    retailer_id TEXT NOT NULL,
    payload JSONB NOT NULL,
    updated_at TIMESTAMP NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS feed_runs (
    id TEXT PRIMARY KEY,
    feed_id TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TIMESTAMP NOT NULL,
    payload JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_feed_runs_feed ON feed_runs (feed_id, started_at DESC);

CREATE TABLE IF NOT EXISTS retailer_skus (
    id TEXT PRIMARY KEY,
    retailer_id TEXT NOT NULL,
    retailer_sku_hash CHAR(32) NOT NULL,
    raw_title TEXT NOT NULL,
    raw_price DOUBLE PRECISION NOT NULL,
    raw_upc TEXT,
    raw_sku TEXT,
    raw_brand TEXT,
    raw_category TEXT,
    raw_image_url TEXT,
    raw_product_url TEXT,
    raw_description TEXT,
    in_stock BOOLEAN NOT NULL DEFAULT TRUE,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    canonical_sku_id TEXT,
    mapping_confidence TEXT NOT NULL DEFAULT 'NONE',
    needs_review BOOLEAN NOT NULL DEFAULT FALSE,
    identity_type TEXT NOT NULL DEFAULT 'SKU',
    feed_id TEXT,
    last_seen_run_id TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMP NOT NULL DEFAULT NOW(),
    UNIQUE (retailer_id, retailer_sku_hash)
);
CREATE INDEX IF NOT EXISTS idx_retailer_skus_active ON retailer_skus (retailer_id) WHERE is_active;

CREATE TABLE IF NOT EXISTS quarantined_records (
    id TEXT PRIMARY KEY,
    feed_id TEXT NOT NULL,
    retailer_id TEXT NOT NULL,
    feed_type TEXT NOT NULL DEFAULT 'RETAILER',
    run_id TEXT,
    match_key TEXT NOT NULL,
    parsed_fields JSONB,
    raw_data JSONB NOT NULL DEFAULT '{}'::jsonb,
    errors JSONB NOT NULL DEFAULT '[]'::jsonb,
    status TEXT NOT NULL DEFAULT 'QUARANTINED',
    resolved_sku_id TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMP NOT NULL DEFAULT NOW(),
    UNIQUE (feed_id, match_key)
);
CREATE INDEX IF NOT EXISTS idx_quarantined_records_status ON quarantined_records (status, created_at DESC);

CREATE TABLE IF NOT EXISTS feed_corrections (
    seq BIGSERIAL,
    id TEXT PRIMARY KEY,
    quarantined_record_id TEXT NOT NULL REFERENCES quarantined_records (id) ON DELETE CASCADE,
    field TEXT NOT NULL,
    old_value TEXT,
    new_value TEXT NOT NULL,
    created_by TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_feed_corrections_record ON feed_corrections (quarantined_record_id, created_at DESC);

CREATE TABLE IF NOT EXISTS test_runs (
    id TEXT PRIMARY KEY,
    feed_id TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    payload JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_test_runs_feed ON test_runs (feed_id, created_at DESC);
"""

SKU_UPSERT_SQL = """
    INSERT INTO retailer_skus (
        id, retailer_id, retailer_sku_hash, raw_title, raw_price, raw_upc, raw_sku,
        raw_brand, raw_category, raw_image_url, raw_product_url, raw_description,
        in_stock, identity_type, feed_id, last_seen_run_id
    )
    VALUES (
        %(id)s, %(retailer_id)s, %(retailer_sku_hash)s, %(raw_title)s, %(raw_price)s, %(raw_upc)s, %(raw_sku)s,
        %(raw_brand)s, %(raw_category)s, %(raw_image_url)s, %(raw_product_url)s, %(raw_description)s,
        %(in_stock)s, %(identity_type)s, %(feed_id)s, %(last_seen_run_id)s
    )
    ON CONFLICT (retailer_id, retailer_sku_hash) DO UPDATE SET
        raw_title = EXCLUDED.raw_title,
        raw_price = EXCLUDED.raw_price,
        raw_upc = EXCLUDED.raw_upc,
        raw_sku = EXCLUDED.raw_sku,
        raw_brand = EXCLUDED.raw_brand,
        raw_category = EXCLUDED.raw_category,
        raw_image_url = EXCLUDED.raw_image_url,
        raw_product_url = EXCLUDED.raw_product_url,
        raw_description = EXCLUDED.raw_description,
        in_stock = EXCLUDED.in_stock,
        identity_type = EXCLUDED.identity_type,
        feed_id = COALESCE(EXCLUDED.feed_id, retailer_skus.feed_id),
        last_seen_run_id = COALESCE(EXCLUDED.last_seen_run_id, retailer_skus.last_seen_run_id),
        is_active = TRUE,
        updated_at = NOW()
    RETURNING *
"""


def _sku_params(
    retailer_id: str,
    sku_hash: str,
    fields: dict[str, Any],
    feed_id: str | None,
    run_id: str | None,
    identity_type: IdentityType,
) -> dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "retailer_id": retailer_id,
        "retailer_sku_hash": sku_hash,
        "identity_type": identity_type.value,
        "feed_id": feed_id,
        "last_seen_run_id": run_id,
        **RetailerSku.fields_from_record(fields),
    }


class PostgresCatalogStore(CatalogStore):
    """
    CatalogStore backed by PostgreSQL through a DatabaseConnectionPool.

    Feeds, runs and test runs are stored as JSONB documents; retailer SKUs,
    quarantined records and corrections have real columns because they are
    queried and upserted by key.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize the store.

        Args:
            pool: An opened database connection pool
        """
        self.pool = pool

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self.pool.transaction() as cur:
            cur.execute(SCHEMA_SQL)

    def _query(self, query: str, params: Any = None) -> list[dict]:
        try:
            return self.pool.execute_query(query, params)
        except PsycopgError as e:
            raise PersistenceError(f"Query failed: {e}") from e

    def _query_one(self, query: str, params: Any = None) -> dict | None:
        rows = self._query(query, params)
        return rows[0] if rows else None

    # Feeds

    def get_feed(self, feed_id: str) -> Feed:
        row = self._query_one("SELECT payload FROM feeds WHERE id = %s", (feed_id,))
        if row is None:
            raise NotFoundError("Feed", feed_id)
        return Feed.model_validate(row["payload"])

    def save_feed(self, feed: Feed) -> Feed:
        self._query(
            """
            INSERT INTO feeds (id, retailer_id, payload)
            VALUES (%s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                retailer_id = EXCLUDED.retailer_id,
                payload = EXCLUDED.payload,
                updated_at = NOW()
            RETURNING id
            """,
            (feed.id, feed.retailer_id, Jsonb(feed.model_dump(mode="json"))),
        )
        return feed

    # Runs

    def save_run(self, run: FeedRun) -> FeedRun:
        self._query(
            """
            INSERT INTO feed_runs (id, feed_id, status, started_at, payload)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                payload = EXCLUDED.payload
            RETURNING id
            """,
            (run.id, run.feed_id, run.status.value, run.started_at, Jsonb(run.model_dump(mode="json"))),
        )
        return run

    def get_run(self, run_id: str) -> FeedRun:
        row = self._query_one("SELECT payload FROM feed_runs WHERE id = %s", (run_id,))
        if row is None:
            raise NotFoundError("FeedRun", run_id)
        return FeedRun.model_validate(row["payload"])

    def list_runs(self, feed_id: str, limit: int = 20) -> list[FeedRun]:
        rows = self._query(
            "SELECT payload FROM feed_runs WHERE feed_id = %s ORDER BY started_at DESC LIMIT %s",
            (feed_id, limit),
        )
        return [FeedRun.model_validate(row["payload"]) for row in rows]

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
        row = self._query_one(
            SKU_UPSERT_SQL,
            _sku_params(retailer_id, sku_hash, fields, feed_id, run_id, identity_type),
        )
        return RetailerSku.model_validate(row)

    def get_retailer_sku(self, retailer_id: str, sku_hash: str) -> RetailerSku | None:
        row = self._query_one(
            "SELECT * FROM retailer_skus WHERE retailer_id = %s AND retailer_sku_hash = %s",
            (retailer_id, sku_hash),
        )
        return RetailerSku.model_validate(row) if row else None

    def get_retailer_sku_by_id(self, sku_id: str) -> RetailerSku:
        row = self._query_one("SELECT * FROM retailer_skus WHERE id = %s", (sku_id,))
        if row is None:
            raise NotFoundError("RetailerSku", sku_id)
        return RetailerSku.model_validate(row)

    def save_retailer_sku(self, sku: RetailerSku) -> RetailerSku:
        row = self._query_one(
            """
            UPDATE retailer_skus SET
                canonical_sku_id = %s,
                mapping_confidence = %s,
                needs_review = %s,
                is_active = %s,
                updated_at = NOW()
            WHERE retailer_id = %s AND retailer_sku_hash = %s
            RETURNING *
            """,
            (
                sku.canonical_sku_id,
                sku.mapping_confidence.value,
                sku.needs_review,
                sku.is_active,
                sku.retailer_id,
                sku.retailer_sku_hash,
            ),
        )
        if row is None:
            raise NotFoundError("RetailerSku", sku.id or sku.retailer_sku_hash)
        return RetailerSku.model_validate(row)

    def count_active_skus(self, retailer_id: str) -> int:
        row = self._query_one(
            "SELECT COUNT(*) AS n FROM retailer_skus WHERE retailer_id = %s AND is_active",
            (retailer_id,),
        )
        return int(row["n"]) if row else 0

    def list_active_sku_hashes(self, retailer_id: str) -> set[str]:
        rows = self._query(
            "SELECT retailer_sku_hash FROM retailer_skus WHERE retailer_id = %s AND is_active",
            (retailer_id,),
        )
        return {row["retailer_sku_hash"] for row in rows}

    def apply_promotion(
        self,
        retailer_id: str,
        feed_id: str,
        run_id: str,
        upserts: list[StagedUpsert],
        expire_hashes: list[str],
    ) -> tuple[int, int]:
        try:
            with self.pool.transaction() as cur:
                if upserts:
                    cur.executemany(
                        SKU_UPSERT_SQL,
                        [
                            _sku_params(
                                retailer_id, staged.sku_hash, staged.fields,
                                feed_id, run_id, staged.identity_type,
                            )
                            for staged in upserts
                        ],
                    )
                deactivated = 0
                if expire_hashes:
                    cur.execute(
                        """
                        UPDATE retailer_skus SET is_active = FALSE, updated_at = NOW()
                        WHERE retailer_id = %s AND retailer_sku_hash = ANY(%s) AND is_active
                        """,
                        (retailer_id, list(expire_hashes)),
                    )
                    deactivated = cur.rowcount
        except PsycopgError as e:
            logger.error(
                f"Promotion failed for run {run_id}",
                extra={"run_id": run_id, "feed_id": feed_id, "error_message": str(e)},
            )
            raise PersistenceError(f"Promotion failed: {e}") from e

        return len(upserts), deactivated

    # Quarantine

    def create_quarantined_record(self, record: QuarantinedRecord) -> QuarantinedRecord:
        row = self._query_one(
            """
            INSERT INTO quarantined_records (
                id, feed_id, retailer_id, feed_type, run_id, match_key, parsed_fields, raw_data, errors,
                status, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (feed_id, match_key) DO UPDATE SET
                parsed_fields = EXCLUDED.parsed_fields,
                raw_data = EXCLUDED.raw_data,
                errors = EXCLUDED.errors,
                run_id = EXCLUDED.run_id,
                updated_at = NOW()
            WHERE quarantined_records.status = 'QUARANTINED'
            RETURNING *
            """,
            (
                record.id,
                record.feed_id,
                record.retailer_id,
                record.feed_type,
                record.run_id,
                record.match_key,
                Jsonb(record.parsed_fields) if record.parsed_fields is not None else None,
                Jsonb(record.raw_data),
                Jsonb(record.errors),
                record.status.value,
                record.created_at,
                record.updated_at,
            ),
        )
        if row is None:
            # Conflict with a RESOLVED or DISMISSED record: left untouched
            row = self._query_one(
                "SELECT * FROM quarantined_records WHERE feed_id = %s AND match_key = %s",
                (record.feed_id, record.match_key),
            )
        return QuarantinedRecord.model_validate(row)

    def get_quarantined_record(self, record_id: str) -> QuarantinedRecord:
        row = self._query_one("SELECT * FROM quarantined_records WHERE id = %s", (record_id,))
        if row is None:
            raise NotFoundError("QuarantinedRecord", record_id)
        return QuarantinedRecord.model_validate(row)

    def list_quarantined_records(
        self, filters: QuarantineFilter, offset: int = 0, limit: int = 20
    ) -> tuple[list[QuarantinedRecord], int]:
        clauses = []
        params: list[Any] = []
        if filters.status is not None:
            clauses.append("status = %s")
            params.append(filters.status.value)
        if filters.feed_id is not None:
            clauses.append("feed_id = %s")
            params.append(filters.feed_id)
        if filters.search:
            pattern = f"%{filters.search}%"
            clauses.append("(match_key ILIKE %s OR parsed_fields->>'title' ILIKE %s)")
            params.extend([pattern, pattern])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total_row = self._query_one(f"SELECT COUNT(*) AS n FROM quarantined_records {where}", tuple(params))
        rows = self._query(
            f"SELECT * FROM quarantined_records {where} ORDER BY created_at DESC LIMIT %s OFFSET %s",
            tuple(params + [limit, offset]),
        )
        return [QuarantinedRecord.model_validate(row) for row in rows], int(total_row["n"])

    def count_quarantine_by_status(self, feed_id: str | None = None) -> dict[str, int]:
        if feed_id is None:
            rows = self._query("SELECT status, COUNT(*) AS n FROM quarantined_records GROUP BY status")
        else:
            rows = self._query(
                "SELECT status, COUNT(*) AS n FROM quarantined_records WHERE feed_id = %s GROUP BY status",
                (feed_id,),
            )
        counts = {status.value: 0 for status in QuarantineStatus}
        for row in rows:
            counts[row["status"]] = int(row["n"])
        return counts

    def update_quarantine_status(
        self, record_id: str, status: QuarantineStatus, resolved_sku_id: str | None = None
    ) -> QuarantinedRecord:
        row = self._query_one(
            """
            UPDATE quarantined_records SET
                status = %s,
                resolved_sku_id = COALESCE(%s, resolved_sku_id),
                updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (status.value, resolved_sku_id, record_id),
        )
        if row is None:
            raise NotFoundError("QuarantinedRecord", record_id)
        return QuarantinedRecord.model_validate(row)

    # Corrections

    def create_correction(self, correction: FeedCorrection) -> FeedCorrection:
        self.get_quarantined_record(correction.quarantined_record_id)
        row = self._query_one(
            """
            INSERT INTO feed_corrections (id, quarantined_record_id, field, old_value, new_value, created_by, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id, quarantined_record_id, field, old_value, new_value, created_by, created_at
            """,
            (
                correction.id,
                correction.quarantined_record_id,
                correction.field,
                correction.old_value,
                correction.new_value,
                correction.created_by,
                correction.created_at,
            ),
        )
        return FeedCorrection.model_validate(row)

    def list_corrections(self, record_id: str, limit: int | None = None) -> list[FeedCorrection]:
        query = """
            SELECT id, quarantined_record_id, field, old_value, new_value, created_by, created_at
            FROM feed_corrections
            WHERE quarantined_record_id = %s
            ORDER BY created_at DESC, seq DESC
        """
        params: tuple = (record_id,)
        if limit is not None:
            query += " LIMIT %s"
            params = (record_id, limit)
        return [FeedCorrection.model_validate(row) for row in self._query(query, params)]

    def delete_correction(self, correction_id: str) -> FeedCorrection:
        row = self._query_one(
            """
            DELETE FROM feed_corrections WHERE id = %s
            RETURNING id, quarantined_record_id, field, old_value, new_value, created_by, created_at
            """,
            (correction_id,),
        )
        if row is None:
            raise NotFoundError("FeedCorrection", correction_id)
        return FeedCorrection.model_validate(row)

    # Dry runs

    def save_test_run(self, result: TestRunResult) -> TestRunResult:
        self._query(
            """
            INSERT INTO test_runs (id, feed_id, created_at, payload)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET payload = EXCLUDED.payload
            RETURNING id
            """,
            (result.id, result.feed_id, result.created_at, Jsonb(result.model_dump(mode="json"))),
        )
        return result

    def get_test_run(self, test_run_id: str) -> TestRunResult:
        row = self._query_one("SELECT payload FROM test_runs WHERE id = %s", (test_run_id,))
        if row is None:
            raise NotFoundError("TestRunResult", test_run_id)
        return TestRunResult.model_validate(row["payload"])

    def list_test_runs(self, feed_id: str, limit: int = 10) -> list[TestRunResult]:
        rows = self._query(
            "SELECT payload FROM test_runs WHERE feed_id = %s ORDER BY created_at DESC LIMIT %s",
            (feed_id, limit),
        )
        return [TestRunResult.model_validate(row["payload"]) for row in rows]
