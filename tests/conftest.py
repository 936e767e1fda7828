"""
Pytest configuration and fixtures for feedgate tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
from typing import Generator

import httpx
import pytest

from feedgate.core.models import Feed
from feedgate.dispatch import InMemoryJobDispatcher
from feedgate.notifications import RecordingNotifier
from feedgate.pipeline import DryRunEvaluator, FeedFetcher, RunOrchestrator
from feedgate.quarantine import QuarantineManager
from feedgate.settings import Settings
from feedgate.storage import InMemoryCatalogStore


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# FEED CONTENT HELPERS
# =======================

CSV_HEADER = "Product Name,Price,UPC,SKU,Brand,Stock Status"


def csv_feed(rows: list[tuple]) -> str:
    """
    Build a comma-delimited feed body.

    Args:
        rows: Tuples of (title, price, upc, sku, brand, stock)
    """
    lines = [CSV_HEADER]
    for row in rows:
        lines.append(",".join("" if value is None else str(value) for value in row))
    return "\n".join(lines) + "\n"


def product_rows(count: int, prefix: str = "Product", with_upc: bool = True) -> list[tuple]:
    return [
        (
            f"{prefix} {i}",
            f"{10 + i}.99",
            f"{100000000000 + i}" if with_upc else "",
            f"{prefix.upper()}-{i}",
            "Acme",
            "yes",
        )
        for i in range(count)
    ]


class FeedResponses:
    """
    Canned HTTP responses served through httpx.MockTransport.

    Usage:
        feed_responses.set("https://feeds.test/a.csv", body)
        feed_responses.fail("https://feeds.test/a.csv", httpx.ConnectTimeout)
    """

    def __init__(self):
        self.responses: dict[str, tuple[int, str]] = {}
        self.errors: dict[str, type[httpx.HTTPError]] = {}
        self.requests: list[str] = []

    def set(self, url: str, body: str, status: int = 200) -> None:
        self.errors.pop(url, None)
        self.responses[url] = (status, body)

    def fail(self, url: str, error: type[httpx.HTTPError]) -> None:
        self.errors[url] = error

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.errors:
            raise self.errors[url]("simulated failure", request=request)
        status, body = self.responses.get(url, (404, "not found"))
        return httpx.Response(status, text=body)


# =======================
# PIPELINE FIXTURES
# =======================

@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the environment"""
    return Settings()


@pytest.fixture
def store() -> InMemoryCatalogStore:
    return InMemoryCatalogStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher() -> InMemoryJobDispatcher:
    return InMemoryJobDispatcher()


@pytest.fixture
def feed_responses() -> FeedResponses:
    return FeedResponses()


@pytest.fixture
def fetcher(feed_responses) -> FeedFetcher:
    """FeedFetcher that never touches the network"""
    return FeedFetcher(timeout=5.0, transport=httpx.MockTransport(feed_responses.handler))


@pytest.fixture
def feed(store) -> Feed:
    """An active retailer feed stored in the in-memory store"""
    feed = Feed(
        id="feed_001",
        retailer_id="ret_001",
        name="Example Outdoors",
        url="https://feeds.test/products.csv",
    )
    store.save_feed(feed)
    return feed


@pytest.fixture
def quarantine_manager(store, settings) -> QuarantineManager:
    return QuarantineManager(store, settings=settings)


@pytest.fixture
def orchestrator(store, fetcher, notifier, quarantine_manager, settings) -> RunOrchestrator:
    return RunOrchestrator(
        store,
        fetcher,
        notifier,
        quarantine_manager=quarantine_manager,
        settings=settings,
    )


@pytest.fixture
def dry_run_evaluator(store, fetcher, settings) -> DryRunEvaluator:
    return DryRunEvaluator(store, fetcher, settings=settings)


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator:
    """
    Start PostgreSQL container for integration tests

    Skips when Docker is not available.

    Yields:
        PostgresContainer instance
    """
    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_feedgate",
        password="test_password",
        dbname="test_feedgate",
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    yield container

    container.stop()


@pytest.fixture(scope="session")
def database_settings(postgres_container):
    from feedgate.settings import DatabaseSettings

    return DatabaseSettings(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        name="test_feedgate",
        user="test_feedgate",
        password="test_password",
    )


@pytest.fixture
def pg_store(database_settings) -> Generator:
    """
    PostgresCatalogStore on a clean schema

    Yields:
        PostgresCatalogStore with all tables truncated
    """
    from feedgate.storage.connection import DatabaseConnectionPool
    from feedgate.storage.postgres_store import PostgresCatalogStore

    pool = DatabaseConnectionPool.from_settings(database_settings)
    pool.open()
    pg_store = PostgresCatalogStore(pool)
    pg_store.ensure_schema()
    pool.execute_command(
        "TRUNCATE TABLE feed_corrections, quarantined_records, retailer_skus, "
        "feed_runs, feeds, test_runs CASCADE"
    )

    yield pg_store

    pool.close()


# =======================
# REDIS FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def redis_container() -> Generator:
    """
    Start Redis container for dispatcher integration tests

    Skips when Docker is not available.
    """
    from testcontainers.redis import RedisContainer

    container = RedisContainer(image="redis:7-alpine")
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    yield container

    container.stop()


@pytest.fixture
def redis_client(redis_container):
    client = redis_container.get_client(decode_responses=True)
    client.flushdb()
    yield client
    client.close()


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_data_dir() -> str:
    """
    Get path to test data fixtures directory

    Returns:
        Path to tests/fixtures directory
    """
    return os.path.join(os.path.dirname(__file__), "fixtures")


@pytest.fixture
def build_csv():
    """Factory fixture: rows -> CSV feed body (see csv_feed)"""
    return csv_feed


@pytest.fixture
def build_rows():
    """Factory fixture: count -> indexable product rows (see product_rows)"""
    return product_rows
