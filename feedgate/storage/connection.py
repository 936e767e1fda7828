"""
PostgreSQL connection pool for the catalog store

The pool is built from DatabaseSettings (or DB_* environment variables),
opened once per process and handed to PostgresCatalogStore. Rows come back
as dicts.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from feedgate.observability.logger import get_logger

logger = get_logger(__name__)

APPLICATION_NAME = "feedgate"


class DatabaseConnectionPool:
    """psycopg3 pool wrapper with open-time retries and small query helpers"""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 5,
        timeout: float = 30.0,
    ) -> None:
        """
        Args:
            host: Database host (defaults to DB_HOST)
            port: Database port (defaults to DB_PORT)
            database: Database name (defaults to DB_NAME)
            user: Database user (defaults to DB_USER)
            password: Database password (defaults to DB_PASSWORD)
            min_size: Connections kept open
            max_size: Upper bound on pooled connections
            timeout: Seconds to wait for a connection

        Raises:
            ValueError: If no password is configured
        """
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "feedgate")
        self.user = user or os.getenv("DB_USER", "feedgate")
        password = password or os.getenv("DB_PASSWORD")
        if not password:
            raise ValueError("Database password is not set (DB_PASSWORD)")

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.conninfo = make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=password,
            connect_timeout=int(timeout),
            application_name=APPLICATION_NAME,
        )
        self._pool: ConnectionPool | None = None

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "DatabaseConnectionPool":
        """Build a pool from a DatabaseSettings instance."""
        return cls(
            host=settings.host,
            port=settings.port,
            database=settings.name,
            user=settings.user,
            password=settings.password,
            **kwargs,
        )

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, retrying while the server is not reachable yet.

        Raises:
            OperationalError: If every attempt fails
        """
        if self._pool is not None:
            return

        pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            name=APPLICATION_NAME,
            open=False,
        )

        attempt = 0
        while True:
            attempt += 1
            try:
                pool.open(wait=True, timeout=self.timeout)
                break
            except (OperationalError, TimeoutError) as e:
                if attempt >= max_retries:
                    pool.close()
                    raise OperationalError(
                        f"Could not reach {self.host}:{self.port}/{self.database} "
                        f"after {max_retries} attempts: {e}"
                    ) from e
                logger.warning(
                    "Database not reachable, retrying",
                    extra={"attempt": attempt, "db_host": self.host, "retry_in": retry_delay},
                )
                time.sleep(retry_delay)

        self._pool = pool
        logger.info(
            "Database pool opened",
            extra={"db_host": self.host, "db_name": self.database, "max_size": self.max_size},
        )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection from the pool

        Raises:
            RuntimeError: If the pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open; call open() first")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def transaction(self):
        """Yield a cursor inside a transaction committed on normal exit."""
        with self.get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    yield cur

    def execute_query(self, query: str, params=None) -> list[dict]:
        """Run a SELECT and return all rows."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def execute_command(self, command: str, params=None) -> int:
        """Run an INSERT/UPDATE/DELETE and return the affected row count."""
        with self.transaction() as cur:
            cur.execute(command, params)
            return cur.rowcount

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
