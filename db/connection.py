"""
PostgreSQL Connection Helper

Provides connection pooling and context management for database operations.
Handles connection lifecycle, transient-error retries and transactions.

One DatabaseConnection is created per pipeline run and passed to the
components that need it; the run owns its initialize/close lifecycle.
"""

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from psycopg2 import pool, OperationalError, InterfaceError
from psycopg2.extras import execute_values

logger = logging.getLogger(__name__)

# Errors worth retrying: dropped/reset connections and connect timeouts
TRANSIENT_ERRORS = (OperationalError, InterfaceError)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DatabaseUnavailableError(Exception):
    """Raised when the database cannot be reached within the retry budget."""


def quote_identifier(name: str) -> str:
    """
    Validate a table/column name before it is interpolated into SQL.

    Raises:
        ValueError: If the name is not a plain SQL identifier
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


class DatabaseConnection:
    """
    Manages PostgreSQL connections with connection pooling.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        host: str = "localhost",
        port: int = 5432,
        database: str = "etl_db",
        user: Optional[str] = None,
        password: Optional[str] = None,
        min_connections: int = 1,
        max_connections: int = 5,
        connect_timeout: int = 10,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        pool_factory: Callable[..., Any] = pool.SimpleConnectionPool,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            dsn: Full connection string; overrides host/port/database/user/password
            min_connections: Minimum pool connections
            max_connections: Maximum pool connections
            connect_timeout: Seconds to wait for a connection to be established
            max_retries: Attempts for pool creation and read queries
            retry_delay: Base delay in seconds; doubles after each failed attempt
        """
        if dsn:
            self._connect_kwargs = {"dsn": dsn}
        else:
            self._connect_kwargs = {
                "host": host,
                "port": port,
                "database": database,
                "user": user,
                "password": password,
            }
        self._connect_kwargs["connect_timeout"] = connect_timeout
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._pool_factory = pool_factory
        self._sleep = sleep
        self._pool = None

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "DatabaseConnection":
        """Build a connection helper from a Settings object."""
        return cls(
            dsn=settings.DATABASE_URL,
            host=settings.DB_HOST,
            port=settings.DB_PORT,
            database=settings.DB_NAME,
            user=settings.DB_USER,
            password=settings.DB_PASSWORD,
            max_connections=settings.DB_POOL_SIZE,
            connect_timeout=settings.DB_CONNECTION_TIMEOUT,
            max_retries=settings.DB_MAX_RETRIES,
            retry_delay=settings.DB_RETRY_DELAY,
            **kwargs,
        )

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** (attempt - 1))

    def _with_retry(self, description: str, operation: Callable[[], Any]) -> Any:
        """
        Run an operation, retrying transient connectivity errors.

        Non-transient psycopg2 errors (constraint violations, bad SQL) are
        raised on the first failure.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                return operation()
            except TRANSIENT_ERRORS as e:
                logger.warning(f"{description} attempt {attempt} failed: {e}")
                if attempt >= self.max_retries:
                    logger.error(f"Max retries reached for {description}")
                    raise DatabaseUnavailableError(
                        f"{description} failed after {attempt} attempts: {e}"
                    ) from e
                self._sleep(self._backoff(attempt))

    def initialize(self) -> None:
        """
        Initialize the connection pool and verify it with a test query.

        Raises:
            DatabaseUnavailableError: If the database stays unreachable
        """
        if self._pool is not None:
            return

        def connect():
            created = self._pool_factory(
                self.min_connections, self.max_connections, **self._connect_kwargs
            )
            conn = created.getconn()
            try:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT NOW();")
                conn.rollback()
            except Exception:
                created.putconn(conn)
                created.closeall()
                raise
            created.putconn(conn)
            return created

        self._pool = self._with_retry("Database connection", connect)
        logger.info(
            f"Database pool initialized with {self.min_connections}-{self.max_connections} connections"
        )

    def close_all(self) -> None:
        """Close all connections in the pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Database pool closed")

    @contextmanager
    def get_connection(self):
        """
        Context manager to get a connection from the pool.

        Commits when the block succeeds and rolls back when it raises.

        Yields:
            psycopg2 connection object

        Raises:
            DatabaseUnavailableError: If pool is not initialized
        """
        if self._pool is None:
            raise DatabaseUnavailableError("Database pool not initialized. Call initialize() first.")

        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
            logger.debug("Transaction committed successfully")
        except Exception as e:
            conn.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
            raise
        finally:
            # A dropped connection must not go back into rotation
            self._pool.putconn(conn, close=bool(conn.closed))

    @contextmanager
    def get_cursor(self, commit: bool = True):
        """
        Context manager to get a cursor for direct SQL execution.

        Args:
            commit: Whether to commit on success (read-only work passes False)

        Example:
            with db.get_cursor() as cursor:
                cursor.execute("SELECT * FROM students")
                results = cursor.fetchall()
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                yield cursor
                if not commit:
                    conn.rollback()
            finally:
                cursor.close()

    @contextmanager
    def transaction(self):
        """
        All-or-nothing transactional scope.

        Yields a cursor; everything executed through it commits together
        or is rolled back together if the block raises.
        """
        with self.get_cursor(commit=True) as cursor:
            logger.debug("Transaction started")
            yield cursor

    def with_transaction(self, fn: Callable[[Any], Any]) -> Any:
        """Run fn(cursor) inside transaction() and return its result."""
        with self.transaction() as cursor:
            return fn(cursor)

    def execute_query(self, query: str, params: Optional[tuple] = None) -> list:
        """
        Execute a SELECT query and return results, retrying transient errors.

        Args:
            query: SQL query string
            params: Query parameters (optional)

        Returns:
            List of result rows
        """
        def run():
            with self.get_cursor(commit=False) as cursor:
                cursor.execute(query, params or ())
                return cursor.fetchall()

        return self._with_retry("Query", run)

    # Store contract alias
    query = execute_query

    @staticmethod
    def batch_insert(
        cursor,
        table: str,
        columns: Sequence[str],
        rows: Iterable[Sequence[Any]],
        conflict_clause: str = "ON CONFLICT DO NOTHING",
        page_size: int = 1000,
    ) -> Tuple[int, int]:
        """
        Multi-row INSERT through psycopg2.extras.execute_values.

        Every affected row reports whether it was freshly inserted
        (xmax = 0) or merged by an ON CONFLICT DO UPDATE clause; rows
        skipped by DO NOTHING return nothing.

        Returns:
            Tuple of (inserted, updated)
        """
        rows_list: List[Sequence[Any]] = [tuple(row) for row in rows]
        if not rows_list:
            return 0, 0

        cols_sql = ", ".join(quote_identifier(c) for c in columns)
        query = (
            f"INSERT INTO {quote_identifier(table)} ({cols_sql}) VALUES %s "
            f"{conflict_clause} RETURNING (xmax = 0) AS inserted"
        )

        returned = execute_values(cursor, query, rows_list, page_size=page_size, fetch=True)
        inserted = sum(1 for (was_inserted,) in returned if was_inserted)
        updated = len(returned) - inserted
        logger.debug(f"Batch insert into {table}: {inserted} inserted, {updated} updated")
        return inserted, updated

    @staticmethod
    def execute_batch(cursor, query: str, rows: Iterable[Sequence[Any]], page_size: int = 1000) -> int:
        """
        Run a `VALUES %s` statement over many rows.

        The statement should end in a RETURNING clause; the number of
        returned rows is reported as the affected count.
        """
        rows_list = [tuple(row) for row in rows]
        if not rows_list:
            return 0
        returned = execute_values(cursor, query, rows_list, page_size=page_size, fetch=True)
        return len(returned)
