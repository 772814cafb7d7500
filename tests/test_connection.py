"""Tests for the pooled database helper, using a fake psycopg2 pool."""

import pytest
from psycopg2 import OperationalError, ProgrammingError

import db.connection as connection
from db.connection import DatabaseConnection, DatabaseUnavailableError, quote_identifier


class FakeCursor:

    def __init__(self, conn):
        self.conn = conn
        self.rowcount = 0
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def execute(self, query, params=None):
        self.conn.executed.append((query, params))
        if self.conn.failures:
            error = self.conn.failures.pop(0)
            if isinstance(error, OperationalError):
                # psycopg2 marks the connection closed when the server drops it
                self.conn.closed = 2
            raise error
        self.rowcount = 1

    def fetchall(self):
        return self.conn.result

    def close(self):
        self.closed = True


class FakeConnection:

    def __init__(self):
        self.executed = []
        self.failures = []
        self.result = [(1,)]
        self.closed = 0
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakePool:

    def __init__(self, conn):
        self.conn = conn
        self.closed = False
        self.out = 0
        self.discarded = []

    def getconn(self):
        self.out += 1
        return self.conn

    def putconn(self, conn, close=False):
        self.out -= 1
        if close:
            self.discarded.append(conn)
            self.conn = FakeConnection()
            self.conn.result = conn.result

    def closeall(self):
        self.closed = True


class PoolFactory:
    """Fails the first `failures` calls with the given error."""

    def __init__(self, failures=0, error=OperationalError("connection refused")):
        self.failures = failures
        self.error = error
        self.calls = []
        self.conn = FakeConnection()
        self.pool = FakePool(self.conn)

    def __call__(self, minconn, maxconn, **kwargs):
        self.calls.append((minconn, maxconn, kwargs))
        if len(self.calls) <= self.failures:
            raise self.error
        return self.pool


def _db(factory, **kwargs):
    sleeps = []
    db = DatabaseConnection(
        user="etl", password="secret", pool_factory=factory, sleep=sleeps.append, **kwargs
    )
    return db, sleeps


class TestInitialize:

    def test_creates_pool_and_runs_test_query(self):
        factory = PoolFactory()
        db, sleeps = _db(factory)
        db.initialize()

        assert db.is_initialized
        assert factory.conn.executed == [("SELECT NOW();", None)]
        assert factory.calls[0][2]["connect_timeout"] == 10
        assert factory.pool.out == 0
        assert sleeps == []

    def test_retries_with_exponential_backoff(self):
        factory = PoolFactory(failures=2)
        db, sleeps = _db(factory)
        db.initialize()

        assert db.is_initialized
        assert len(factory.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        factory = PoolFactory(failures=5)
        db, sleeps = _db(factory, max_retries=3, retry_delay=0.5)

        with pytest.raises(DatabaseUnavailableError) as excinfo:
            db.initialize()

        assert isinstance(excinfo.value.__cause__, OperationalError)
        assert len(factory.calls) == 3
        assert sleeps == [0.5, 1.0]
        assert not db.is_initialized

    def test_non_transient_error_is_not_retried(self):
        factory = PoolFactory(failures=1, error=ProgrammingError("bad"))
        db, sleeps = _db(factory)

        with pytest.raises(ProgrammingError):
            db.initialize()
        assert len(factory.calls) == 1

    def test_dsn_overrides_parts(self):
        factory = PoolFactory()
        db = DatabaseConnection(dsn="postgresql://db/etl", pool_factory=factory)
        db.initialize()

        assert factory.calls[0][2] == {"dsn": "postgresql://db/etl", "connect_timeout": 10}

    def test_close_all(self):
        factory = PoolFactory()
        db, _ = _db(factory)
        db.initialize()
        db.close_all()

        assert factory.pool.closed
        assert not db.is_initialized


class TestTransactions:

    def test_requires_initialized_pool(self):
        db, _ = _db(PoolFactory())
        with pytest.raises(DatabaseUnavailableError):
            with db.transaction():
                pass

    def test_commits_on_success(self):
        factory = PoolFactory()
        db, _ = _db(factory)
        db.initialize()

        with db.transaction() as cursor:
            cursor.execute("INSERT 1")

        assert factory.conn.commits == 1
        assert factory.pool.out == 0

    def test_rolls_back_on_error(self):
        factory = PoolFactory()
        db, _ = _db(factory)
        db.initialize()
        rollbacks = factory.conn.rollbacks

        with pytest.raises(RuntimeError):
            with db.transaction() as cursor:
                cursor.execute("INSERT 1")
                raise RuntimeError("boom")

        assert factory.conn.commits == 0
        assert factory.conn.rollbacks == rollbacks + 1
        assert factory.pool.out == 0

    def test_with_transaction_returns_result(self):
        factory = PoolFactory()
        db, _ = _db(factory)
        db.initialize()

        assert db.with_transaction(lambda cursor: "done") == "done"
        assert factory.conn.commits == 1


class TestQueries:

    def test_execute_query_retries_transient_errors(self):
        factory = PoolFactory()
        db, sleeps = _db(factory)
        db.initialize()
        factory.conn.failures = [OperationalError("server closed the connection")]
        factory.conn.result = [(42,)]

        assert db.execute_query("SELECT COUNT(*) FROM students;") == [(42,)]
        assert sleeps == [1.0]

    def test_execute_query_does_not_retry_sql_errors(self):
        factory = PoolFactory()
        db, sleeps = _db(factory)
        db.initialize()
        factory.conn.failures = [ProgrammingError("syntax error")]

        with pytest.raises(ProgrammingError):
            db.query("SELEC 1")
        assert sleeps == []

    def test_dropped_connection_is_discarded_before_retry(self):
        factory = PoolFactory()
        db, sleeps = _db(factory)
        db.initialize()
        dropped = factory.conn
        dropped.failures = [OperationalError("server closed the connection unexpectedly")]

        assert db.execute_query("SELECT 1;") == [(1,)]
        assert factory.pool.discarded == [dropped]
        assert factory.pool.conn is not dropped
        assert factory.pool.out == 0

    def test_healthy_connection_is_returned_to_pool(self):
        factory = PoolFactory()
        db, _ = _db(factory)
        db.initialize()
        conn = factory.conn

        db.execute_query("SELECT 1;")
        assert factory.pool.discarded == []
        assert factory.pool.conn is conn


class TestBatchInsert:

    def test_counts_inserted_and_updated(self, monkeypatch):
        calls = []

        def fake_execute_values(cursor, query, rows, page_size=100, fetch=False):
            calls.append((query, rows, fetch))
            return [(True,), (False,), (True,)]

        monkeypatch.setattr(connection, "execute_values", fake_execute_values)
        result = DatabaseConnection.batch_insert(
            object(), "students", ["email", "first_name"],
            [["a@x.io", "A"], ["b@x.io", "B"], ["c@x.io", "C"]],
            "ON CONFLICT (email) DO UPDATE SET first_name = EXCLUDED.first_name",
        )

        assert result == (2, 1)
        query, rows, fetch = calls[0]
        assert query == (
            "INSERT INTO students (email, first_name) VALUES %s "
            "ON CONFLICT (email) DO UPDATE SET first_name = EXCLUDED.first_name "
            "RETURNING (xmax = 0) AS inserted"
        )
        assert rows == [("a@x.io", "A"), ("b@x.io", "B"), ("c@x.io", "C")]
        assert fetch is True

    def test_empty_rows_skip_the_database(self, monkeypatch):
        monkeypatch.setattr(connection, "execute_values", pytest.fail)
        assert DatabaseConnection.batch_insert(object(), "students", ["email"], []) == (0, 0)

    def test_execute_batch_counts_returned_rows(self, monkeypatch):
        monkeypatch.setattr(
            connection, "execute_values", lambda cursor, query, rows, page_size, fetch: [(1,), (2,)]
        )
        assert DatabaseConnection.execute_batch(object(), "INSERT ... VALUES %s", [(1,), (2,)]) == 2


@pytest.mark.parametrize("name", ["students", "_tmp", "Table2"])
def test_quote_identifier_accepts_plain_names(name):
    assert quote_identifier(name) == name


@pytest.mark.parametrize("name", ["", "1abc", "students;", "a b", 'x"y', None])
def test_quote_identifier_rejects_everything_else(name):
    with pytest.raises(ValueError):
        quote_identifier(name)
