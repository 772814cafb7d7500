"""Shared pytest fixtures and in-memory fakes."""

import copy
import re
from contextlib import contextmanager
from typing import List, Tuple

import pytest

from etl.extract import STATUS_PENDING
from etl.records import RawRow

_COUNT_ALL = re.compile(r"^SELECT COUNT\(\*\) FROM (\w+);$")


class FakeDatabase:
    """
    In-memory stand-in for DatabaseConnection.

    Tables are dicts keyed by each table's unique key, so inserts behave like
    ON CONFLICT against a real unique constraint. Transactions snapshot the
    tables and restore them when the block raises.
    """

    UNIQUE_KEYS = {
        "students": "email",
        "departments": "department_name",
        "netflix": "show_id",
        "titanic": "passenger_id",
    }

    def __init__(self):
        self.tables = {}
        self.enrollment_rows: List[Tuple] = []
        self.query_results = []
        self.queries = []
        self.fail_on_insert = None
        self.initialized = False
        self.closed = False
        self.commits = 0
        self.rollbacks = 0
        self.insert_calls = 0

    def initialize(self):
        self.initialized = True

    def close_all(self):
        self.closed = True

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy(self.tables)
        enrollments = list(self.enrollment_rows)
        try:
            yield object()
        except Exception:
            self.tables = snapshot
            self.enrollment_rows = enrollments
            self.rollbacks += 1
            raise
        self.commits += 1

    def batch_insert(self, cursor, table, columns, rows, conflict_clause="ON CONFLICT DO NOTHING"):
        self.insert_calls += 1
        if self.fail_on_insert == table:
            raise RuntimeError(f"insert into {table} failed")

        key_column = self.UNIQUE_KEYS[table]
        stored = self.tables.setdefault(table, {})
        inserted = updated = 0
        for row in rows:
            record = dict(zip(columns, row))
            key = record[key_column]
            if key in stored:
                if "DO UPDATE" in conflict_clause:
                    stored[key].update(record)
                    updated += 1
                continue
            stored[key] = record
            inserted += 1
        return inserted, updated

    def execute_batch(self, cursor, query, rows):
        self.enrollment_rows.extend(rows)
        return len(rows)

    def execute_query(self, query, params=None):
        self.queries.append((query, params))
        for pattern, result in self.query_results:
            if pattern in query:
                if isinstance(result, Exception):
                    raise result
                return result
        if "GROUP BY" in query:
            return []
        match = _COUNT_ALL.match(query)
        if match:
            return [(len(self.tables.get(match.group(1), {})),)]
        return [(0,)]

    def rows(self, table):
        return list(self.tables.get(table, {}).values())


class FakeSource:
    """Row source recording status write-back."""

    source_type = "FAKE"

    def __init__(self, rows, supports_status=True, error=None):
        self._rows = list(rows)
        self.supports_status = supports_status
        self.error = error
        self.status_writes: List[Tuple[int, str]] = []
        self.extract_calls = 0

    def extract(self):
        self.extract_calls += 1
        if self.error:
            raise self.error
        return list(self._rows)

    def write_statuses(self, updates):
        self.status_writes.extend(updates)


def student_row(index, name="Jane Doe", email=None, status=STATUS_PENDING, **fields):
    values = {
        "timestamp": "2024-09-01 10:00:00",
        "student_name": name,
        "email": email if email is not None else f"student{index}@uni.edu",
        "phone": "+1 (555) 123-4567",
        "department": "Computer Science",
        "course": "Databases",
        "credits": "4",
        "grade": "A",
        "year": "2",
        "status": status,
    }
    values.update(fields)
    return RawRow(index=index, fields=values)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def student_rows():
    """Three valid pending rows followed by one with credits out of range."""
    return [
        student_row(2, name="Alice Smith", email="alice@uni.edu"),
        student_row(3, name="Bob Jones", email="bob@uni.edu"),
        student_row(4, name="Carol White", email="carol@uni.edu"),
        student_row(5, name="Dan Brown", email="dan@uni.edu", credits="12"),
    ]


@pytest.fixture
def titanic_csv(tmp_path):
    path = tmp_path / "titanic.csv"
    path.write_text(
        "PassengerId,Survived,Pclass,Name,Sex,Age,SibSp,Parch,Ticket,Fare,Cabin,Embarked\n"
        "1,0,3,\"Braund, Mr. Owen Harris\",male,22,1,0,A/5 21171,7.25,,S\n"
        "2,1,1,\"Cumings, Mrs. John Bradley\",female,38,1,0,PC 17599,71.2833,C85,C\n"
        "3,1,3,\"Heikkinen, Miss. Laina\",female,,0,0,STON/O2. 3101282,7.925,,S\n"
        "abc,1,3,Broken Row,female,20,0,0,X,1.0,,S\n",
        encoding="utf-8",
    )
    return path
