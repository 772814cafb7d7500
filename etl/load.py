"""
Data Loading into PostgreSQL

Idempotent, transactional batch loading. Every load runs inside one
transaction: all chunks commit together or the whole load rolls back.
Conflicts on the table's natural key are skipped (or merged), so loading
the same records twice leaves the table unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from db.connection import quote_identifier
from etl.records import NormalizedRecord

logger = logging.getLogger(__name__)


@dataclass
class LoadOutcome:
    """Result of one load call."""
    attempted: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    batches: int = 0
    committed: bool = False


class TableLoader:
    """
    Loads normalized records into one table with upsert semantics.

    The unique key is configured per loader; with update_columns the
    conflict clause becomes DO UPDATE, otherwise DO NOTHING.
    """

    def __init__(
        self,
        db,
        table: str,
        columns: Sequence[str],
        unique_key: str,
        update_columns: Optional[Sequence[str]] = None,
        batch_size: int = 100,
    ):
        if unique_key not in columns:
            raise ValueError(f"Unique key '{unique_key}' must be one of the loaded columns")

        self.db = db
        self.table = quote_identifier(table)
        self.columns = tuple(quote_identifier(c) for c in columns)
        self.unique_key = quote_identifier(unique_key)
        self.update_columns = tuple(quote_identifier(c) for c in (update_columns or ()))
        self.batch_size = max(1, batch_size)

    @property
    def conflict_clause(self) -> str:
        if not self.update_columns:
            return f"ON CONFLICT ({self.unique_key}) DO NOTHING"
        assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in self.update_columns)
        return f"ON CONFLICT ({self.unique_key}) DO UPDATE SET {assignments}"

    def _deduplicate(
        self, records: Sequence[NormalizedRecord]
    ) -> Tuple[List[NormalizedRecord], int]:
        """
        Remove records repeating a unique key within the batch (keep first).

        Returns:
            Tuple of (deduplicated_list, duplicates_removed_count)
        """
        seen = set()
        deduplicated = []

        for record in records:
            key = record.get(self.unique_key)
            if key in seen:
                continue
            seen.add(key)
            deduplicated.append(record)

        duplicates_removed = len(records) - len(deduplicated)
        if duplicates_removed > 0:
            logger.warning(
                f"Removed {duplicates_removed} duplicate records by {self.unique_key}"
            )

        return deduplicated, duplicates_removed

    def _row(self, record: NormalizedRecord) -> Tuple[Any, ...]:
        return tuple(record.get(column) for column in self.columns)

    def _before_insert(self, cursor, records: Sequence[NormalizedRecord]) -> None:
        """Hook for work that must precede the main insert in the same transaction."""

    def _after_insert(self, cursor, records: Sequence[NormalizedRecord]) -> None:
        """Hook for work that must follow the main insert in the same transaction."""

    def load(self, records: Sequence[NormalizedRecord]) -> LoadOutcome:
        """
        Load records in chunks of batch_size inside a single transaction.

        Args:
            records: Accepted records

        Returns:
            LoadOutcome; inserted counts only rows that were actually written

        Raises:
            Exception: Any database error, after the transaction rolled back
        """
        outcome = LoadOutcome(attempted=len(records))

        if not records:
            logger.info("No records to load")
            outcome.committed = True
            return outcome

        logger.info(f"Loading {len(records)} records into {self.table}")
        unique_records, _ = self._deduplicate(records)

        try:
            with self.db.transaction() as cursor:
                self._before_insert(cursor, unique_records)

                for start in range(0, len(unique_records), self.batch_size):
                    batch = unique_records[start : start + self.batch_size]
                    inserted, updated = self.db.batch_insert(
                        cursor,
                        self.table,
                        self.columns,
                        [self._row(record) for record in batch],
                        self.conflict_clause,
                    )
                    outcome.inserted += inserted
                    outcome.updated += updated
                    outcome.batches += 1
                    logger.debug(
                        f"Batch {outcome.batches}: {inserted} inserted, {updated} updated"
                    )

                self._after_insert(cursor, unique_records)
        except Exception as e:
            logger.error(f"Failed to load {self.table}, transaction rolled back: {e}")
            raise

        outcome.skipped = outcome.attempted - outcome.inserted - outcome.updated
        outcome.committed = True

        logger.info(
            f"Successfully loaded {self.table}: {outcome.inserted} inserted, "
            f"{outcome.updated} updated, {outcome.skipped} skipped"
        )
        return outcome


class StudentLoader(TableLoader):
    """
    Loads student records keyed on email.

    In the same transaction it creates missing departments and enrolls each
    student into the named course when that course exists.
    """

    COLUMNS = ("first_name", "last_name", "email", "phone", "enrollment_year")

    ENROLL_QUERY = """
        INSERT INTO enrollments (student_id, course_id, grade)
        SELECT s.student_id, c.course_id, v.grade
        FROM (VALUES %s) AS v (email, course_name, grade), students s, courses c
        WHERE s.email = v.email AND c.course_name = v.course_name
        ON CONFLICT (student_id, course_id) DO NOTHING
        RETURNING enrollment_id;
    """

    def __init__(self, db, batch_size: int = 100, update_existing: bool = False):
        super().__init__(
            db,
            table="students",
            columns=self.COLUMNS,
            unique_key="email",
            update_columns=("first_name", "last_name", "phone", "enrollment_year")
            if update_existing else None,
            batch_size=batch_size,
        )

    def _before_insert(self, cursor, records: Sequence[NormalizedRecord]) -> None:
        """Create departments if they don't exist."""
        departments = sorted({r.get("department") for r in records if r.get("department")})

        if not departments:
            logger.debug("No departments to create")
            return

        inserted, _ = self.db.batch_insert(
            cursor,
            "departments",
            ("department_name",),
            [(name,) for name in departments],
            "ON CONFLICT (department_name) DO NOTHING",
        )
        logger.info(f"Ensured {len(departments)} departments exist ({inserted} new)")

    def _after_insert(self, cursor, records: Sequence[NormalizedRecord]) -> None:
        """Enroll students into courses that exist; unknown courses are skipped."""
        rows = [
            (r.get("email"), r.get("course"), r.get("grade"))
            for r in records
            if r.get("course")
        ]
        enrolled = self.db.execute_batch(cursor, self.ENROLL_QUERY, rows)
        logger.info(f"Created {enrolled} enrollments")


def load_records(
    db,
    records: Sequence[NormalizedRecord],
    table: str,
    columns: Sequence[str],
    unique_key: str,
    batch_size: int = 100,
) -> LoadOutcome:
    """
    Convenience function to load records with DO NOTHING conflict handling.
    """
    loader = TableLoader(db, table, columns, unique_key, batch_size=batch_size)
    return loader.load(records)
