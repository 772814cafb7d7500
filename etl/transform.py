"""
Data Transformation

Applies a RecordValidator to every extracted row and splits the batch into
accepted (normalized) records and rejected rows with their reasons.
A rejected row never stops the rest of the batch.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from etl.extract import STATUS_PENDING
from etl.records import NormalizedRecord, RawRow, Rejected
from etl.validator import RecordValidator

logger = logging.getLogger(__name__)


@dataclass
class TransformResult:
    """Outcome of transforming one extracted batch."""
    accepted: List[NormalizedRecord] = field(default_factory=list)
    rejected: List[Rejected] = field(default_factory=list)
    skipped: int = 0
    total: int = 0

    @property
    def processed(self) -> int:
        """Rows that went through validation (total minus skipped)."""
        return len(self.accepted) + len(self.rejected)


class DataTransformer:
    """
    Transforms raw extracted rows into validated records.

    When only_pending is set, rows whose status field is not the pending
    marker are skipped without validation; this applies to sources that
    carry a status column.
    """

    def __init__(
        self,
        validator: RecordValidator,
        only_pending: bool = False,
        status_field: str = "status",
    ):
        self.validator = validator
        self.only_pending = only_pending
        self.status_field = status_field

    def _is_pending(self, row: RawRow) -> bool:
        return row.get(self.status_field) == STATUS_PENDING

    def transform(self, rows: Sequence[RawRow]) -> TransformResult:
        """
        Validate every row.

        Args:
            rows: Extracted rows in source order

        Returns:
            TransformResult with accepted records, rejected rows and counts
        """
        result = TransformResult(total=len(rows))

        if not rows:
            logger.warning("No rows to transform")
            return result

        logger.info(f"Starting transformation of {len(rows)} rows")

        for row in rows:
            if self.only_pending and not self._is_pending(row):
                result.skipped += 1
                continue

            outcome = self.validator.validate_record(row)
            if outcome.is_valid:
                result.accepted.append(outcome.record)
            else:
                logger.warning(f"Row {row.index} validation failed: {outcome.message}")
                result.rejected.append(outcome)

        if result.skipped:
            logger.info(f"Skipped {result.skipped} rows not marked '{STATUS_PENDING}'")

        logger.info(
            f"Transformation complete: {len(result.accepted)} valid, "
            f"{len(result.rejected)} invalid"
        )
        return result


def validate_and_transform(
    rows: Sequence[RawRow], validator: RecordValidator, only_pending: bool = False
) -> TransformResult:
    """
    Convenience function to transform extracted rows.
    """
    transformer = DataTransformer(validator, only_pending=only_pending)
    return transformer.transform(rows)
