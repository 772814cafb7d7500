"""
Data Quality Audits

Post-load checks over a loaded table: row count, duplicate keys, null
counts and value range/format conformance. Each check runs only when its
configuration is present, and the report's overall verdict combines the
row count, duplicate and data type checks.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from db.connection import quote_identifier
from etl.validator import EMAIL_REGEX

logger = logging.getLogger(__name__)

NUMERIC = "numeric"
EMAIL = "email"


@dataclass(frozen=True)
class ColumnValidation:
    """Range (numeric) or format (email) expectation for one column."""
    column: str
    type: str
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass
class QualityConfig:
    expected_row_count: Optional[int] = None
    row_count_tolerance: int = 0
    unique_column: Optional[str] = None
    required_columns: Optional[Sequence[str]] = None
    validations: Optional[Sequence[ColumnValidation]] = None


@dataclass
class QualityReport:
    table_name: str
    timestamp: str
    checks: Dict[str, Any] = field(default_factory=dict)
    passed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        report = {
            "tableName": self.table_name,
            "timestamp": self.timestamp,
            "checks": self.checks,
            "passed": self.passed,
        }
        if self.error is not None:
            report["error"] = self.error
        return report


def overall_passed(checks: Dict[str, Any]) -> bool:
    """
    Combine check results into one verdict.

    Null counts are informational and do not take part; absent checks are
    ignored.
    """
    if "rowCount" in checks and not checks["rowCount"]["valid"]:
        return False
    if "duplicates" in checks and checks["duplicates"]["hasDuplicates"]:
        return False
    if "dataTypes" in checks and not checks["dataTypes"]["valid"]:
        return False
    return True


class QualityAuditor:
    """
    Runs data quality checks against the database.
    """

    def __init__(self, db):
        self.db = db

    def _count(self, query: str, params: Optional[tuple] = None) -> int:
        rows = self.db.execute_query(query, params)
        return int(rows[0][0]) if rows else 0

    def verify_row_count(
        self, table_name: str, expected_count: int, tolerance: int = 0
    ) -> Dict[str, Any]:
        """
        Compare COUNT(*) with the expected count.

        Returns:
            Dictionary with valid, expected, actual and difference
        """
        table = quote_identifier(table_name)
        actual = self._count(f"SELECT COUNT(*) FROM {table};")
        difference = abs(actual - expected_count)
        valid = difference <= tolerance

        if valid:
            logger.info(f"Row count verification passed for {table}: {actual} rows")
        else:
            logger.error(
                f"Row count mismatch for {table}: expected {expected_count}, got {actual}"
            )

        return {
            "valid": valid,
            "expected": expected_count,
            "actual": actual,
            "difference": difference,
        }

    def check_duplicates(self, table_name: str, unique_column: str) -> Dict[str, Any]:
        """
        Find values of unique_column that appear more than once.

        Returns:
            Dictionary with hasDuplicates, count (number of duplicated values)
            and duplicates (value and occurrence count per group)
        """
        table = quote_identifier(table_name)
        column = quote_identifier(unique_column)
        rows = self.db.execute_query(
            f"SELECT {column}, COUNT(*) AS count FROM {table} "
            f"GROUP BY {column} HAVING COUNT(*) > 1;"
        )

        duplicates = [{"value": value, "count": int(count)} for value, count in rows]

        if duplicates:
            logger.warning(f"Found {len(duplicates)} duplicate records in {table}.{column}")
        else:
            logger.info(f"No duplicates found in {table}.{column}")

        return {
            "hasDuplicates": bool(duplicates),
            "count": len(duplicates),
            "duplicates": duplicates,
        }

    def check_null_values(self, table_name: str, columns: Sequence[str]) -> Dict[str, int]:
        """
        Count NULLs per column.

        Returns:
            Dictionary mapping column name to null count
        """
        table = quote_identifier(table_name)
        results = {}

        for name in columns:
            column = quote_identifier(name)
            null_count = self._count(f"SELECT COUNT(*) FROM {table} WHERE {column} IS NULL;")
            results[name] = null_count
            if null_count > 0:
                logger.warning(f"Found {null_count} null values in {table}.{column}")

        logger.info(f"Null value check completed for {table}")
        return results

    def validate_data_types(
        self, table_name: str, validations: Sequence[ColumnValidation]
    ) -> Dict[str, Any]:
        """
        Count rows outside numeric bounds or failing the email format.

        Returns:
            Dictionary with valid and the list of issues found
        """
        table = quote_identifier(table_name)
        issues: List[Dict[str, Any]] = []

        for validation in validations:
            column = quote_identifier(validation.column)

            if validation.type == NUMERIC and (
                validation.min is not None or validation.max is not None
            ):
                conditions = []
                params = []
                if validation.min is not None:
                    conditions.append(f"{column} < %s")
                    params.append(validation.min)
                if validation.max is not None:
                    conditions.append(f"{column} > %s")
                    params.append(validation.max)

                out_of_range = self._count(
                    f"SELECT COUNT(*) FROM {table} WHERE {' OR '.join(conditions)};",
                    tuple(params),
                )
                if out_of_range > 0:
                    issues.append({
                        "column": validation.column,
                        "issue": "out_of_range",
                        "count": out_of_range,
                        "message": (
                            f"{out_of_range} records have {validation.column} outside range "
                            f"[{validation.min}, {validation.max}]"
                        ),
                    })
                    logger.warning(f"{out_of_range} records in {table}.{column} are out of range")

            elif validation.type == EMAIL:
                invalid = self._count(
                    f"SELECT COUNT(*) FROM {table} WHERE {column} !~ %s;",
                    (EMAIL_REGEX.pattern,),
                )
                if invalid > 0:
                    issues.append({
                        "column": validation.column,
                        "issue": "invalid_format",
                        "count": invalid,
                        "message": (
                            f"{invalid} records have invalid email format in {validation.column}"
                        ),
                    })
                    logger.warning(
                        f"{invalid} records in {table}.{column} have invalid email format"
                    )

        logger.info(
            f"Data type validation completed for {table}: {len(issues)} issues found"
        )
        return {"valid": not issues, "issues": issues}

    def generate_report(self, table_name: str, config: QualityConfig) -> QualityReport:
        """
        Run the configured checks and build a QualityReport.

        A failing check does not raise: later checks are skipped, the error
        is recorded on the report and the report fails.
        """
        logger.info(f"Generating data quality report for {table_name}...")

        report = QualityReport(
            table_name=table_name,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

        try:
            if config.expected_row_count is not None:
                report.checks["rowCount"] = self.verify_row_count(
                    table_name, config.expected_row_count, config.row_count_tolerance
                )

            if config.unique_column:
                report.checks["duplicates"] = self.check_duplicates(
                    table_name, config.unique_column
                )

            if config.required_columns:
                report.checks["nullValues"] = self.check_null_values(
                    table_name, config.required_columns
                )

            if config.validations:
                report.checks["dataTypes"] = self.validate_data_types(
                    table_name, config.validations
                )
        except Exception as e:
            logger.error(f"Error generating quality report for {table_name}: {e}", exc_info=True)
            report.error = str(e)
            report.passed = False
            return report

        report.passed = overall_passed(report.checks)
        logger.info(
            f"Data quality report generated for {table_name}: "
            f"{'PASSED' if report.passed else 'FAILED'}"
        )
        return report
