"""
ETL Pipeline Orchestrator

Coordinates the complete ETL workflow for one dataset:
- Extract rows from the configured source
- Transform and validate them
- Load accepted records into PostgreSQL in one transaction
- Audit the loaded table
- Write per-row status feedback to sources that support it
"""

import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from config.settings import SOURCE_TYPES, Settings
from db.connection import DatabaseConnection
from etl.cache import FileCache
from etl.datasets import DATASETS, Dataset, build_source, get_dataset
from etl.extract import STATUS_SYNCED, Source, error_status
from etl.load import LoadOutcome
from etl.quality import QualityAuditor, QualityReport
from etl.records import NormalizedRecord, RawRow
from etl.transform import DataTransformer, TransformResult

logger = logging.getLogger(__name__)


class RunState(Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    LOADING = "loading"
    AUDITING = "auditing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunSummary:
    """Counts and outcome of a single pipeline run."""
    dataset: str
    state: RunState = RunState.IDLE
    total_rows: int = 0
    skipped_rows: int = 0
    accepted_rows: int = 0
    rejected_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    quality_passed: Optional[bool] = None
    quality_report: Optional[QualityReport] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.DONE

    @property
    def processed_rows(self) -> int:
        return self.accepted_rows + self.rejected_rows

    @property
    def validity_rate(self) -> float:
        """Accepted rows as a percentage of validated rows."""
        if self.processed_rows == 0:
            return 0.0
        return (self.accepted_rows / self.processed_rows) * 100

    @property
    def error_rate(self) -> float:
        """Rejected rows as a percentage of validated rows."""
        if self.processed_rows == 0:
            return 0.0
        return (self.rejected_rows / self.processed_rows) * 100


class ETLOrchestrator:
    """
    Orchestrates the complete ETL pipeline.

    Workflow:
    1. Initialize database connection pool
    2. Extract rows from the source
    3. Transform and validate rows (rejections are recorded per row)
    4. Load accepted rows in one transaction
    5. Run data quality checks on the loaded table
    6. Write row status feedback back to the source

    The orchestrator owns the database lifecycle: the pool is opened at the
    start of run() and always closed before it returns.
    """

    def __init__(
        self,
        dataset: Dataset,
        source: Source,
        db: DatabaseConnection,
        batch_size: int = 100,
        auditor: Optional[QualityAuditor] = None,
    ):
        self.dataset = dataset
        self.source = source
        self.db = db
        self.batch_size = batch_size
        self.auditor = auditor or QualityAuditor(db)
        self.transformer = DataTransformer(
            dataset.validator, only_pending=source.supports_status
        )
        self.summary = RunSummary(dataset=dataset.name)

    @property
    def state(self) -> RunState:
        return self.summary.state

    def _set_state(self, state: RunState) -> None:
        logger.debug(f"Pipeline state: {self.summary.state.value} -> {state.value}")
        self.summary.state = state

    def run(self) -> RunSummary:
        """
        Execute the complete ETL pipeline.

        Returns:
            RunSummary; its state is DONE on success and FAILED after a
            fatal error, whose message is kept in summary.error
        """
        self.summary = RunSummary(dataset=self.dataset.name)
        start_time = time.monotonic()

        try:
            logger.info("=" * 60)
            logger.info(f"Starting ETL Pipeline: {self.dataset.name}")
            logger.info("=" * 60)

            self._initialize_database()
            self._execute_pipeline()
            self._set_state(RunState.DONE)

            logger.info("=" * 60)
            logger.info("ETL Pipeline Completed Successfully")
            logger.info("=" * 60)

        except Exception as e:
            logger.error(f"ETL Pipeline failed: {e}", exc_info=True)
            self.summary.error = str(e)
            self._set_state(RunState.FAILED)

        finally:
            self.db.close_all()
            self.summary.duration_seconds = time.monotonic() - start_time
            self._log_summary()

        return self.summary

    def _initialize_database(self) -> None:
        """Initialize database connection pool."""
        logger.info("Initializing database connection...")
        self.db.initialize()
        logger.info("Database connection established")

    def _execute_pipeline(self) -> None:
        # EXTRACT
        rows = self._extract()
        if not rows:
            logger.info("No data found to process.")
            return

        # TRANSFORM & VALIDATE
        result = self._transform(rows)
        feedback = [
            (rejected.row_index, error_status(rejected.message))
            for rejected in result.rejected
        ]

        if not result.accepted:
            logger.info("No valid rows to process.")
            self._write_feedback(feedback)
            return

        # LOAD
        self._load(result.accepted)

        # DATA QUALITY CHECKS
        self._audit(result.accepted)

        # FEEDBACK
        feedback.extend((record.row_index, STATUS_SYNCED) for record in result.accepted)
        self._write_feedback(feedback)

    def _extract(self) -> List[RawRow]:
        self._set_state(RunState.EXTRACTING)
        logger.info("Step 1: Extracting data...")
        rows = self.source.extract()
        self.summary.total_rows = len(rows)
        logger.info(f"Extracted {len(rows)} rows")
        return rows

    def _transform(self, rows: Sequence[RawRow]) -> TransformResult:
        self._set_state(RunState.TRANSFORMING)
        logger.info("Step 2: Transforming and validating data...")
        result = self.transformer.transform(rows)
        self.summary.skipped_rows = result.skipped
        self.summary.accepted_rows = len(result.accepted)
        self.summary.rejected_rows = len(result.rejected)
        return result

    def _load(self, records: Sequence[NormalizedRecord]) -> LoadOutcome:
        self._set_state(RunState.LOADING)
        logger.info(f"Step 3: Loading {len(records)} valid records into database...")
        loader = self.dataset.make_loader(self.db, batch_size=self.batch_size)
        outcome = loader.load(records)
        self.summary.inserted_rows = outcome.inserted
        self.summary.updated_rows = outcome.updated
        return outcome

    def _audit(self, records: Sequence[NormalizedRecord]) -> QualityReport:
        self._set_state(RunState.AUDITING)
        logger.info("Step 4: Running data quality checks...")
        report = self.auditor.generate_report(
            self.dataset.table, self.dataset.quality_config(records)
        )
        self.summary.quality_report = report
        self.summary.quality_passed = report.passed

        if report.passed:
            logger.info("All data quality checks passed")
        else:
            logger.warning(f"Data quality checks found issues: {report.to_dict()}")
        return report

    def _write_feedback(self, updates: List[Tuple[int, str]]) -> None:
        if not self.source.supports_status or not updates:
            return
        logger.info(f"Writing {len(updates)} row statuses back to the source")
        self.source.write_statuses(sorted(updates))

    def _log_summary(self) -> None:
        """Log ETL execution summary with all metrics."""
        summary = self.summary
        logger.info(f"Status: {summary.state.value}")
        logger.info(f"Duration: {summary.duration_seconds:.2f} seconds")
        logger.info(f"Total rows extracted: {summary.total_rows}")
        logger.info(f"Skipped rows (not pending): {summary.skipped_rows}")
        logger.info(f"Valid rows: {summary.accepted_rows}")
        logger.info(f"Invalid rows: {summary.rejected_rows}")
        logger.info(f"Inserted rows: {summary.inserted_rows}")
        logger.info(f"Updated rows: {summary.updated_rows}")
        if summary.quality_passed is not None:
            logger.info(f"Quality checks: {'PASSED' if summary.quality_passed else 'FAILED'}")

        if summary.processed_rows > 0:
            logger.info(f"Data validity rate: {summary.validity_rate:.2f}%")
            logger.info(f"Error rate: {summary.error_rate:.2f}%")


def build_orchestrator(
    settings: Settings,
    dataset_name: str,
    source_type: Optional[str] = None,
    path: Optional[str] = None,
    use_cache: bool = True,
) -> ETLOrchestrator:
    """Assemble source, database and orchestrator for a dataset from settings."""
    dataset = get_dataset(dataset_name)

    if source_type is None and settings.SOURCE_TYPE in dataset.source_types:
        source_type = settings.SOURCE_TYPE

    cache = FileCache.from_settings(settings)
    if not use_cache:
        cache.enabled = False

    source = build_source(dataset, settings, source_type=source_type, path=path, cache=cache)
    db = DatabaseConnection.from_settings(settings)
    return ETLOrchestrator(dataset, source, db, batch_size=settings.BATCH_SIZE)


def setup_logging(
    log_file: Optional[str] = "logs/etl.log",
    error_log_file: Optional[str] = "logs/error.log",
    level: str = "INFO",
) -> None:
    """
    Configure logging for ETL pipeline.

    Args:
        log_file: Path to log file (all levels)
        error_log_file: Path to error-only log file
        level: Console log level
    """
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers = []

    for path, file_level in ((log_file, logging.DEBUG), (error_log_file, logging.ERROR)):
        if not path:
            continue
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in handlers:
        root_logger.addHandler(handler)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Load enrollment and public datasets into PostgreSQL."
    )
    parser.add_argument(
        "--dataset", choices=sorted(DATASETS), default="students",
        help="Dataset to load (default: students)",
    )
    parser.add_argument(
        "--source", type=str.upper, choices=SOURCE_TYPES,
        help="Source type; defaults to SOURCE_TYPE when the dataset supports it",
    )
    parser.add_argument("--path", help="CSV/JSON file to read instead of the configured path")
    parser.add_argument(
        "--no-cache", action="store_true", help="Bypass the extraction cache for this run"
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for ETL pipeline."""
    args = parse_args(argv)
    settings = Settings(validate=False)
    setup_logging(settings.LOG_FILE, settings.ERROR_LOG_FILE, settings.LOG_LEVEL)

    try:
        settings.validate()
        orchestrator = build_orchestrator(
            settings,
            args.dataset,
            source_type=args.source,
            path=args.path,
            use_cache=not args.no_cache,
        )
        summary = orchestrator.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    sys.exit(0 if summary.succeeded else 1)


if __name__ == "__main__":
    main()
