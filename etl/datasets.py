"""
Dataset Definitions

Wires each supported dataset to its rule set, source column mapping,
loader and quality checks.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Sequence

from etl.cache import FileCache
from etl.extract import (
    STUDENT_HEADER_MAP,
    CsvSource,
    GoogleSheetsSource,
    JsonSource,
    Source,
)
from etl.load import StudentLoader, TableLoader
from etl.quality import ColumnValidation, QualityConfig
from etl.records import NormalizedRecord
from etl.validator import NETFLIX_RULES, STUDENT_RULES, TITANIC_RULES, FieldRule, RecordValidator


@dataclass(frozen=True)
class Dataset:
    """
    Everything the orchestrator needs to run one dataset.

    quality_config receives the accepted records of the run, so checks such
    as the expected row count can depend on what was loaded.
    """
    name: str
    table: str
    rules: Sequence[FieldRule]
    source_types: Sequence[str]
    make_loader: Callable[..., TableLoader]
    quality_config: Callable[[Sequence[NormalizedRecord]], QualityConfig]
    header_map: Optional[Mapping[str, str]] = None

    @property
    def validator(self) -> RecordValidator:
        return RecordValidator(self.rules, name=self.name)

    def csv_path(self, settings) -> str:
        return getattr(settings, f"{self.name.upper()}_CSV_PATH")

    def json_path(self, settings) -> str:
        return getattr(settings, f"{self.name.upper()}_JSON_PATH")


def _student_quality(records: Sequence[NormalizedRecord]) -> QualityConfig:
    return QualityConfig(
        unique_column="email",
        required_columns=["first_name", "last_name", "email"],
        validations=[
            ColumnValidation("email", "email"),
            ColumnValidation("enrollment_year", "numeric", min=1, max=5),
        ],
    )


def _netflix_quality(records: Sequence[NormalizedRecord]) -> QualityConfig:
    return QualityConfig(
        unique_column="show_id",
        required_columns=["show_id", "title"],
        validations=[ColumnValidation("release_year", "numeric", min=1900, max=2030)],
    )


def _titanic_quality(records: Sequence[NormalizedRecord]) -> QualityConfig:
    return QualityConfig(
        expected_row_count=len(records),
        row_count_tolerance=5,
        unique_column="passenger_id",
        required_columns=["passenger_id", "name"],
        validations=[
            ColumnValidation("survived", "numeric", min=0, max=1),
            ColumnValidation("pclass", "numeric", min=1, max=3),
            ColumnValidation("age", "numeric", min=0, max=150),
            ColumnValidation("fare", "numeric", min=0),
        ],
    )


def _table_loader(table: str, rules: Sequence[FieldRule], unique_key: str):
    columns = RecordValidator(rules).columns

    def make(db, batch_size: int = 100) -> TableLoader:
        return TableLoader(db, table, columns, unique_key, batch_size=batch_size)

    return make


DATASETS: Dict[str, Dataset] = {
    "students": Dataset(
        name="students",
        table="students",
        rules=STUDENT_RULES,
        source_types=("SHEET", "CSV", "JSON"),
        make_loader=StudentLoader,
        quality_config=_student_quality,
        header_map=STUDENT_HEADER_MAP,
    ),
    "netflix": Dataset(
        name="netflix",
        table="netflix",
        rules=NETFLIX_RULES,
        source_types=("CSV",),
        make_loader=_table_loader("netflix", NETFLIX_RULES, "show_id"),
        quality_config=_netflix_quality,
    ),
    "titanic": Dataset(
        name="titanic",
        table="titanic",
        rules=TITANIC_RULES,
        source_types=("CSV",),
        make_loader=_table_loader("titanic", TITANIC_RULES, "passenger_id"),
        quality_config=_titanic_quality,
    ),
}


def get_dataset(name: str) -> Dataset:
    try:
        return DATASETS[name]
    except KeyError:
        raise ValueError(
            f"Unknown dataset '{name}'. Expected one of: {', '.join(sorted(DATASETS))}"
        ) from None


def build_source(
    dataset: Dataset,
    settings,
    source_type: Optional[str] = None,
    path: Optional[str] = None,
    cache: Optional[FileCache] = None,
) -> Source:
    """
    Create the extraction source for a dataset.

    Raises:
        ValueError: If the dataset cannot be read from the requested source
    """
    source_type = (source_type or dataset.source_types[0]).upper()
    if source_type not in dataset.source_types:
        raise ValueError(
            f"Dataset '{dataset.name}' does not support {source_type} sources"
        )

    if source_type == "SHEET":
        settings.require_sheet()
        return GoogleSheetsSource(
            sheet_id=settings.GOOGLE_SHEET_ID,
            credentials_path=settings.GOOGLE_CREDENTIALS_PATH,
            sheet_name=settings.SHEET_NAME,
            cell_range=settings.SHEET_RANGE,
            batch_size=settings.SHEET_BATCH_SIZE,
            rate_limit_delay=settings.SHEET_RATE_LIMIT_DELAY,
            cache=cache,
        )

    if source_type == "JSON":
        return JsonSource(path or dataset.json_path(settings), dataset.header_map, cache=cache)

    return CsvSource(path or dataset.csv_path(settings), dataset.header_map, cache=cache)
