"""
Data Extraction

Source adapters that turn a Google Sheet, CSV file or JSON export into an
ordered list of RawRow objects. Each adapter maps source columns onto named
fields, so validation never depends on the column layout of the source.
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

import gspread
import pandas as pd
from google.oauth2.service_account import Credentials

from etl.cache import FileCache
from etl.records import RawRow

logger = logging.getLogger(__name__)

# Status sentinels stored in the sheet's status column
STATUS_PENDING = "Pending Sync"
STATUS_SYNCED = "Synced"
STATUS_ERROR_PREFIX = "Error: "
STATUS_MESSAGE_LIMIT = 100

# Positional layout of the enrollment sheet (columns A..J)
STUDENT_SHEET_COLUMNS = (
    "timestamp",
    "student_name",
    "email",
    "phone",
    "department",
    "course",
    "credits",
    "grade",
    "year",
    "status",
)

# Header names used by the CSV/JSON exports of the same form
STUDENT_HEADER_MAP = {
    "Timestamp": "timestamp",
    "Student Name": "student_name",
    "Email Address": "email",
    "Phone Number": "phone",
    "Department": "department",
    "Course Name": "course",
    "Credits": "credits",
    "Grade": "grade",
    "Year Of Study": "year",
}


def error_status(message: str) -> str:
    return f"{STATUS_ERROR_PREFIX}{message[:STATUS_MESSAGE_LIMIT]}"


def _to_text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def dataframe_to_rows(
    df: pd.DataFrame,
    header_map: Optional[Mapping[str, str]] = None,
    first_index: int = 1,
) -> List[RawRow]:
    """
    Convert a DataFrame into RawRows with named fields.

    Args:
        df: Extracted data, one row per record
        header_map: Source header -> field name. Without one, headers are
            lower-cased and trimmed.
        first_index: Index assigned to the first data row

    Returns:
        RawRows in source order; fully empty rows are dropped
    """
    if df.empty:
        return []

    df = df.copy()
    df.columns = [str(column).strip() for column in df.columns]
    if header_map:
        df = df.rename(columns=dict(header_map))
    else:
        df.columns = [column.lower() for column in df.columns]

    df = df.astype(object).where(pd.notna(df), None)
    df = df.dropna(how="all")

    rows = []
    for position, record in zip(df.index, df.to_dict(orient="records")):
        fields = {name: _to_text(value) for name, value in record.items()}
        rows.append(RawRow(index=int(position) + first_index, fields=fields))
    return rows


class Source(ABC):
    """
    Base class for row sources.

    extract() returns the rows, going through the cache when one is set.
    Sources with a status column also accept per-row status write-back.
    """

    supports_status = False
    source_type = ""

    def __init__(self, cache: Optional[FileCache] = None):
        self.cache = cache

    @property
    @abstractmethod
    def identifier(self) -> str:
        """Stable name of the underlying sheet or file, used as the cache key."""

    @abstractmethod
    def _read_rows(self) -> List[RawRow]:
        """Read all rows from the source."""

    @property
    def cache_key(self) -> str:
        return f"{self.source_type}_{self.identifier}"

    def extract(self) -> List[RawRow]:
        """
        Extract rows from the source.

        Raises:
            Exception: Any I/O failure of the underlying source
        """
        if self.cache is not None:
            cached = self.cache.get(self.cache_key)
            if cached is not None:
                logger.info("Using cached data")
                return [RawRow.from_dict(item) for item in cached]

        logger.info(f"Extracting data from {self.source_type} source: {self.identifier}")
        rows = self._read_rows()
        logger.info(f"Successfully extracted {len(rows)} rows")

        if self.cache is not None:
            self.cache.set(self.cache_key, [row.to_dict() for row in rows])

        return rows

    def write_status(self, row_index: int, status: str) -> None:
        raise NotImplementedError(f"{self.source_type} source has no status column")

    def write_statuses(self, updates: Sequence[Tuple[int, str]]) -> None:
        raise NotImplementedError(f"{self.source_type} source has no status column")


class CsvSource(Source):
    """Reads a CSV file; every value is kept as text."""

    source_type = "CSV"

    def __init__(
        self,
        path: str,
        header_map: Optional[Mapping[str, str]] = None,
        cache: Optional[FileCache] = None,
    ):
        super().__init__(cache)
        self.path = path
        self.header_map = header_map

    @property
    def identifier(self) -> str:
        return self.path

    def _read_rows(self) -> List[RawRow]:
        try:
            df = pd.read_csv(self.path, dtype=str, keep_default_na=False, na_values=[""])
        except FileNotFoundError:
            logger.error(f"CSV file not found: {self.path}")
            raise
        return dataframe_to_rows(df, self.header_map)


class JsonSource(Source):
    """Reads a JSON array of objects."""

    source_type = "JSON"

    def __init__(
        self,
        path: str,
        header_map: Optional[Mapping[str, str]] = None,
        cache: Optional[FileCache] = None,
    ):
        super().__init__(cache)
        self.path = path
        self.header_map = header_map

    @property
    def identifier(self) -> str:
        return self.path

    def _read_rows(self) -> List[RawRow]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                records = json.load(f)
        except FileNotFoundError:
            logger.error(f"JSON file not found: {self.path}")
            raise

        if not isinstance(records, list):
            raise ValueError(f"Expected a JSON array of objects in {self.path}")

        # object dtype keeps integers exact when a column also holds nulls
        df = pd.DataFrame(records, dtype=object)
        return dataframe_to_rows(df, self.header_map)


class GoogleSheetsSource(Source):
    """
    Reads rows from a Google Sheet and writes status feedback back to it.

    Authenticates with a service account unless a ready gspread client is
    supplied.
    """

    SCOPES = [
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/drive.readonly",
    ]

    supports_status = True
    source_type = "SHEET"

    def __init__(
        self,
        sheet_id: str,
        credentials_path: Optional[str] = None,
        sheet_name: str = "Sheet1",
        cell_range: str = "A2:J",
        columns: Sequence[str] = STUDENT_SHEET_COLUMNS,
        status_column: str = "J",
        batch_size: int = 10,
        rate_limit_delay: float = 0.1,
        client: Optional[gspread.Client] = None,
        cache: Optional[FileCache] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            sheet_id: Google Sheet ID
            credentials_path: Path to service account JSON file
            sheet_name: Name of the sheet tab
            cell_range: A1 range holding the data rows (header excluded)
            columns: Field names for the columns of cell_range, in order
            status_column: Column letter receiving status feedback
            batch_size: Status cells written per API call
            rate_limit_delay: Seconds to wait between status batches
        """
        super().__init__(cache)
        self.sheet_id = sheet_id
        self.credentials_path = credentials_path
        self.sheet_name = sheet_name
        self.cell_range = cell_range
        self.columns = tuple(columns)
        self.status_column = status_column
        self.batch_size = max(1, batch_size)
        self.rate_limit_delay = rate_limit_delay
        self._sleep = sleep
        self._worksheet = None
        self.client = client if client is not None else self._authenticate()

    def _authenticate(self) -> gspread.Client:
        """
        Authenticate with Google Sheets API using service account.

        Raises:
            FileNotFoundError: If credentials file not found
        """
        try:
            credentials = Credentials.from_service_account_file(
                self.credentials_path, scopes=self.SCOPES
            )
            client = gspread.authorize(credentials)
            logger.info("Successfully authenticated with Google Sheets API")
            return client
        except FileNotFoundError:
            logger.error(f"Credentials file not found: {self.credentials_path}")
            raise
        except Exception as e:
            logger.error(f"Google Sheets authentication failed: {e}")
            raise

    @property
    def identifier(self) -> str:
        return self.sheet_id

    @property
    def first_row(self) -> int:
        """Sheet row number of the first row in cell_range."""
        match = re.match(r"^[A-Za-z]+(\d+)", self.cell_range)
        return int(match.group(1)) if match else 1

    @property
    def worksheet(self) -> gspread.Worksheet:
        if self._worksheet is None:
            try:
                spreadsheet = self.client.open_by_key(self.sheet_id)
                self._worksheet = spreadsheet.worksheet(self.sheet_name)
            except gspread.exceptions.SpreadsheetNotFound:
                logger.error(f"Spreadsheet not found: {self.sheet_id}")
                raise
            except gspread.exceptions.WorksheetNotFound:
                logger.error(f"Worksheet '{self.sheet_name}' not found in spreadsheet")
                raise
        return self._worksheet

    def read(self, cell_range: str) -> List[List[str]]:
        """Read raw cell values from an A1 range."""
        data = self.worksheet.get(cell_range)
        logger.info(f"Read {len(data)} rows from range {cell_range}")
        return [list(values) for values in data]

    def write(self, cell_range: str, values: List[List[str]]) -> None:
        """Write raw cell values to an A1 range."""
        self.worksheet.update(range_name=cell_range, values=values, value_input_option="RAW")

    def _read_rows(self) -> List[RawRow]:
        rows = []
        for offset, values in enumerate(self.read(self.cell_range)):
            padded = list(values[: len(self.columns)])
            padded += [None] * (len(self.columns) - len(padded))
            rows.append(
                RawRow(index=self.first_row + offset, fields=dict(zip(self.columns, padded)))
            )
        return rows

    def write_status(self, row_index: int, status: str) -> None:
        self.worksheet.update_acell(f"{self.status_column}{row_index}", status)
        logger.debug(f"Updated status of row {row_index}: {status}")

    def write_statuses(self, updates: Sequence[Tuple[int, str]]) -> None:
        """
        Write status cells in rate-limited batches.

        Args:
            updates: (row_index, status_text) pairs
        """
        if not updates:
            logger.warning("No status updates to write to Google Sheets")
            return

        logger.info(f"Preparing to batch update {len(updates)} status cells")

        for start in range(0, len(updates), self.batch_size):
            batch = updates[start : start + self.batch_size]
            data = [
                {"range": f"{self.status_column}{row_index}", "values": [[status]]}
                for row_index, status in batch
            ]
            try:
                self.worksheet.batch_update(data, value_input_option="RAW")
            except Exception as e:
                logger.error(f"Failed to update status batch starting at index {start}: {e}")
                raise

            logger.debug(f"Batch updated {len(batch)} cells (batch {start // self.batch_size + 1})")

            if start + self.batch_size < len(updates):
                self._sleep(self.rate_limit_delay)

        logger.info(f"Successfully batch updated {len(updates)} cells in Google Sheets")
