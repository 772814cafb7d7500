"""
Configuration Management

Loads environment variables and provides settings for the ETL pipeline.
Uses python-dotenv for local development and environment variables for production.
"""

import os
from typing import Optional
from dotenv import load_dotenv

# Load .env file for local development
load_dotenv()

SOURCE_TYPES = ("SHEET", "CSV", "JSON")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Application settings loaded from environment variables.

    Values are read when the object is constructed, so tests and the CLI
    can adjust the environment before building one.
    """

    def __init__(self, validate: bool = True):
        # Database Configuration
        self.DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
        self.DB_HOST: str = os.getenv("DB_HOST", "localhost")
        self.DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
        self.DB_NAME: str = os.getenv("DB_NAME", "etl_db")
        self.DB_USER: Optional[str] = os.getenv("DB_USER")
        self.DB_PASSWORD: Optional[str] = os.getenv("DB_PASSWORD")
        self.DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))
        self.DB_CONNECTION_TIMEOUT: int = int(os.getenv("DB_CONNECTION_TIMEOUT", "10"))
        self.DB_MAX_RETRIES: int = int(os.getenv("DB_MAX_RETRIES", "3"))
        self.DB_RETRY_DELAY: float = float(os.getenv("DB_RETRY_DELAY", "1.0"))

        # Google Sheets Configuration
        self.GOOGLE_SHEET_ID: Optional[str] = os.getenv("GOOGLE_SHEET_ID")
        self.GOOGLE_CREDENTIALS_PATH: str = os.getenv(
            "GOOGLE_CREDENTIALS_PATH", "credentials.json"
        )
        self.SHEET_NAME: str = os.getenv("SHEET_NAME", "Sheet1")
        self.SHEET_RANGE: str = os.getenv("SHEET_RANGE", "A2:J")
        self.SHEET_BATCH_SIZE: int = int(os.getenv("SHEET_BATCH_SIZE", "10"))
        self.SHEET_RATE_LIMIT_DELAY: float = float(os.getenv("SHEET_RATE_LIMIT_DELAY", "0.1"))

        # ETL Configuration
        self.SOURCE_TYPE: str = os.getenv("SOURCE_TYPE", "SHEET").upper()
        self.STUDENTS_CSV_PATH: str = os.getenv("STUDENTS_CSV_PATH", "students.csv")
        self.STUDENTS_JSON_PATH: str = os.getenv("STUDENTS_JSON_PATH", "students.json")
        self.NETFLIX_CSV_PATH: str = os.getenv("NETFLIX_CSV_PATH", "netflix.csv")
        self.TITANIC_CSV_PATH: str = os.getenv("TITANIC_CSV_PATH", "titanic.csv")
        self.BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "100"))
        self.ENABLE_CACHING: bool = _env_bool("ENABLE_CACHING", False)
        self.CACHE_EXPIRY_MINUTES: int = int(os.getenv("CACHE_EXPIRY_MINUTES", "30"))
        self.CACHE_DIR: str = os.getenv("CACHE_DIR", ".cache")

        # Logging Configuration
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FILE: str = os.getenv("LOG_FILE", "logs/etl.log")
        self.ERROR_LOG_FILE: str = os.getenv("ERROR_LOG_FILE", "logs/error.log")

        if validate:
            self.validate()

    def validate(self) -> None:
        """
        Validate that all required settings are provided.

        Raises:
            ValueError: If required settings are missing or malformed
        """
        if self.SOURCE_TYPE not in SOURCE_TYPES:
            raise ValueError(
                f"Unsupported SOURCE_TYPE '{self.SOURCE_TYPE}'. "
                f"Expected one of: {', '.join(SOURCE_TYPES)}."
            )

        # A full DSN replaces the individual credentials
        if self.DATABASE_URL:
            return

        required_fields = ["DB_USER", "DB_PASSWORD"]

        missing_fields = [
            field for field in required_fields
            if not getattr(self, field, None)
        ]

        if missing_fields:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing_fields)}. "
                f"Please check your .env file."
            )

    def require_sheet(self) -> None:
        """
        Ensure the Google Sheets settings needed by the live source are present.

        Raises:
            ValueError: If GOOGLE_SHEET_ID is not set
        """
        if not self.GOOGLE_SHEET_ID:
            raise ValueError(
                "Missing required environment variable: GOOGLE_SHEET_ID. "
                "Please check your .env file."
            )

    def __repr__(self) -> str:
        """Return string representation (excluding sensitive data)."""
        return (
            f"Settings("
            f"DB_HOST={self.DB_HOST}, "
            f"DB_NAME={self.DB_NAME}, "
            f"SOURCE_TYPE={self.SOURCE_TYPE}, "
            f"SHEET_NAME={self.SHEET_NAME}, "
            f"BATCH_SIZE={self.BATCH_SIZE}"
            f")"
        )
