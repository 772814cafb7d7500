"""
Database Connectivity Check

Opens the configured PostgreSQL pool, reports the server time and closes it
again. Exits with status 1 when the database cannot be reached.

Usage:
    python -m scripts.check_connection
"""

import logging
import sys
from typing import Any

from config.settings import Settings
from db.connection import DatabaseConnection
from etl.run_etl import setup_logging

logger = logging.getLogger(__name__)


def check_connection(settings: Settings) -> Any:
    """Connect with the configured retry policy and return the server time."""
    db = DatabaseConnection.from_settings(settings)
    try:
        db.initialize()
        rows = db.execute_query("SELECT NOW();")
    finally:
        db.close_all()
    return rows[0][0]


def main() -> None:
    settings = Settings(validate=False)
    setup_logging(log_file=None, error_log_file=None, level=settings.LOG_LEVEL)

    try:
        settings.validate()
        server_time = check_connection(settings)
    except Exception as e:
        logger.error(f"Error connecting to database: {e}")
        sys.exit(1)

    logger.info(f"Connected to PostgreSQL. Database time: {server_time}")
    sys.exit(0)


if __name__ == "__main__":
    main()
