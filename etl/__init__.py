"""
ETL Pipeline Package

Loads university enrollment rows (Google Sheets, CSV or JSON) and the public
Netflix and Titanic datasets into PostgreSQL.

Modules:
- records: Row and validation result types
- validator: Field sanitizers and per-dataset rule sets
- cache: File-backed extraction cache
- extract: Google Sheets, CSV and JSON sources
- transform: Per-row validation into accepted/rejected records
- load: Idempotent transactional batch inserts
- quality: Post-load data quality audits
- datasets: Per-dataset wiring
- run_etl: Pipeline orchestration and CLI
"""

__version__ = "1.0.0"
__author__ = "Data Engineering Team"
