"""End-to-end tests for the pipeline orchestrator and CLI entry point."""

import pytest

from config.settings import Settings
from etl import run_etl
from etl.datasets import DATASETS
from etl.extract import CsvSource, STATUS_SYNCED
from etl.run_etl import ETLOrchestrator, RunState, RunSummary, build_orchestrator, main, parse_args

from conftest import FakeSource, student_row


def _students(source, fake_db):
    return ETLOrchestrator(DATASETS["students"], source, fake_db)


class TestStudentRun:

    def test_loads_valid_rows_and_reports_every_row(self, fake_db, student_rows):
        source = FakeSource(student_rows)
        summary = _students(source, fake_db).run()

        assert summary.state is RunState.DONE
        assert summary.succeeded
        assert summary.accepted_rows == 3
        assert summary.rejected_rows == 1
        assert summary.inserted_rows == 3
        assert summary.quality_passed
        assert fake_db.commits == 1
        assert fake_db.initialized and fake_db.closed
        assert source.status_writes == [
            (2, STATUS_SYNCED),
            (3, STATUS_SYNCED),
            (4, STATUS_SYNCED),
            (5, "Error: Credits: Integer must be at most 10"),
        ]
        assert summary.validity_rate == 75.0
        assert summary.error_rate == 25.0

    def test_already_synced_rows_are_a_no_op(self, fake_db):
        rows = [student_row(2, status=STATUS_SYNCED), student_row(3, status=STATUS_SYNCED)]
        source = FakeSource(rows)
        summary = _students(source, fake_db).run()

        assert summary.state is RunState.DONE
        assert summary.skipped_rows == 2
        assert fake_db.insert_calls == 0
        assert source.status_writes == []

    def test_no_accepted_rows_only_writes_errors(self, fake_db):
        rows = [student_row(2, email="nope"), student_row(3, name="")]
        source = FakeSource(rows)
        summary = _students(source, fake_db).run()

        assert summary.state is RunState.DONE
        assert fake_db.insert_calls == 0
        assert source.status_writes == [
            (2, "Error: Email: Invalid email format"),
            (3, "Error: Name: Name is required"),
        ]

    def test_empty_source(self, fake_db):
        summary = _students(FakeSource([]), fake_db).run()

        assert summary.state is RunState.DONE
        assert summary.total_rows == 0
        assert fake_db.closed

    def test_load_failure_fails_run_without_feedback(self, fake_db, student_rows):
        fake_db.fail_on_insert = "students"
        source = FakeSource(student_rows)
        summary = _students(source, fake_db).run()

        assert summary.state is RunState.FAILED
        assert not summary.succeeded
        assert summary.error == "insert into students failed"
        assert fake_db.rollbacks == 1
        assert fake_db.rows("students") == []
        assert source.status_writes == []
        assert fake_db.closed

    def test_extract_failure_fails_run(self, fake_db):
        source = FakeSource([], error=ConnectionError("sheet unavailable"))
        summary = _students(source, fake_db).run()

        assert summary.state is RunState.FAILED
        assert summary.error == "sheet unavailable"
        assert fake_db.closed

    def test_quality_failure_does_not_fail_run(self, fake_db, student_rows):
        fake_db.query_results.append(("GROUP BY", [("alice@uni.edu", 2)]))
        summary = _students(FakeSource(student_rows), fake_db).run()

        assert summary.state is RunState.DONE
        assert summary.quality_passed is False

    def test_rerun_after_sync_changes_nothing(self, fake_db, student_rows):
        _students(FakeSource(student_rows), fake_db).run()
        before = fake_db.rows("students")

        # Same rows still marked pending, e.g. the status write was lost
        summary = _students(FakeSource(student_rows), fake_db).run()

        assert summary.inserted_rows == 0
        assert fake_db.rows("students") == before


class TestTitanicRun:

    def test_csv_end_to_end(self, fake_db, titanic_csv):
        source = CsvSource(str(titanic_csv))
        summary = ETLOrchestrator(DATASETS["titanic"], source, fake_db, batch_size=2).run()

        assert summary.state is RunState.DONE
        assert summary.accepted_rows == 3
        assert summary.rejected_rows == 1
        assert summary.inserted_rows == 3
        assert summary.quality_report.checks["rowCount"]["valid"]
        assert summary.quality_passed
        assert sorted(fake_db.tables["titanic"]) == [1, 2, 3]
        assert fake_db.tables["titanic"][3]["age"] is None


def test_summary_rates_without_rows():
    summary = RunSummary(dataset="students")
    assert summary.validity_rate == 0.0
    assert summary.error_rate == 0.0


def test_parse_args():
    args = parse_args(["--dataset", "titanic", "--source", "csv", "--no-cache"])
    assert args.dataset == "titanic"
    assert args.source == "CSV"
    assert args.no_cache


def test_build_orchestrator_for_csv_dataset(monkeypatch, titanic_csv):
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/etl")
    monkeypatch.setenv("SOURCE_TYPE", "SHEET")
    settings = Settings()

    orchestrator = build_orchestrator(settings, "titanic", path=str(titanic_csv), use_cache=False)

    assert isinstance(orchestrator.source, CsvSource)
    assert orchestrator.source.path == str(titanic_csv)
    assert orchestrator.source.cache.enabled is False
    assert not orchestrator.db.is_initialized


def test_build_orchestrator_rejects_unsupported_source(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/etl")
    with pytest.raises(ValueError, match="does not support JSON"):
        build_orchestrator(Settings(), "netflix", source_type="JSON")


class TestMain:

    @pytest.fixture(autouse=True)
    def environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/etl")
        monkeypatch.delenv("SOURCE_TYPE", raising=False)
        monkeypatch.setattr(run_etl, "setup_logging", lambda *args, **kwargs: None)

    def _orchestrator(self, monkeypatch, state):
        class Stub:
            def run(self):
                return RunSummary(dataset="students", state=state)

        captured = {}

        def build(settings, dataset_name, **kwargs):
            captured.update(kwargs, dataset=dataset_name)
            return Stub()

        monkeypatch.setattr(run_etl, "build_orchestrator", build)
        return captured

    def test_success_exits_zero(self, monkeypatch):
        captured = self._orchestrator(monkeypatch, RunState.DONE)

        with pytest.raises(SystemExit) as excinfo:
            main(["--dataset", "students", "--source", "json"])

        assert excinfo.value.code == 0
        assert captured["dataset"] == "students"
        assert captured["source_type"] == "JSON"
        assert captured["use_cache"] is True

    def test_failed_run_exits_one(self, monkeypatch):
        self._orchestrator(monkeypatch, RunState.FAILED)

        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 1

    def test_configuration_error_exits_one(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL")
        monkeypatch.delenv("DB_USER", raising=False)
        monkeypatch.delenv("DB_PASSWORD", raising=False)
        self._orchestrator(monkeypatch, RunState.DONE)

        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 1
