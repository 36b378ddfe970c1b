"""Tests for persisted run bookkeeping."""

from datetime import timedelta

import pytest

from adr_kernel.exceptions import RunNotFoundError

from adr_orchestration.domain.types import (
    JobCreationResult,
    PhaseResult,
    RunStatus,
    RunStep,
    SyncResult,
)
from adr_orchestration.runner.recorder import (
    INTERRUPTED_MESSAGE,
    OrchestrationRunRecorder,
    result_columns,
)
from adr_orchestration.runner.types import RunRequest, RunResults

from tests.support import NOW


@pytest.fixture
def recorder(session_factory, clock):
    return OrchestrationRunRecorder(session_factory, clock)


def _queued(recorder, request_id="run-1", **kwargs):
    request = RunRequest(request_id=request_id, requested_by="ops@example.com", **kwargs)
    recorder.record_queued(request)
    return request


class TestLifecycle:
    def test_queued_row(self, recorder):
        _queued(recorder)

        run = recorder.get_run("run-1")

        assert run.status is RunStatus.QUEUED
        assert run.requested_by == "ops@example.com"
        assert run.started_at is None

    def test_started_progress_completed(self, recorder):
        _queued(recorder)
        recorder.record_started("run-1")
        recorder.record_progress("run-1", RunStep.SCRAPING, 40, 120)

        run = recorder.get_run("run-1")
        assert run.status is RunStatus.RUNNING
        assert run.current_step == "scraping"
        assert run.current_progress == "40/120"

        results = RunResults(
            job_creation=JobCreationResult(created=3, skipped=1),
            scraping=PhaseResult(processed=3, succeeded=2, failed=1),
            scraping_duration_seconds=1.5,
        )
        recorder.record_completed("run-1", results)

        run = recorder.get_run("run-1")
        assert run.status is RunStatus.COMPLETED
        assert run.completed_at is not None
        assert run.counters["jobs_created"] == 3
        assert run.counters["scraping_requested"] == 2
        assert run.counters["scraping_failed"] == 1
        assert run.counters["scraping_duration_seconds"] == 1.5
        assert run.counters["credentials_verified"] is None

    def test_failed_keeps_error(self, recorder):
        _queued(recorder)
        recorder.record_started("run-1")

        recorder.record_failed("run-1", "OperationalError: database is locked")

        run = recorder.get_run("run-1")
        assert run.status is RunStatus.FAILED
        assert run.error_message == "OperationalError: database is locked"

    def test_cancelled_with_reason(self, recorder):
        _queued(recorder)

        recorder.record_cancelled("run-1", "cancelled by user")

        run = recorder.get_run("run-1")
        assert run.status is RunStatus.CANCELLED
        assert run.error_message == "cancelled by user"

    def test_cancel_requested_only_from_running(self, recorder):
        _queued(recorder)
        recorder.record_cancel_requested("run-1")
        assert recorder.get_run("run-1").status is RunStatus.QUEUED

        recorder.record_started("run-1")
        recorder.record_cancel_requested("run-1")
        assert recorder.get_run("run-1").status is RunStatus.CANCELLING


class TestFailureContainment:
    def test_unknown_run_update_is_logged_not_raised(self, recorder, captured_logs):
        recorder.record_started("missing")

        failures = [r for r in captured_logs() if r["message"] == "run_record_failed"]
        assert failures and failures[0]["action"] == "started"
        assert failures[0]["run_request_id"] == "missing"

    def test_duplicate_queue_row_is_contained(self, recorder, captured_logs):
        _queued(recorder)
        _queued(recorder)

        assert any(r["message"] == "run_record_failed" for r in captured_logs())
        assert recorder.get_run("run-1").status is RunStatus.QUEUED


class TestInterruptedRuns:
    def test_open_runs_are_failed(self, recorder):
        _queued(recorder, "queued")
        _queued(recorder, "running")
        recorder.record_started("running")
        _queued(recorder, "done")
        recorder.record_completed("done", RunResults())

        marked = recorder.mark_interrupted_runs()

        assert marked == 2
        assert recorder.get_run("queued").error_message == INTERRUPTED_MESSAGE
        assert recorder.get_run("running").status is RunStatus.FAILED
        assert recorder.get_run("done").status is RunStatus.COMPLETED

    def test_kept_runs_stay_open(self, recorder):
        _queued(recorder, "mine")
        _queued(recorder, "stale")

        assert recorder.mark_interrupted_runs(keep={"mine"}) == 1
        assert recorder.get_run("mine").status is RunStatus.QUEUED


class TestReads:
    def test_has_run(self, recorder):
        _queued(recorder)

        assert recorder.has_run("run-1") is True
        assert recorder.has_run("missing") is False

    def test_get_unknown_run(self, recorder):
        with pytest.raises(RunNotFoundError):
            recorder.get_run("missing")

    def test_list_recent_newest_first(self, recorder):
        for minutes, request_id in enumerate(["a", "b", "c"]):
            _queued(recorder, request_id, requested_at=NOW + timedelta(minutes=minutes))

        assert [r.request_id for r in recorder.list_recent(2)] == ["c", "b"]


def test_result_columns_combines_status_passes():
    results = RunResults(
        sync=SyncResult(total=10, inserted=2, updated=8),
        status_check=PhaseResult(processed=4, completed=1),
        final_status_check=PhaseResult(processed=2, completed=2, failed=1),
    )

    columns = result_columns(results)

    assert columns["sync_accounts_total"] == 10
    assert columns["statuses_checked"] == 6
    assert columns["statuses_completed"] == 3
    assert columns["statuses_failed"] == 1
    assert "jobs_created" not in columns
