"""
Tests for the run queue and its single worker thread.

Runners are stubs; the run recorder writes to a file-backed SQLite
database because the worker and the test thread record concurrently.
"""

import threading
import time
from queue import Full

import pytest

from adr_config.schema import QueueSettings
from adr_kernel.exceptions import DuplicateRunError, QueueStoppedError, RunNotFoundError

from adr_orchestration.domain.types import JobCreationResult, RunStatus, RunStep
from adr_orchestration.runner.queue import (
    QUEUE_FULL_REASON,
    SHUTDOWN_REASON,
    STOPPED_REASON,
    USER_CANCEL_REASON,
    OrchestrationQueue,
)
from adr_orchestration.runner.recorder import INTERRUPTED_MESSAGE, OrchestrationRunRecorder
from adr_orchestration.runner.types import RunRequest, RunResults

from tests.support import wait_for_recorded

FAST = dict(poll_interval_seconds=0.01, error_backoff_seconds=0.01)
WAIT = 10.0

pytestmark = pytest.mark.slow_threads


class GatedRunner:
    """Blocks each run until released, checking for cancellation meanwhile."""

    def __init__(self):
        self.calls: list[str] = []
        self.started = threading.Event()
        self.release = threading.Event()

    def __call__(self, request, handle, reporter):
        self.calls.append(request.request_id)
        reporter.progress(RunStep.CREATE_JOBS, 0, 4)
        reporter.publish(RunResults(job_creation=JobCreationResult(created=2)))
        self.started.set()
        while not self.release.wait(0.01):
            handle.raise_if_cancelled()
        return RunResults(job_creation=JobCreationResult(created=4))


def _instant(request, handle, reporter):
    return RunResults(job_creation=JobCreationResult(created=1))


@pytest.fixture
def recorder(file_session_factory, clock):
    return OrchestrationRunRecorder(file_session_factory, clock)


@pytest.fixture
def make_queue(recorder, clock):
    queues: list[OrchestrationQueue] = []

    def _make(runner, start=True, **overrides):
        queue = OrchestrationQueue(
            runner, recorder, QueueSettings(**{**FAST, **overrides}), clock=clock,
        )
        queues.append(queue)
        if start:
            queue.start()
        return queue

    yield _make
    for queue in queues:
        queue.stop(timeout=WAIT)


def _enqueue(queue, request_id, **kwargs):
    queue.enqueue(RunRequest(request_id=request_id, requested_by="tester", **kwargs))
    return request_id


# =============================================================================
# Happy path
# =============================================================================


class TestExecution:
    def test_run_completes_and_is_recorded(self, make_queue, recorder):
        queue = make_queue(_instant)

        _enqueue(queue, "r1")
        snapshot = queue.wait_for("r1", timeout=WAIT)

        assert snapshot.status is RunStatus.COMPLETED
        assert snapshot.results.job_creation.created == 1
        assert snapshot.completed_at is not None
        run = wait_for_recorded(recorder, "r1")
        assert run.status is RunStatus.COMPLETED
        assert run.counters["jobs_created"] == 1

    def test_runs_execute_in_fifo_order(self, make_queue):
        order: list[str] = []

        def runner(request, handle, reporter):
            order.append(request.request_id)
            return RunResults()

        queue = make_queue(runner)
        for request_id in ("a", "b", "c"):
            _enqueue(queue, request_id)
        queue.wait_for("c", timeout=WAIT)

        assert order == ["a", "b", "c"]

    def test_one_run_at_a_time(self, make_queue):
        runner = GatedRunner()
        queue = make_queue(runner)
        _enqueue(queue, "first")
        _enqueue(queue, "second")
        assert runner.started.wait(WAIT)

        assert queue.get_current_run().request_id == "first"
        assert queue.get_status("second").status is RunStatus.QUEUED
        assert queue.get_status("first").current_step is RunStep.CREATE_JOBS

        runner.release.set()
        queue.wait_for("second", timeout=WAIT)
        assert runner.calls == ["first", "second"]

    def test_failure_is_contained(self, make_queue, recorder):
        def runner(request, handle, reporter):
            if request.request_id == "bad":
                reporter.publish(RunResults(job_creation=JobCreationResult(created=3)))
                raise RuntimeError("boom")
            return RunResults()

        queue = make_queue(runner)
        _enqueue(queue, "bad")
        _enqueue(queue, "good")

        failed = queue.wait_for("bad", timeout=WAIT)
        assert failed.status is RunStatus.FAILED
        assert failed.error_message == "RuntimeError: boom"
        assert failed.results.job_creation.created == 3
        assert wait_for_recorded(recorder, "bad").counters["jobs_created"] == 3
        assert queue.wait_for("good", timeout=WAIT).status is RunStatus.COMPLETED


# =============================================================================
# Cancellation
# =============================================================================


class TestCancel:
    def test_cancel_queued_run_never_starts(self, make_queue, recorder):
        runner = GatedRunner()
        queue = make_queue(runner)
        _enqueue(queue, "first")
        _enqueue(queue, "second")
        assert runner.started.wait(WAIT)

        assert queue.cancel("second") is True
        runner.release.set()
        queue.wait_for("first", timeout=WAIT)

        snapshot = queue.get_status("second")
        assert snapshot.status is RunStatus.CANCELLED
        assert snapshot.error_message == USER_CANCEL_REASON
        assert runner.calls == ["first"]
        assert recorder.get_run("second").status is RunStatus.CANCELLED

    def test_cancel_running_run(self, make_queue, recorder):
        runner = GatedRunner()
        queue = make_queue(runner)
        _enqueue(queue, "r1")
        assert runner.started.wait(WAIT)

        assert queue.cancel("r1") is True
        snapshot = queue.wait_for("r1", timeout=WAIT)

        assert snapshot.status is RunStatus.CANCELLED
        assert snapshot.error_message == USER_CANCEL_REASON
        assert snapshot.results.job_creation.created == 2
        run = wait_for_recorded(recorder, "r1")
        assert run.status is RunStatus.CANCELLED
        assert run.counters["jobs_created"] == 2

    def test_cancel_after_last_checkpoint_ends_cancelled(self, make_queue, recorder):
        started = threading.Event()
        release = threading.Event()

        def runner(request, handle, reporter):
            handle.raise_if_cancelled()
            started.set()
            release.wait(WAIT)
            return RunResults(job_creation=JobCreationResult(created=5))

        queue = make_queue(runner)
        _enqueue(queue, "r1")
        assert started.wait(WAIT)

        assert queue.cancel("r1") is True
        assert queue.get_status("r1").status is RunStatus.CANCELLING
        release.set()
        snapshot = queue.wait_for("r1", timeout=WAIT)

        assert snapshot.status is RunStatus.CANCELLED
        assert snapshot.error_message == USER_CANCEL_REASON
        assert snapshot.results.job_creation.created == 5
        run = wait_for_recorded(recorder, "r1")
        assert run.status is RunStatus.CANCELLED
        assert run.counters["jobs_created"] == 5

    def test_worker_continues_after_user_cancel(self, make_queue):
        runner = GatedRunner()
        queue = make_queue(runner)
        _enqueue(queue, "r1")
        assert runner.started.wait(WAIT)
        queue.cancel("r1")
        queue.wait_for("r1", timeout=WAIT)

        runner.release.set()
        _enqueue(queue, "r2")

        assert queue.wait_for("r2", timeout=WAIT).status is RunStatus.COMPLETED

    def test_cancel_finished_or_unknown_run(self, make_queue):
        queue = make_queue(_instant)
        _enqueue(queue, "r1")
        queue.wait_for("r1", timeout=WAIT)

        assert queue.cancel("r1") is False
        assert queue.cancel("missing") is False


# =============================================================================
# Duplicate request ids
# =============================================================================


class TestDuplicateRequests:
    def test_duplicate_of_running_run_is_rejected(self, make_queue, recorder):
        runner = GatedRunner()
        queue = make_queue(runner)
        _enqueue(queue, "r1")
        assert runner.started.wait(WAIT)

        with pytest.raises(DuplicateRunError):
            _enqueue(queue, "r1")

        assert queue.get_status("r1").status is RunStatus.RUNNING
        assert queue.get_current_run().request_id == "r1"
        runner.release.set()
        assert queue.wait_for("r1", timeout=WAIT).status is RunStatus.COMPLETED
        assert runner.calls == ["r1"]
        assert wait_for_recorded(recorder, "r1").status is RunStatus.COMPLETED

    def test_finished_run_id_cannot_be_reused(self, make_queue):
        queue = make_queue(_instant)
        _enqueue(queue, "r1")
        queue.wait_for("r1", timeout=WAIT)

        with pytest.raises(DuplicateRunError):
            _enqueue(queue, "r1")

        assert queue.get_status("r1").status is RunStatus.COMPLETED

    def test_id_already_in_the_audit_table_is_rejected(self, make_queue, recorder):
        recorder.record_queued(RunRequest(request_id="r1"))
        recorder.record_completed("r1", RunResults())
        queue = make_queue(_instant, start=False)

        with pytest.raises(DuplicateRunError):
            _enqueue(queue, "r1")

        assert queue.get_status("r1") is None
        assert recorder.get_run("r1").status is RunStatus.COMPLETED


# =============================================================================
# Capacity and shutdown
# =============================================================================


class TestCapacityAndShutdown:
    def test_full_queue_times_out(self, make_queue, recorder):
        queue = make_queue(_instant, start=False, capacity=1)
        _enqueue(queue, "r1")

        with pytest.raises(Full):
            queue.enqueue(RunRequest(request_id="r2"), timeout=0.05)

        assert queue.get_status("r2") is None
        run = recorder.get_run("r2")
        assert run.status is RunStatus.CANCELLED
        assert run.error_message == QUEUE_FULL_REASON

    def test_enqueue_blocks_until_space(self, make_queue):
        runner = GatedRunner()
        queue = make_queue(runner, capacity=1)
        _enqueue(queue, "running")
        assert runner.started.wait(WAIT)
        _enqueue(queue, "queued")

        threading.Timer(0.1, runner.release.set).start()
        start = time.monotonic()
        _enqueue(queue, "waited")

        assert time.monotonic() - start >= 0.05
        assert queue.wait_for("waited", timeout=WAIT).status is RunStatus.COMPLETED

    def test_stopped_queue_rejects_requests(self, make_queue):
        queue = make_queue(_instant)
        queue.stop(timeout=WAIT)

        with pytest.raises(QueueStoppedError):
            _enqueue(queue, "late")

    def test_stop_cancels_queued_requests(self, make_queue, recorder):
        queue = make_queue(_instant, start=False)
        _enqueue(queue, "r1")

        queue.stop(timeout=WAIT)

        assert queue.get_status("r1").error_message == STOPPED_REASON
        assert recorder.get_run("r1").status is RunStatus.CANCELLED

    def test_shutdown_cancels_active_run_and_ends_worker(self, make_queue, recorder):
        runner = GatedRunner()
        queue = make_queue(runner)
        _enqueue(queue, "r1")
        assert runner.started.wait(WAIT)

        queue.stop(timeout=WAIT)

        assert not queue.is_running
        snapshot = queue.get_status("r1")
        assert snapshot.status is RunStatus.CANCELLED
        assert snapshot.error_message == SHUTDOWN_REASON
        assert recorder.get_run("r1").error_message == SHUTDOWN_REASON

    def test_start_fails_runs_left_open_by_previous_process(self, make_queue, recorder):
        recorder.record_queued(RunRequest(request_id="orphan"))
        recorder.record_started("orphan")

        make_queue(_instant)

        run = recorder.get_run("orphan")
        assert run.status is RunStatus.FAILED
        assert run.error_message == INTERRUPTED_MESSAGE


# =============================================================================
# Status views
# =============================================================================


class TestStatusViews:
    def test_recent_statuses_newest_first(self, make_queue, clock):
        queue = make_queue(_instant)
        for request_id in ("a", "b", "c"):
            _enqueue(queue, request_id)
            clock.advance(60)
        queue.wait_for("c", timeout=WAIT)

        assert [s.request_id for s in queue.get_recent_statuses(2)] == ["c", "b"]

    def test_cleanup_removes_old_terminal_statuses(self, make_queue, clock):
        queue = make_queue(_instant)
        _enqueue(queue, "r1")
        queue.wait_for("r1", timeout=WAIT)
        queue.stop(timeout=WAIT)

        clock.advance_days(2)

        assert queue.cleanup_old_statuses() == 1
        assert queue.get_status("r1") is None

    def test_wait_for_unknown_run(self, make_queue):
        queue = make_queue(_instant)
        with pytest.raises(RunNotFoundError):
            queue.wait_for("missing", timeout=0.01)
