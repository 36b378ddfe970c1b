"""
OrchestrationQueue -- Bounded run queue drained by one background worker.

Contract:
    ``enqueue()`` accepts a ``RunRequest`` and blocks while the queue is at
    capacity (backpressure; requests are never dropped).  A single daemon
    thread takes requests in FIFO order and hands each to the runner, so
    exactly one run is ``running`` at any time.

Architecture: adr_orchestration/runner.  The live status of every run is
    held in a ``RunStatusRegistry``; the durable audit row is written by
    ``OrchestrationRunRecorder``.

Run states:
    queued -> running -> completed | failed | cancelled
    running -> cancelling -> cancelled      (user cancel of an active run)
    queued -> cancelled                     (cancelled before it started)

Invariants enforced:
    - A run cancelled while queued never starts; the queued->running
      transition and the queued->cancelled transition are both atomic
      check-and-set operations on the registry.
    - running -> completed is also a check-and-set: a run that reached
      ``cancelling`` after its last checkpoint ends ``cancelled`` and keeps
      the results it produced.
    - A request id is accepted once; a live or recorded duplicate is
      rejected before anything is queued.
    - A shutdown-sourced cancellation marks the run cancelled and ends the
      worker loop.  A user cancellation ends only that run.
    - An unexpected exception fails the run with its message; the partial
      results already published are kept.  The worker backs off for
      ``error_backoff_seconds`` and continues.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import timedelta
from queue import Empty, Full, Queue

from adr_config.schema import QueueSettings
from adr_kernel.domain.clock import Clock, SystemClock
from adr_kernel.exceptions import (
    DuplicateRunError,
    QueueStoppedError,
    RunCancelledError,
    RunNotFoundError,
)
from adr_kernel.logging_config import LogContext, get_logger

from adr_orchestration.domain.types import RunStatus, RunStep
from adr_orchestration.runner.cancellation import CancellationHandle, CancellationSource
from adr_orchestration.runner.pipeline import RunReporter
from adr_orchestration.runner.recorder import OrchestrationRunRecorder
from adr_orchestration.runner.status_registry import RunStatusRegistry
from adr_orchestration.runner.types import RunRequest, RunResults, RunStatusSnapshot

logger = get_logger("orchestration.queue")

Runner = Callable[[RunRequest, CancellationHandle, RunReporter], RunResults]

USER_CANCEL_REASON = "cancelled by user"
SHUTDOWN_REASON = "host shutdown"
STOPPED_REASON = "queue stopped"
QUEUE_FULL_REASON = "not accepted: queue full"


class _Reporter:
    """Publishes one run's progress to the registry and the audit row."""

    def __init__(
        self,
        request_id: str,
        registry: RunStatusRegistry,
        recorder: OrchestrationRunRecorder,
    ):
        self._request_id = request_id
        self._registry = registry
        self._recorder = recorder

    def progress(self, step: RunStep, current: int, total: int) -> None:
        self._registry.update(
            self._request_id,
            current_step=step,
            current_progress=current,
            current_total=total,
            sub_step_progress=0,
            sub_step_total=0,
        )
        self._recorder.record_progress(self._request_id, step, current, total)

    def sub_progress(self, current: int, total: int) -> None:
        self._registry.update(
            self._request_id, sub_step_progress=current, sub_step_total=total,
        )

    def publish(self, results: RunResults) -> None:
        self._registry.update(self._request_id, results=results)
        self._recorder.record_step_result(self._request_id, results)


class OrchestrationQueue:
    """Bounded FIFO of run requests with one consumer thread.

    Non-goals:
        - NOT distributed: one queue per process.
        - Does NOT persist queued requests; a restart fails them via
          ``OrchestrationRunRecorder.mark_interrupted_runs()``.
    """

    def __init__(
        self,
        runner: Runner,
        recorder: OrchestrationRunRecorder,
        settings: QueueSettings | None = None,
        clock: Clock | None = None,
        registry: RunStatusRegistry | None = None,
    ):
        self._runner = runner
        self._recorder = recorder
        self._settings = settings or QueueSettings()
        self._clock = clock or SystemClock()
        self._registry = registry or RunStatusRegistry()
        self._queue: Queue[RunRequest] = Queue(maxsize=self._settings.capacity)
        self._shutdown = threading.Event()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Fail runs a previous process left open, then start the worker."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stopped.clear()
        self._shutdown.clear()
        self._recorder.mark_interrupted_runs(keep=self._registry.request_ids())
        self._thread = threading.Thread(
            target=self._run_loop,
            name="adr-orchestration-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info("orchestration_queue_started", extra={"capacity": self._settings.capacity})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal shutdown, wait for the worker and cancel what is still queued.

        The active run, if any, is cancelled at its next checkpoint.
        """
        self._stopped.set()
        self._shutdown.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)

        drained = 0
        while True:
            try:
                request = self._queue.get_nowait()
            except Empty:
                break
            if self._cancel_queued(request.request_id, STOPPED_REASON):
                drained += 1
        logger.info("orchestration_queue_stopped", extra={"cancelled_queued": drained})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def registry(self) -> RunStatusRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def enqueue(self, request: RunRequest, timeout: float | None = None) -> RunStatusSnapshot:
        """Queue ``request``, waiting while the queue is full.

        Raises:
            QueueStoppedError: the queue was stopped before or while waiting.
            DuplicateRunError: a run with this request id is already known,
                live or recorded.  Nothing is queued or recorded.
            queue.Full: ``timeout`` elapsed with the queue still full.
        """
        if self._stopped.is_set():
            raise QueueStoppedError(request.request_id)
        if request.requested_at is None:
            request = replace(request, requested_at=self._clock.now_utc())

        snapshot = RunStatusSnapshot(
            request_id=request.request_id,
            requested_by=request.requested_by,
            requested_at=request.requested_at,
        )
        self._registry.register(
            snapshot, CancellationHandle(request.request_id, self._shutdown),
        )
        if self._recorder.has_run(request.request_id):
            self._registry.remove(request.request_id)
            raise DuplicateRunError(request.request_id)
        self._recorder.record_queued(request)

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._stopped.is_set():
                self._reject(request.request_id, STOPPED_REASON)
                raise QueueStoppedError(request.request_id)
            wait = self._settings.poll_interval_seconds
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._reject(request.request_id, QUEUE_FULL_REASON)
                    raise Full(f"Orchestration queue full (capacity {self._settings.capacity})")
                wait = min(wait, remaining)
            try:
                self._queue.put(request, timeout=wait)
                break
            except Full:
                continue

        logger.info(
            "run_enqueued",
            extra={
                "run_request_id": request.request_id,
                "requested_by": request.requested_by,
                "queued": self._queue.qsize(),
            },
        )
        return snapshot

    def cancel(self, request_id: str) -> bool:
        """Cancel a queued or running run.  False if unknown or already finished."""
        if self._cancel_queued(request_id, USER_CANCEL_REASON):
            return True

        snapshot = self._registry.update_if(
            request_id,
            lambda s: s.status is RunStatus.RUNNING,
            status=RunStatus.CANCELLING,
        )
        if snapshot is None:
            return False
        handle = self._registry.handle(request_id)
        if handle is not None:
            handle.cancel(USER_CANCEL_REASON)
        self._recorder.record_cancel_requested(request_id)
        logger.info("run_cancel_requested", extra={"run_request_id": request_id})
        return True

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self, request_id: str) -> RunStatusSnapshot | None:
        return self._registry.get(request_id)

    def get_recent_statuses(self, limit: int | None = None) -> list[RunStatusSnapshot]:
        return self._registry.recent(limit or self._settings.recent_run_limit)

    def get_current_run(self) -> RunStatusSnapshot | None:
        return self._registry.current()

    def wait_for(self, request_id: str, timeout: float | None = None) -> RunStatusSnapshot:
        """Block until the run is terminal or ``timeout`` elapses.

        Raises:
            RunNotFoundError: the request id is unknown.
        """
        snapshot = self._registry.wait_for(request_id, lambda s: s.is_terminal, timeout)
        if snapshot is None:
            raise RunNotFoundError(request_id)
        return snapshot

    def cleanup_old_statuses(self) -> int:
        cutoff = self._clock.now_utc() - timedelta(hours=self._settings.status_retention_hours)
        removed = self._registry.remove_terminal_before(cutoff)
        if removed:
            logger.debug("run_statuses_cleaned", extra={"removed": removed})
        return removed

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Drain the queue until shutdown."""
        while not self._shutdown.is_set():
            try:
                request = self._queue.get(timeout=self._settings.poll_interval_seconds)
            except Empty:
                continue
            try:
                keep_going = self._execute(request)
            except Exception:
                logger.exception("orchestration_worker_exception")
                keep_going = True
            finally:
                self._queue.task_done()
            if not keep_going:
                break
        logger.info("orchestration_worker_exited")

    def _execute(self, request: RunRequest) -> bool:
        """Run one request.  Returns False when the worker must exit."""
        request_id = request.request_id
        if self._shutdown.is_set():
            self._cancel_queued(request_id, SHUTDOWN_REASON)
            return False

        started = self._registry.update_if(
            request_id,
            lambda s: s.status is RunStatus.QUEUED,
            status=RunStatus.RUNNING,
            started_at=self._clock.now_utc(),
        )
        if started is None:
            logger.info("run_skipped_not_queued", extra={"run_request_id": request_id})
            return True

        handle = self._registry.handle(request_id) or CancellationHandle(
            request_id, self._shutdown,
        )
        self._recorder.record_started(request_id)
        reporter = _Reporter(request_id, self._registry, self._recorder)

        try:
            with LogContext.bind(request_id=request_id):
                logger.info("run_started", extra={"requested_by": request.requested_by})
                start = time.monotonic()
                try:
                    results = self._runner(request, handle, reporter)
                except RunCancelledError as exc:
                    return self._on_cancelled(request_id, exc)
                except Exception as exc:
                    self._on_failed(request_id, exc)
                    self._shutdown.wait(timeout=self._settings.error_backoff_seconds)
                    return True

                completed = self._registry.update_if(
                    request_id,
                    lambda s: s.status is RunStatus.RUNNING,
                    status=RunStatus.COMPLETED,
                    completed_at=self._clock.now_utc(),
                    results=results,
                )
                if completed is None:
                    # Cancel arrived after the last checkpoint.
                    return self._on_late_cancel(request_id, handle, results)
                self._recorder.record_completed(request_id, results)
                logger.info(
                    "run_completed",
                    extra={"duration_seconds": round(time.monotonic() - start, 3)},
                )
                return True
        finally:
            self._registry.release_handle(request_id)
            self.cleanup_old_statuses()

    def _on_cancelled(self, request_id: str, exc: RunCancelledError) -> bool:
        shutdown = exc.source is CancellationSource.SHUTDOWN
        reason = SHUTDOWN_REASON if shutdown else (exc.reason or USER_CANCEL_REASON)
        partial = self._partial_results(request_id)
        self._finish(request_id, RunStatus.CANCELLED, error_message=reason)
        self._recorder.record_cancelled(request_id, reason, partial)
        logger.warning("run_cancelled", extra={"source": exc.source, "reason": reason})
        return not shutdown

    def _on_late_cancel(
        self, request_id: str, handle: CancellationHandle, results: RunResults,
    ) -> bool:
        reason = handle.reason or USER_CANCEL_REASON
        self._finish(request_id, RunStatus.CANCELLED, error_message=reason, results=results)
        self._recorder.record_cancelled(request_id, reason, results)
        logger.warning(
            "run_cancelled",
            extra={
                "source": CancellationSource.USER,
                "reason": reason,
                "after_last_checkpoint": True,
            },
        )
        return True

    def _on_failed(self, request_id: str, exc: Exception) -> None:
        message = f"{type(exc).__name__}: {exc}"
        partial = self._partial_results(request_id)
        self._finish(request_id, RunStatus.FAILED, error_message=message)
        self._recorder.record_failed(request_id, message, partial)
        logger.exception("run_failed", extra={"error": message})

    def _finish(
        self,
        request_id: str,
        status: RunStatus,
        error_message: str | None = None,
        results: RunResults | None = None,
    ) -> None:
        changes: dict = {"status": status, "completed_at": self._clock.now_utc()}
        if error_message is not None:
            changes["error_message"] = error_message
        if results is not None:
            changes["results"] = results
        self._registry.update(request_id, **changes)

    def _partial_results(self, request_id: str) -> RunResults:
        snapshot = self._registry.get(request_id)
        return snapshot.results if snapshot is not None else RunResults()

    def _cancel_queued(self, request_id: str, reason: str) -> bool:
        snapshot = self._registry.update_if(
            request_id,
            lambda s: s.status is RunStatus.QUEUED,
            status=RunStatus.CANCELLED,
            completed_at=self._clock.now_utc(),
            error_message=reason,
        )
        if snapshot is None:
            return False
        self._registry.release_handle(request_id)
        self._recorder.record_cancelled(request_id, reason)
        logger.info("queued_run_cancelled", extra={"run_request_id": request_id, "reason": reason})
        return True

    def _reject(self, request_id: str, reason: str) -> None:
        self._registry.remove(request_id)
        self._recorder.record_cancelled(request_id, reason)
