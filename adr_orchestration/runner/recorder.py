"""
OrchestrationRunRecorder -- Persists run bookkeeping for audit.

Contract:
    Every ``record_*`` call opens its own session, writes one change to the
    run's ``adr_orchestration_runs`` row and commits.  Bookkeeping never
    shares a transaction with job processing.

Invariants enforced:
    - A failure while recording is logged (``run_record_failed``) and
      swallowed.  Losing audit metadata must never fail a run.
    - ``mark_interrupted_runs()`` closes rows a previous process left
      queued, running or cancelling.  The worker calls it on start.
"""

from __future__ import annotations

from collections.abc import Callable, Collection

from sqlalchemy import select
from sqlalchemy.orm import Session

from adr_kernel.domain.clock import Clock, SystemClock
from adr_kernel.exceptions import RunNotFoundError
from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.types import SYSTEM_ACTOR_ID, OrchestrationRun, RunStatus, RunStep
from adr_orchestration.models.run import OrchestrationRunModel
from adr_orchestration.runner.types import RunRequest, RunResults

logger = get_logger("orchestration.recorder")

INTERRUPTED_MESSAGE = "Interrupted by restart"


def result_columns(results: RunResults) -> dict[str, int | float | None]:
    """Flatten step results onto the run row's counter columns."""
    columns: dict[str, int | float | None] = {
        "sync_duration_seconds": results.sync_duration_seconds,
        "create_jobs_duration_seconds": results.create_jobs_duration_seconds,
        "credential_duration_seconds": results.credential_duration_seconds,
        "scraping_duration_seconds": results.scraping_duration_seconds,
        "status_check_duration_seconds": results.status_check_duration_seconds,
    }
    if results.sync is not None:
        columns.update(
            sync_accounts_inserted=results.sync.inserted,
            sync_accounts_updated=results.sync.updated,
            sync_accounts_total=results.sync.total,
        )
    if results.job_creation is not None:
        columns.update(
            jobs_created=results.job_creation.created,
            jobs_skipped=results.job_creation.skipped,
            jobs_blacklisted=results.job_creation.blacklisted,
        )
    if results.credential_verification is not None:
        columns.update(
            credentials_verified=results.credential_verification.succeeded,
            credentials_failed=results.credential_verification.failed,
        )
    if results.scraping is not None:
        columns.update(
            scraping_requested=results.scraping.succeeded,
            scraping_failed=results.scraping.failed,
        )
    checks = results.all_status_checks
    if checks is not None:
        columns.update(
            statuses_checked=checks.processed,
            statuses_completed=checks.completed,
            statuses_failed=checks.failed,
        )
    return columns


class OrchestrationRunRecorder:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Writes (never raise)
    # -------------------------------------------------------------------------

    def record_queued(self, request: RunRequest) -> None:
        def _insert(session: Session) -> None:
            session.add(
                OrchestrationRunModel(
                    request_id=request.request_id,
                    requested_by=request.requested_by,
                    requested_at=request.requested_at or self._clock.now_utc(),
                    status=RunStatus.QUEUED.value,
                    created_by_id=SYSTEM_ACTOR_ID,
                )
            )

        self._write("queued", request.request_id, _insert)

    def record_started(self, request_id: str) -> None:
        self._update(
            "started", request_id,
            status=RunStatus.RUNNING.value, started_at=self._clock.now_utc(),
        )

    def record_progress(self, request_id: str, step: RunStep, current: int, total: int) -> None:
        self._update(
            "progress", request_id,
            current_step=step.value,
            current_progress=f"{current}/{total}",
            total_items=total,
            processed_items=current,
        )

    def record_step_result(self, request_id: str, results: RunResults) -> None:
        self._update("step_result", request_id, **result_columns(results))

    def record_cancel_requested(self, request_id: str) -> None:
        self._update(
            "cancel_requested", request_id,
            only_from=RunStatus.RUNNING, status=RunStatus.CANCELLING.value,
        )

    def record_completed(self, request_id: str, results: RunResults) -> None:
        self._update(
            "completed", request_id,
            status=RunStatus.COMPLETED.value,
            completed_at=self._clock.now_utc(),
            **result_columns(results),
        )

    def record_failed(
        self, request_id: str, error_message: str, results: RunResults | None = None,
    ) -> None:
        columns = result_columns(results) if results is not None else {}
        self._update(
            "failed", request_id,
            status=RunStatus.FAILED.value,
            completed_at=self._clock.now_utc(),
            error_message=error_message,
            **columns,
        )

    def record_cancelled(
        self, request_id: str, reason: str | None = None, results: RunResults | None = None,
    ) -> None:
        columns = result_columns(results) if results is not None else {}
        self._update(
            "cancelled", request_id,
            status=RunStatus.CANCELLED.value,
            completed_at=self._clock.now_utc(),
            error_message=reason,
            **columns,
        )

    def mark_interrupted_runs(self, keep: Collection[str] = ()) -> int:
        """Fail runs left open by a previous process.  Returns the count.

        ``keep`` lists request ids this process already accepted.
        """
        marked = 0

        def _mark(session: Session) -> None:
            nonlocal marked
            rows = session.execute(
                select(OrchestrationRunModel).where(
                    OrchestrationRunModel.status.in_([
                        RunStatus.QUEUED.value,
                        RunStatus.RUNNING.value,
                        RunStatus.CANCELLING.value,
                    ])
                )
            ).scalars().all()
            rows = [row for row in rows if row.request_id not in keep]
            now = self._clock.now_utc()
            for row in rows:
                row.status = RunStatus.FAILED.value
                row.completed_at = now
                row.error_message = INTERRUPTED_MESSAGE
                row.updated_by_id = SYSTEM_ACTOR_ID
            marked = len(rows)

        self._write("mark_interrupted", None, _mark)
        if marked:
            logger.warning("interrupted_runs_marked", extra={"count": marked})
        return marked

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_run(self, request_id: str) -> OrchestrationRun:
        """Raises RunNotFoundError for an unknown request id."""
        session = self._session_factory()
        try:
            row = self._find(session, request_id)
            if row is None:
                raise RunNotFoundError(request_id)
            return row.to_dto()
        finally:
            session.close()

    def has_run(self, request_id: str) -> bool:
        session = self._session_factory()
        try:
            return self._find(session, request_id) is not None
        finally:
            session.close()

    def list_recent(self, limit: int = 10) -> list[OrchestrationRun]:
        session = self._session_factory()
        try:
            rows = session.execute(
                select(OrchestrationRunModel)
                .order_by(OrchestrationRunModel.requested_at.desc())
                .limit(limit)
            ).scalars().all()
            return [row.to_dto() for row in rows]
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _find(session: Session, request_id: str) -> OrchestrationRunModel | None:
        return session.execute(
            select(OrchestrationRunModel).where(OrchestrationRunModel.request_id == request_id)
        ).scalar_one_or_none()

    def _update(
        self,
        action: str,
        request_id: str,
        only_from: RunStatus | None = None,
        **columns: object,
    ) -> None:
        def _apply(session: Session) -> None:
            row = self._find(session, request_id)
            if row is None:
                raise RunNotFoundError(request_id)
            if only_from is not None and row.status != only_from.value:
                return
            for name, value in columns.items():
                setattr(row, name, value)
            row.updated_by_id = SYSTEM_ACTOR_ID

        self._write(action, request_id, _apply)

    def _write(
        self, action: str, request_id: str | None, fn: Callable[[Session], None],
    ) -> None:
        session = self._session_factory()
        try:
            fn(session)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "run_record_failed",
                extra={"action": action, "run_request_id": request_id},
            )
        finally:
            session.close()
