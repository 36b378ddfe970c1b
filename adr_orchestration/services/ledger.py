"""
ExecutionLedger -- One vendor call per (job, request type, UTC day).

Contract:
    Every component that is about to call the vendor first claims a ledger
    row with ``try_claim()``.  The claim is a conditional INSERT against the
    unique key ``(job_id, request_type, execution_date)``: it either creates
    the row (go ahead and call) or reports that the slot is already taken
    (skip, the call was made today).  After the call the claimed row is
    filled in exactly once with ``complete()``.

Architecture: adr_orchestration/services.  Flushes, never commits.  The
    step runner commits claims BEFORE the vendor call is issued so a crash
    mid-call can never lead to a second paid call on the same day.

Invariants enforced:
    - Idempotency: the INSERT runs inside a SAVEPOINT; an IntegrityError on
      the unique key rolls back only that SAVEPOINT and means "already
      executed today".  There is no read-then-write window.
    - Append-only: ``complete()`` refuses to overwrite an outcome
      (``ExecutionAlreadyCompletedError``).
    - A failed attempt still occupies its day.  Retries happen on a later
      run day, never twice on the same day.

Failure modes:
    - IntegrityError from any constraint other than the ledger key (e.g. a
      dangling job FK) is indistinguishable here and also reads as "claimed";
      callers only claim for jobs they just loaded.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from adr_kernel.domain.clock import Clock, SystemClock, today_utc
from adr_kernel.exceptions import ExecutionAlreadyCompletedError, LedgerError
from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.types import Execution, RequestType
from adr_orchestration.domain.vendor_status import VendorResponse
from adr_orchestration.models.job import ExecutionModel

logger = get_logger("orchestration.ledger")


class ExecutionLedger:
    """Idempotency ledger over ``adr_job_executions``."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _today(self, today: date | None) -> date:
        return today if today is not None else today_utc(self._clock)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def has_executed_today(
        self, job_id: UUID, request_type: RequestType, today: date | None = None,
    ) -> bool:
        row = self._session.execute(
            select(ExecutionModel.id).where(
                ExecutionModel.job_id == job_id,
                ExecutionModel.request_type == request_type.value,
                ExecutionModel.execution_date == self._today(today),
            )
        ).first()
        return row is not None

    def executed_job_ids(
        self, job_ids: list[UUID], request_type: RequestType, today: date | None = None,
    ) -> set[UUID]:
        """Subset of ``job_ids`` that already hold today's slot."""
        if not job_ids:
            return set()
        rows = self._session.execute(
            select(ExecutionModel.job_id).where(
                ExecutionModel.job_id.in_(job_ids),
                ExecutionModel.request_type == request_type.value,
                ExecutionModel.execution_date == self._today(today),
            )
        ).scalars().all()
        return set(rows)

    def list_for_job(self, job_id: UUID) -> list[Execution]:
        rows = self._session.execute(
            select(ExecutionModel)
            .where(ExecutionModel.job_id == job_id)
            .order_by(ExecutionModel.started_at, ExecutionModel.request_type)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # -------------------------------------------------------------------------
    # Claim / complete
    # -------------------------------------------------------------------------

    def try_claim(
        self,
        job_id: UUID,
        request_type: RequestType,
        actor_id: UUID,
        request_payload: str | None = None,
        today: date | None = None,
    ) -> Execution | None:
        """Claim today's slot.  Returns None if it was already taken."""
        day = self._today(today)
        model = ExecutionModel(
            job_id=job_id,
            request_type=request_type.value,
            execution_date=day,
            started_at=self._clock.now_utc(),
            request_payload=request_payload,
            created_by_id=actor_id,
        )
        try:
            with self._session.begin_nested():
                self._session.add(model)
                self._session.flush()
        except IntegrityError:
            logger.debug(
                "execution_already_claimed",
                extra={
                    "job_id": str(job_id),
                    "request_type": request_type.value,
                    "execution_date": day,
                },
            )
            return None
        return model.to_dto()

    def complete(
        self, execution_id: UUID, response: VendorResponse, actor_id: UUID,
    ) -> Execution:
        """Record the outcome of a claimed execution (once)."""
        model = self._session.get(ExecutionModel, execution_id)
        if model is None:
            raise LedgerError(f"Unknown execution: {execution_id}")
        if model.completed_at is not None:
            raise ExecutionAlreadyCompletedError(str(execution_id))

        model.completed_at = self._clock.now_utc()
        model.is_success = response.succeeded
        model.http_status = response.http_status
        model.vendor_status_id = response.status_id
        model.vendor_status_description = response.status_description
        model.vendor_index_id = response.index_id
        model.error_message = response.error_message
        if response.request_payload is not None:
            model.request_payload = response.request_payload
        model.response_payload = response.response_payload
        model.updated_by_id = actor_id
        self._session.flush()
        return model.to_dto()

    def record(
        self,
        job_id: UUID,
        request_type: RequestType,
        response: VendorResponse,
        actor_id: UUID,
        today: date | None = None,
    ) -> Execution | None:
        """Claim and complete in one step (for calls already made).

        Returns None without writing if today's slot is taken.
        """
        claimed = self.try_claim(
            job_id, request_type, actor_id,
            request_payload=response.request_payload, today=today,
        )
        if claimed is None:
            return None
        return self.complete(claimed.execution_id, response, actor_id)
