"""
VendorPhase -- Shared batch flow of the vendor-facing phases.

Contract:
    ``select_candidates(today)`` returns the ordered ids of the jobs this
    phase should process.  The caller chunks them and hands each chunk to
    ``process_batch(job_ids, today, checkpoint)``, which runs three stages:

        1. claim    -- lock the jobs, re-check status and blacklist, claim a
                       ledger row and mark the job in progress (sequential,
                       SAVEPOINT per job), then call ``checkpoint``.
        2. call     -- fan the vendor calls out over a bounded thread pool.
                       No database access happens in this stage.
        3. apply    -- map each response onto the job and complete its
                       ledger row (sequential, SAVEPOINT per job).

Architecture: adr_orchestration/services.  Subclasses implement
    ``select_candidates``, ``claim_job``, ``call_vendor`` and ``apply``.

Invariants enforced:
    - Flushes, never commits.  ``checkpoint`` is the caller's hook to commit
      the claims before any paid call is issued; it defaults to a flush.
    - One job's failure is contained in its SAVEPOINT and counted in
      ``errors``; the batch continues.
    - Transitions go through ``ensure_transition``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from adr_config.schema import OrchestrationSettings
from adr_kernel.domain.clock import Clock, SystemClock
from adr_kernel.exceptions import UnknownPeriodTypeError
from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.billing_period import RuleScheduler
from adr_orchestration.domain.lifecycle import ensure_transition
from adr_orchestration.domain.types import (
    SYSTEM_ACTOR_ID,
    ExclusionType,
    FailureKind,
    JobStatus,
    PhaseResult,
    RequestType,
)
from adr_orchestration.domain.vendor_status import VendorResponse
from adr_orchestration.models.account import AccountModel
from adr_orchestration.models.job import JobModel
from adr_orchestration.services.blacklist import BlacklistFilter
from adr_orchestration.services.fanout import fan_out
from adr_orchestration.services.ledger import ExecutionLedger
from adr_orchestration.services.vendor_client import VendorClient, VendorRequest

logger = get_logger("orchestration.phase")


@dataclass(frozen=True)
class ClaimedCall:
    """A job whose vendor call is cleared to go out in this batch.

    ``execution_id`` is None when the call is made without a ledger row
    (a repeated status poll on the same day).
    """

    job_id: UUID
    execution_id: UUID | None
    request: VendorRequest | None = None


class VendorPhase(ABC):
    phase_name: str = "phase"
    request_type: RequestType
    exclusion: ExclusionType | None = None
    candidate_statuses: frozenset[JobStatus] = frozenset()

    def __init__(
        self,
        session: Session,
        vendor_client: VendorClient,
        settings: OrchestrationSettings,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        ledger: ExecutionLedger | None = None,
        blacklist: BlacklistFilter | None = None,
        scheduler: RuleScheduler | None = None,
    ):
        self._session = session
        self._client = vendor_client
        self._settings = settings
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._ledger = ledger or ExecutionLedger(session, self._clock)
        self._blacklist = blacklist
        self._scheduler = scheduler or RuleScheduler()
        self._detail_level = logging.INFO if settings.enable_detailed_logging else logging.DEBUG

    # -------------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def select_candidates(self, today: date) -> list[UUID]:
        """Ordered ids of the jobs to process."""

    @abstractmethod
    def claim_job(self, job: JobModel, account: AccountModel, today: date) -> ClaimedCall | None:
        """Claim the ledger slot and mark the job in progress, or skip (None)."""

    @abstractmethod
    def call_vendor(self, call: ClaimedCall) -> VendorResponse:
        """Issue the vendor call.  Runs in a worker thread: no session use."""

    @abstractmethod
    def apply(
        self, job: JobModel, call: ClaimedCall, response: VendorResponse, today: date,
    ) -> PhaseResult:
        """Map the response onto the job."""

    # -------------------------------------------------------------------------
    # Batch flow
    # -------------------------------------------------------------------------

    def load_blacklist(self, today: date) -> BlacklistFilter | None:
        if self.exclusion is not None and self._blacklist is None:
            self._blacklist = BlacklistFilter.load(self._session, today)
        return self._blacklist

    def process_batch(
        self,
        job_ids: Sequence[UUID],
        today: date,
        checkpoint: Callable[[], None] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> PhaseResult:
        self.load_blacklist(today)
        claimed, result = self._claim_batch(job_ids, today)
        (checkpoint or self._session.flush)()

        responses = fan_out(
            claimed,
            self.call_vendor,
            self._settings.max_parallel_requests,
            on_done=on_progress,
        )
        result = result + self._apply_batch(claimed, responses, today)

        logger.info(
            f"{self.phase_name}_batch_processed",
            extra={
                "jobs": len(job_ids),
                "calls": len(claimed),
                "succeeded": result.succeeded,
                "failed": result.failed,
                "skipped": result.skipped,
                "blacklisted": result.blacklisted,
                "errors": result.errors,
            },
        )
        return result

    def _claim_batch(
        self, job_ids: Sequence[UUID], today: date,
    ) -> tuple[list[ClaimedCall], PhaseResult]:
        rows = self._session.execute(
            select(JobModel, AccountModel)
            .join(AccountModel, JobModel.account_id == AccountModel.id)
            .where(JobModel.id.in_(list(job_ids)))
            .with_for_update(of=JobModel)
        ).all()
        by_id = {job.id: (job, account) for job, account in rows}

        claimed: list[ClaimedCall] = []
        skipped = blacklisted = errors = 0
        messages: list[str] = []

        for job_id in job_ids:
            pair = by_id.get(job_id)
            if pair is None:
                skipped += 1
                continue
            job, account = pair
            if job.is_deleted or JobStatus(job.status) not in self.candidate_statuses:
                # Moved on since selection (another run or an operator).
                skipped += 1
                continue
            if self._is_blacklisted(account):
                blacklisted += 1
                logger.log(
                    self._detail_level,
                    f"{self.phase_name}_job_blacklisted",
                    extra={"job_id": str(job_id), "account_id": str(account.id)},
                )
                continue
            try:
                with self._session.begin_nested():
                    call = self.claim_job(job, account, today)
            except Exception as exc:
                logger.exception(
                    f"{self.phase_name}_claim_failed", extra={"job_id": str(job_id)},
                )
                errors += 1
                messages.append(f"Job {job_id}: {exc}")
                continue
            if call is None:
                skipped += 1
            else:
                claimed.append(call)

        return claimed, PhaseResult(
            skipped=skipped,
            blacklisted=blacklisted,
            errors=errors,
            error_messages=tuple(messages),
        )

    def _apply_batch(
        self,
        claimed: Sequence[ClaimedCall],
        responses: Sequence[VendorResponse],
        today: date,
    ) -> PhaseResult:
        total = PhaseResult()
        for call, response in zip(claimed, responses):
            try:
                with self._session.begin_nested():
                    job = self._session.get(JobModel, call.job_id)
                    outcome = self.apply(job, call, response, today)
                    if call.execution_id is not None:
                        self._ledger.complete(call.execution_id, response, self._actor_id)
                    job.updated_by_id = self._actor_id
            except Exception as exc:
                logger.exception(
                    f"{self.phase_name}_apply_failed", extra={"job_id": str(call.job_id)},
                )
                outcome = PhaseResult(
                    processed=1, errors=1, error_messages=(f"Job {call.job_id}: {exc}",),
                )
            total = total + outcome
        self._session.flush()
        return total

    # -------------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------------

    def _is_blacklisted(self, account: AccountModel) -> bool:
        if self.exclusion is None or self._blacklist is None:
            return False
        return self._blacklist.is_blacklisted(account.to_dto(), self.exclusion)

    def _transition(self, job: JobModel, to_status: JobStatus) -> None:
        ensure_transition(job.id, JobStatus(job.status), to_status)
        job.status = to_status.value

    def _record_vendor_fields(self, job: JobModel, response: VendorResponse) -> None:
        if response.status_id is not None:
            job.vendor_status_id = response.status_id
            job.vendor_status_description = response.status_description
        if response.index_id is not None:
            job.vendor_index_id = response.index_id

    def _apply_failure(
        self, job: JobModel, response: VendorResponse, retry_status: JobStatus,
    ) -> PhaseResult:
        """Permanent -> failed.  Transient -> retry_status, or failed once the
        incremented retry count reaches ``max_retries``."""
        job.error_message = response.error_message
        self._record_vendor_fields(job, response)

        if response.failure_kind is FailureKind.PERMANENT:
            self._transition(job, JobStatus.FAILED)
            terminal = True
        else:
            job.retry_count += 1
            terminal = job.retry_count >= self._settings.max_retries
            self._transition(job, JobStatus.FAILED if terminal else retry_status)

        logger.log(
            logging.WARNING if terminal else self._detail_level,
            f"{self.phase_name}_job_failed",
            extra={
                "job_id": str(job.id),
                "retry_count": job.retry_count,
                "failure_kind": response.failure_kind,
                "http_status": response.http_status,
                "vendor_status_id": response.status_id,
                "terminal": terminal,
            },
        )
        return PhaseResult(processed=1, failed=1, terminal_failures=1 if terminal else 0)

    def _record_completion(self, job: JobModel, today: date) -> None:
        """Stamp a completed job and move its rule's download anchor."""
        job.scraping_completed_at = self._clock.now_utc()
        job.error_message = None
        rule = job.rule
        if rule is None or rule.is_deleted:
            return
        try:
            anchor = self._scheduler.download_anchor(rule.to_dto(), job.expected_due_date, today)
        except UnknownPeriodTypeError:
            anchor = job.expected_due_date or today
        rule.last_successful_download_date = anchor
        rule.updated_by_id = self._actor_id
