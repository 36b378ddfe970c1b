"""
StatusPoller -- Phase 3: poll outstanding retrieval requests.

Contract:
    Modes select the candidates (all in scrape_requested or a crashed
    status_check_in_progress):

        catch_up   scrape_requested_date <= today - daily_status_check_delay_days
        check_all  every outstanding job (operator "check statuses")
        today      scrape_requested_date == today (final pass of a run)

    Status polls are free, but the ledger still keeps one
    ``periodic_recheck`` row per job per UTC day.  In catch_up and today
    mode a job already polled today is skipped; check_all polls it again
    without writing a second row.

Outcomes (vendor status):
    complete (final)            -> completed, rule download anchor recorded
    needs human review          -> needs_review
    other final error           -> retry_count + 1, recycled to
                                   credential_verified (failed when the
                                   budget is spent)
    not final, period ended     -> no_invoice_found
    not final otherwise         -> scrape_requested (still pending, retry
                                   count unchanged)
    poll itself failed          -> scrape_requested, counted as failed,
                                   retry budget untouched
"""

from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import select

from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.types import (
    JobStatus,
    PhaseResult,
    RequestType,
    StatusCheckMode,
)
from adr_orchestration.domain.vendor_status import VendorResponse, VendorStatus
from adr_orchestration.models.account import AccountModel
from adr_orchestration.models.job import JobModel
from adr_orchestration.services.phase import ClaimedCall, VendorPhase

logger = get_logger("orchestration.status_poller")


class StatusPoller(VendorPhase):
    phase_name = "status_check"
    request_type = RequestType.PERIODIC_RECHECK
    exclusion = None
    candidate_statuses = frozenset({
        JobStatus.SCRAPE_REQUESTED,
        JobStatus.STATUS_CHECK_IN_PROGRESS,
    })

    def __init__(self, *args, mode: StatusCheckMode = StatusCheckMode.CATCH_UP, **kwargs):
        super().__init__(*args, **kwargs)
        self._mode = mode

    @property
    def mode(self) -> StatusCheckMode:
        return self._mode

    def select_candidates(self, today: date) -> list:
        stmt = select(JobModel.id).where(
            JobModel.status.in_([s.value for s in self.candidate_statuses]),
            JobModel.is_deleted.is_(False),
        )
        if self._mode is StatusCheckMode.CATCH_UP:
            cutoff = today - timedelta(days=self._settings.daily_status_check_delay_days)
            stmt = stmt.where(JobModel.scrape_requested_date <= cutoff)
        elif self._mode is StatusCheckMode.TODAY:
            stmt = stmt.where(JobModel.scrape_requested_date == today)
        stmt = stmt.order_by(JobModel.scrape_requested_date, JobModel.id)

        job_ids = list(self._session.execute(stmt).scalars().all())
        logger.info(
            "status_check_candidates_selected",
            extra={"count": len(job_ids), "mode": self._mode.value},
        )
        return job_ids

    def claim_job(self, job: JobModel, account: AccountModel, today: date) -> ClaimedCall | None:
        execution = self._ledger.try_claim(job.id, self.request_type, self._actor_id, today=today)
        if execution is None and self._mode is not StatusCheckMode.CHECK_ALL:
            logger.log(
                self._detail_level,
                "status_already_checked_today",
                extra={"job_id": str(job.id)},
            )
            return None
        self._transition(job, JobStatus.STATUS_CHECK_IN_PROGRESS)
        return ClaimedCall(
            job_id=job.id,
            execution_id=execution.execution_id if execution is not None else None,
        )

    def call_vendor(self, call: ClaimedCall) -> VendorResponse:
        return self._client.get_status(call.job_id)

    def apply(
        self, job: JobModel, call: ClaimedCall, response: VendorResponse, today: date,
    ) -> PhaseResult:
        job.last_status_check_at = self._clock.now_utc()

        if not response.accepted:
            job.error_message = response.error_message
            self._transition(job, JobStatus.SCRAPE_REQUESTED)
            logger.warning(
                "status_check_failed",
                extra={
                    "job_id": str(job.id),
                    "http_status": response.http_status,
                    "error": response.error_message,
                },
            )
            return PhaseResult(processed=1, failed=1)

        self._record_vendor_fields(job, response)
        status = response.status

        if response.is_final and status is VendorStatus.COMPLETE:
            self._transition(job, JobStatus.COMPLETED)
            self._record_completion(job, today)
            logger.info("job_completed", extra={"job_id": str(job.id)})
            return PhaseResult(processed=1, succeeded=1, completed=1)

        if status is VendorStatus.NEEDS_HUMAN_REVIEW:
            job.error_message = response.status_description
            self._transition(job, JobStatus.NEEDS_REVIEW)
            logger.info("job_needs_review", extra={"job_id": str(job.id)})
            return PhaseResult(processed=1, succeeded=1, needs_review=1)

        if response.is_final:
            return self._apply_failure(job, response, JobStatus.CREDENTIAL_VERIFIED)

        if today > job.billing_period_end:
            job.scraping_completed_at = self._clock.now_utc()
            self._transition(job, JobStatus.NO_INVOICE_FOUND)
            logger.info(
                "job_no_invoice_found",
                extra={"job_id": str(job.id), "billing_period_end": job.billing_period_end},
            )
            return PhaseResult(processed=1, succeeded=1, no_invoice_found=1)

        self._transition(job, JobStatus.SCRAPE_REQUESTED)
        logger.log(
            self._detail_level,
            "job_still_pending",
            extra={"job_id": str(job.id), "vendor_status_id": response.status_id},
        )
        return PhaseResult(processed=1, succeeded=1, still_pending=1)
