"""
ScrapeDispatcher -- Phase 2: submit document retrieval requests.

Contract:
    Candidates are credential-verified, scrape-in-progress (crashed run)
    and scrape-failed jobs whose retry budget is not spent.  At most one
    ``document_download`` call per job per UTC day.  The vendor works
    asynchronously; completion is normally observed by the StatusPoller.

Outcomes:
    accepted, final complete  -> completed
    accepted otherwise        -> scrape_requested (stamps scrape_requested_date)
    needs human review        -> needs_review
    transient failure         -> scrape_failed, retry_count + 1
                                 (failed once the count reaches max_retries)
    permanent failure         -> failed
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import select

from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.types import (
    ExclusionType,
    JobStatus,
    JobType,
    PhaseResult,
    RequestType,
)
from adr_orchestration.domain.vendor_status import VendorResponse, VendorStatus
from adr_orchestration.models.account import AccountModel
from adr_orchestration.models.job import JobModel
from adr_orchestration.services.phase import ClaimedCall, VendorPhase
from adr_orchestration.services.vendor_client import VendorRequest

logger = get_logger("orchestration.scrape_dispatcher")


class ScrapeDispatcher(VendorPhase):
    phase_name = "scrape"
    request_type = RequestType.DOCUMENT_DOWNLOAD
    exclusion = ExclusionType.DOWNLOAD
    candidate_statuses = frozenset({
        JobStatus.CREDENTIAL_VERIFIED,
        JobStatus.SCRAPE_IN_PROGRESS,
        JobStatus.SCRAPE_FAILED,
    })

    def select_candidates(self, today: date) -> list:
        stmt = (
            select(JobModel.id)
            .where(
                JobModel.status.in_([s.value for s in self.candidate_statuses]),
                JobModel.is_deleted.is_(False),
                JobModel.job_type == JobType.DOWNLOAD_INVOICE.value,
                JobModel.retry_count < self._settings.max_retries,
            )
            .order_by(JobModel.billing_period_start, JobModel.id)
        )
        if self._settings.test_mode_enabled:
            stmt = stmt.limit(self._settings.test_mode_max_scraping_jobs)
        job_ids = list(self._session.execute(stmt).scalars().all())
        logger.info(
            "scrape_candidates_selected",
            extra={"count": len(job_ids), "test_mode": self._settings.test_mode_enabled},
        )
        return job_ids

    def claim_job(self, job: JobModel, account: AccountModel, today: date) -> ClaimedCall | None:
        request = VendorRequest(
            job_id=job.id,
            account_id=account.id,
            request_type=self.request_type,
            credential_id=account.credential_id,
            start_date=job.billing_period_start,
            end_date=job.billing_period_end,
            vm_account_id=account.vm_account_id,
            interface_account_id=account.interface_account_id,
            is_last_attempt=job.billing_period_end <= today,
        )
        execution = self._ledger.try_claim(job.id, self.request_type, self._actor_id, today=today)
        if execution is None:
            logger.log(
                self._detail_level,
                "scrape_already_requested_today",
                extra={"job_id": str(job.id)},
            )
            return None
        self._transition(job, JobStatus.SCRAPE_IN_PROGRESS)
        return ClaimedCall(job_id=job.id, execution_id=execution.execution_id, request=request)

    def call_vendor(self, call: ClaimedCall) -> VendorResponse:
        return self._client.submit(call.request)

    def apply(
        self, job: JobModel, call: ClaimedCall, response: VendorResponse, today: date,
    ) -> PhaseResult:
        if response.status is VendorStatus.NEEDS_HUMAN_REVIEW:
            self._record_vendor_fields(job, response)
            job.error_message = response.error_message
            self._transition(job, JobStatus.NEEDS_REVIEW)
            logger.info("scrape_needs_review", extra={"job_id": str(job.id)})
            return PhaseResult(processed=1, needs_review=1)

        if not response.succeeded:
            return self._apply_failure(job, response, JobStatus.SCRAPE_FAILED)

        self._record_vendor_fields(job, response)
        job.error_message = None
        job.scrape_requested_date = today
        if response.is_final and response.status is VendorStatus.COMPLETE:
            self._transition(job, JobStatus.COMPLETED)
            self._record_completion(job, today)
            logger.info("scrape_completed_immediately", extra={"job_id": str(job.id)})
            return PhaseResult(processed=1, succeeded=1, completed=1)

        self._transition(job, JobStatus.SCRAPE_REQUESTED)
        logger.log(
            self._detail_level,
            "scrape_requested",
            extra={"job_id": str(job.id), "vendor_index_id": response.index_id},
        )
        return PhaseResult(processed=1, succeeded=1)
