"""
CredentialVerifier -- Phase 1: confirm stored credentials still log in.

Contract:
    Candidates are pending, credential-check-in-progress (crashed run) and
    credential-failed jobs whose retry budget is not spent.  Each candidate
    gets at most one login check per UTC day (ledger slot
    ``credential_check``).

Outcomes:
    accepted, no error  -> credential_verified (stamps credential_verified_at)
    transient failure   -> credential_failed, retry_count + 1
                           (failed once the count reaches max_retries)
    permanent failure   -> failed
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
from adr_orchestration.domain.vendor_status import VendorResponse
from adr_orchestration.models.account import AccountModel
from adr_orchestration.models.job import JobModel
from adr_orchestration.services.phase import ClaimedCall, VendorPhase
from adr_orchestration.services.vendor_client import VendorRequest

logger = get_logger("orchestration.credential_verifier")


class CredentialVerifier(VendorPhase):
    phase_name = "credential_check"
    request_type = RequestType.CREDENTIAL_CHECK
    exclusion = ExclusionType.CREDENTIAL_CHECK
    candidate_statuses = frozenset({
        JobStatus.PENDING,
        JobStatus.CREDENTIAL_CHECK_IN_PROGRESS,
        JobStatus.CREDENTIAL_FAILED,
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
            stmt = stmt.limit(self._settings.test_mode_max_credential_checks)
        job_ids = list(self._session.execute(stmt).scalars().all())
        logger.info(
            "credential_check_candidates_selected",
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
        )
        execution = self._ledger.try_claim(job.id, self.request_type, self._actor_id, today=today)
        if execution is None:
            logger.log(
                self._detail_level,
                "credential_check_already_done_today",
                extra={"job_id": str(job.id)},
            )
            return None
        self._transition(job, JobStatus.CREDENTIAL_CHECK_IN_PROGRESS)
        return ClaimedCall(job_id=job.id, execution_id=execution.execution_id, request=request)

    def call_vendor(self, call: ClaimedCall) -> VendorResponse:
        return self._client.submit(call.request)

    def apply(
        self, job: JobModel, call: ClaimedCall, response: VendorResponse, today: date,
    ) -> PhaseResult:
        if not response.succeeded:
            return self._apply_failure(job, response, JobStatus.CREDENTIAL_FAILED)

        self._record_vendor_fields(job, response)
        job.error_message = None
        job.credential_verified_at = self._clock.now_utc()
        self._transition(job, JobStatus.CREDENTIAL_VERIFIED)
        logger.log(
            self._detail_level,
            "credential_verified",
            extra={"job_id": str(job.id), "vendor_index_id": response.index_id},
        )
        return PhaseResult(processed=1, succeeded=1)
