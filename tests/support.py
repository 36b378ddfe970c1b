"""
Builders and fakes shared by the ADR orchestration test suite.

Builders add ORM rows to a session and flush; callers commit when another
session (the pipeline, the run recorder) has to see the rows.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Callable
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from adr_orchestration.domain.types import ExclusionType, FailureKind, JobStatus, JobType
from adr_orchestration.domain.vendor_status import VendorResponse, VendorStatus, classify_failure
from adr_orchestration.models.account import AccountModel, RuleModel
from adr_orchestration.models.configuration import BlacklistModel
from adr_orchestration.models.job import JobModel
from adr_orchestration.services.vendor_client import VendorRequest

TEST_ACTOR_ID = UUID("00000000-0000-0000-0000-00000000abcd")

TODAY = date(2026, 1, 15)
NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

# Vendor status ids used across scenarios.
STILL_PROCESSING = VendorStatus.SENT_TO_AI.value
COMPLETE = VendorStatus.COMPLETE.value
NEEDS_REVIEW = VendorStatus.NEEDS_HUMAN_REVIEW.value
INVALID_CREDENTIAL = VendorStatus.INVALID_CREDENTIAL_ID.value
CANNOT_CONNECT_TO_AI = VendorStatus.CANNOT_CONNECT_TO_AI.value
INSERTED = VendorStatus.INSERTED.value

_account_ids = itertools.count(10_000)


def wait_for_recorded(recorder, request_id: str, timeout: float = 10.0):
    """Poll the run recorder until the audit row of ``request_id`` is terminal.

    The worker publishes the live status before it writes the audit row.
    """
    deadline = time.monotonic() + timeout
    while True:
        run = recorder.get_run(request_id)
        if run.status.is_terminal or time.monotonic() >= deadline:
            return run
        time.sleep(0.01)


# =============================================================================
# Row builders
# =============================================================================


def add_account(
    session: Session,
    *,
    vm_account_id: int | None = None,
    vm_account_number: str | None = None,
    credential_id: int | None = 700,
    primary_vendor_code: str | None = "ATT",
    master_vendor_code: str | None = "ATT-MASTER",
    period_type: str | None = "Monthly",
    expected_next_date: date | None = None,
    historical_billing_status: str | None = None,
    interface_account_id: str | None = None,
    is_deleted: bool = False,
) -> AccountModel:
    vm_account_id = vm_account_id if vm_account_id is not None else next(_account_ids)
    account = AccountModel(
        vm_account_id=vm_account_id,
        vm_account_number=vm_account_number or f"ACC-{vm_account_id}",
        interface_account_id=interface_account_id,
        client_name="Acme Holdings",
        primary_vendor_code=primary_vendor_code,
        master_vendor_code=master_vendor_code,
        credential_id=credential_id,
        period_type=period_type,
        expected_next_date=expected_next_date,
        historical_billing_status=historical_billing_status,
        is_deleted=is_deleted,
        created_by_id=TEST_ACTOR_ID,
    )
    session.add(account)
    session.flush()
    return account


def add_rule(
    session: Session,
    account: AccountModel,
    *,
    period_type: str | None = "monthly",
    next_due_date: date | None = date(2026, 1, 15),
    next_window_start: date | None = date(2026, 1, 10),
    next_window_end: date | None = date(2026, 1, 20),
    day_of_month: int | None = 15,
    period_days: int | None = 30,
    window_days_before: int | None = 5,
    window_days_after: int | None = 5,
    is_enabled: bool = True,
    priority: int = 0,
    is_manually_overridden: bool = False,
    last_successful_download_date: date | None = None,
) -> RuleModel:
    rule = RuleModel(
        account_id=account.id,
        job_type=JobType.DOWNLOAD_INVOICE.value,
        period_type=period_type,
        period_days=period_days,
        day_of_month=day_of_month,
        next_due_date=next_due_date,
        next_window_start=next_window_start,
        next_window_end=next_window_end,
        window_days_before=window_days_before,
        window_days_after=window_days_after,
        is_enabled=is_enabled,
        priority=priority,
        is_manually_overridden=is_manually_overridden,
        needs_review=False,
        last_successful_download_date=last_successful_download_date,
        is_deleted=False,
        created_by_id=TEST_ACTOR_ID,
    )
    session.add(rule)
    session.flush()
    return rule


def add_job(
    session: Session,
    account: AccountModel,
    *,
    rule: RuleModel | None = None,
    status: JobStatus = JobStatus.PENDING,
    billing_period_start: date = date(2026, 1, 10),
    billing_period_end: date = date(2026, 1, 20),
    expected_due_date: date | None = date(2026, 1, 15),
    retry_count: int = 0,
    scrape_requested_date: date | None = None,
    is_manual_request: bool = False,
) -> JobModel:
    job = JobModel(
        account_id=account.id,
        rule_id=rule.id if rule is not None else None,
        job_type=JobType.DOWNLOAD_INVOICE.value,
        billing_period_start=billing_period_start,
        billing_period_end=billing_period_end,
        expected_due_date=expected_due_date,
        status=status.value,
        retry_count=retry_count,
        scrape_requested_date=scrape_requested_date,
        is_manual_request=is_manual_request,
        is_deleted=False,
        created_by_id=TEST_ACTOR_ID,
    )
    session.add(job)
    session.flush()
    return job


def add_blacklist_entry(
    session: Session,
    exclusion_type: ExclusionType = ExclusionType.ALL,
    *,
    is_active: bool = True,
    effective_start_date: date | None = None,
    effective_end_date: date | None = None,
    **criteria,
) -> BlacklistModel:
    entry = BlacklistModel(
        exclusion_type=exclusion_type.value,
        is_active=is_active,
        effective_start_date=effective_start_date,
        effective_end_date=effective_end_date,
        reason="test exclusion",
        is_deleted=False,
        created_by_id=TEST_ACTOR_ID,
        **criteria,
    )
    session.add(entry)
    session.flush()
    return entry


# =============================================================================
# Vendor responses
# =============================================================================


def vendor_response(status_id: int | None = INSERTED, index_id: int | None = 5001) -> VendorResponse:
    """A 2xx answer carrying ``status_id``, flagged the way the client flags it."""
    status = VendorStatus.from_code(status_id)
    is_error = status is not None and status.is_error
    description = status.name.replace("_", " ").title() if status is not None else None
    return VendorResponse(
        accepted=True,
        http_status=200,
        index_id=index_id,
        status_id=status_id,
        status_description=description,
        is_error=is_error,
        is_final=status is not None and status.is_final,
        failure_kind=(classify_failure(200, status) or FailureKind.TRANSIENT) if is_error else None,
        error_message=description if is_error else None,
        response_payload=f'{{"IndexId": {index_id}, "StatusId": {status_id}}}',
    )


def http_failure(http_status: int) -> VendorResponse:
    return VendorResponse(
        accepted=False,
        http_status=http_status,
        is_error=True,
        failure_kind=classify_failure(http_status, None),
        error_message=f"HTTP {http_status}: upstream error",
        response_payload="upstream error",
    )


def transport_failure(message: str = "ReadTimeout: timed out") -> VendorResponse:
    return VendorResponse.transport_failure(message)


# =============================================================================
# Fake vendor client
# =============================================================================


Scripted = VendorResponse | list[VendorResponse] | Callable[..., VendorResponse]


class FakeVendorClient:
    """Scripted ``VendorClient``.

    Answers are looked up per job id, falling back to the default of the
    call kind.  A list is consumed one answer per call (the last answer
    repeats); a callable receives the request or job id.  Calls are
    recorded under a lock because phases fan out across threads.
    """

    def __init__(
        self,
        submit_default: Scripted | None = None,
        status_default: Scripted | None = None,
    ):
        self.submit_default: Scripted = submit_default or vendor_response(INSERTED)
        self.status_default: Scripted = status_default or vendor_response(STILL_PROCESSING)
        self.submit_responses: dict[UUID, Scripted] = {}
        self.status_responses: dict[UUID, Scripted] = {}
        self.submitted: list[VendorRequest] = []
        self.polled: list[UUID] = []
        self._lock = threading.Lock()

    def submit(self, request: VendorRequest) -> VendorResponse:
        with self._lock:
            self.submitted.append(request)
            scripted = self.submit_responses.get(request.job_id, self.submit_default)
            return self._resolve(scripted, request)

    def get_status(self, job_id: UUID) -> VendorResponse:
        with self._lock:
            self.polled.append(job_id)
            scripted = self.status_responses.get(job_id, self.status_default)
            return self._resolve(scripted, job_id)

    @staticmethod
    def _resolve(scripted: Scripted, arg) -> VendorResponse:
        if isinstance(scripted, list):
            return scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if callable(scripted):
            return scripted(arg)
        return scripted

    def submitted_for(self, job_id: UUID) -> list[VendorRequest]:
        with self._lock:
            return [r for r in self.submitted if r.job_id == job_id]
