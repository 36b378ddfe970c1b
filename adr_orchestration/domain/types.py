"""
adr_orchestration.domain.types -- Pure frozen dataclasses and enums.

ZERO I/O.  Follows the frozen-dataclass-with-enum-status pattern used for
every DTO in the engine; ORM models convert to and from these via
``to_dto()`` / ``from_dto()``.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable snapshots).
    - Rule windows satisfy ``next_window_start <= next_due_date <=
      next_window_end`` when set (checked in ``Rule.__post_init__``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID

# Actor recorded on rows written by background runs.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


# =============================================================================
# Enums
# =============================================================================


class PeriodType(str, Enum):
    """Billing cadence of a vendor account."""

    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    BI_MONTHLY = "bi_monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"
    ANNUALLY = "annually"


class JobType(int, Enum):
    """Kind of work a rule schedules (vendor-facing ids)."""

    CREDENTIAL_CHECK = 1
    DOWNLOAD_INVOICE = 2


class RequestType(str, Enum):
    """Kind of vendor API call recorded in the execution ledger."""

    CREDENTIAL_CHECK = "credential_check"  # AttemptLogin
    DOCUMENT_DOWNLOAD = "document_download"  # DownloadInvoice
    PERIODIC_RECHECK = "periodic_recheck"  # status poll

    @property
    def vendor_request_type_id(self) -> int | None:
        """ADRRequestTypeId sent on the ingest endpoint (None for polls)."""
        return {
            RequestType.CREDENTIAL_CHECK: 1,
            RequestType.DOCUMENT_DOWNLOAD: 2,
        }.get(self)


class JobStatus(str, Enum):
    """Job lifecycle status.  See ``domain.lifecycle`` for transitions."""

    PENDING = "pending"
    CREDENTIAL_CHECK_IN_PROGRESS = "credential_check_in_progress"
    CREDENTIAL_VERIFIED = "credential_verified"
    CREDENTIAL_FAILED = "credential_failed"
    SCRAPE_IN_PROGRESS = "scrape_in_progress"
    SCRAPE_REQUESTED = "scrape_requested"
    SCRAPE_FAILED = "scrape_failed"
    STATUS_CHECK_IN_PROGRESS = "status_check_in_progress"
    COMPLETED = "completed"  # Terminal: document retrieved
    NEEDS_REVIEW = "needs_review"  # Terminal: ambiguous, human attention
    NO_INVOICE_FOUND = "no_invoice_found"  # Terminal: window closed, nothing found
    FAILED = "failed"  # Terminal: retry budget exhausted or permanent rejection
    CANCELLED = "cancelled"  # Terminal: missed window / operator


class ExclusionType(str, Enum):
    """Which phases a blacklist entry blocks."""

    ALL = "all"
    CREDENTIAL_CHECK = "credential_check"
    DOWNLOAD = "download"


class StatusCheckMode(str, Enum):
    CATCH_UP = "catch_up"  # Jobs dispatched before today (minus delay)
    CHECK_ALL = "check_all"  # Every outstanding job, operator action
    TODAY = "today"  # Jobs dispatched today, final pass of a run


class FailureKind(str, Enum):
    TRANSIENT = "transient"  # Timeouts, 5xx: retried on a later run
    PERMANENT = "permanent"  # 4xx, invalid credential: no automatic retry


# =============================================================================
# Entity DTOs
# =============================================================================


@dataclass(frozen=True)
class Account:
    """Snapshot of a tracked vendor account."""

    account_id: UUID
    vm_account_id: int
    vm_account_number: str
    interface_account_id: str | None = None
    client_name: str | None = None
    primary_vendor_code: str | None = None
    master_vendor_code: str | None = None
    credential_id: int | None = None
    period_type: str | None = None
    expected_next_date: date | None = None
    historical_billing_status: str | None = None
    is_deleted: bool = False


@dataclass(frozen=True)
class Rule:
    """Scheduling rule for one (account, job type)."""

    rule_id: UUID
    account_id: UUID
    job_type: JobType
    period_type: str | None
    period_days: int | None = None
    day_of_month: int | None = None
    next_due_date: date | None = None
    next_window_start: date | None = None
    next_window_end: date | None = None
    window_days_before: int | None = None
    window_days_after: int | None = None
    is_enabled: bool = True
    priority: int = 0
    is_manually_overridden: bool = False
    needs_review: bool = False
    review_reason: str | None = None
    last_successful_download_date: date | None = None

    def __post_init__(self) -> None:
        if (
            self.next_due_date is not None
            and self.next_window_start is not None
            and self.next_window_end is not None
            and not (self.next_window_start <= self.next_due_date <= self.next_window_end)
        ):
            raise ValueError(
                f"Rule {self.rule_id}: window {self.next_window_start}..{self.next_window_end} "
                f"does not contain due date {self.next_due_date}"
            )


@dataclass(frozen=True)
class Job:
    """One billing period of work for one account."""

    job_id: UUID
    account_id: UUID
    billing_period_start: date
    billing_period_end: date
    status: JobStatus
    rule_id: UUID | None = None
    job_type: JobType = JobType.DOWNLOAD_INVOICE
    expected_due_date: date | None = None
    vendor_status_id: int | None = None
    vendor_status_description: str | None = None
    vendor_index_id: int | None = None
    retry_count: int = 0
    is_manual_request: bool = False
    error_message: str | None = None
    credential_verified_at: datetime | None = None
    scrape_requested_date: date | None = None
    scraping_completed_at: datetime | None = None
    last_status_check_at: datetime | None = None
    is_deleted: bool = False


@dataclass(frozen=True)
class Execution:
    """One recorded vendor call attempt (append-only ledger row)."""

    execution_id: UUID
    job_id: UUID
    request_type: RequestType
    execution_date: date  # UTC day the attempt belongs to
    started_at: datetime
    completed_at: datetime | None = None
    is_success: bool | None = None  # None while the call is in flight
    http_status: int | None = None
    vendor_status_id: int | None = None
    vendor_status_description: str | None = None
    vendor_index_id: int | None = None
    error_message: str | None = None
    request_payload: str | None = None
    response_payload: str | None = None


@dataclass(frozen=True)
class BlacklistEntry:
    """Exclusion filter; any criterion that is set may match."""

    entry_id: UUID
    exclusion_type: ExclusionType
    primary_vendor_code: str | None = None
    master_vendor_code: str | None = None
    vm_account_id: int | None = None
    vm_account_number: str | None = None
    credential_id: int | None = None
    is_active: bool = True
    effective_start_date: date | None = None
    effective_end_date: date | None = None
    reason: str | None = None


@dataclass(frozen=True)
class AccountRecord:
    """One account as delivered by the external account feed."""

    vm_account_id: int
    vm_account_number: str
    interface_account_id: str | None = None
    client_name: str | None = None
    primary_vendor_code: str | None = None
    master_vendor_code: str | None = None
    credential_id: int | None = None
    period_type: str | None = None
    expected_next_date: date | None = None
    historical_billing_status: str | None = None
    day_of_month: int | None = None


# =============================================================================
# Step results
# =============================================================================


@dataclass(frozen=True)
class SyncResult:
    total: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    rules_created: int = 0
    rules_updated: int = 0
    errors: int = 0
    error_messages: tuple[str, ...] = ()


@dataclass(frozen=True)
class JobCreationResult:
    created: int = 0
    skipped: int = 0
    blacklisted: int = 0
    needs_review: int = 0
    errors: int = 0
    created_job_ids: tuple[UUID, ...] = ()
    error_messages: tuple[str, ...] = ()

    def __add__(self, other: JobCreationResult) -> JobCreationResult:
        return JobCreationResult(
            created=self.created + other.created,
            skipped=self.skipped + other.skipped,
            blacklisted=self.blacklisted + other.blacklisted,
            needs_review=self.needs_review + other.needs_review,
            errors=self.errors + other.errors,
            created_job_ids=self.created_job_ids + other.created_job_ids,
            error_messages=self.error_messages + other.error_messages,
        )


@dataclass(frozen=True)
class PhaseResult:
    """Counters for one batch (or a whole step) of a vendor-facing phase.

    ``succeeded`` / ``failed`` mean credentials verified / failed, scrapes
    requested / failed, or statuses checked / failed depending on phase.
    """

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    blacklisted: int = 0
    completed: int = 0
    needs_review: int = 0
    no_invoice_found: int = 0
    still_pending: int = 0
    terminal_failures: int = 0
    errors: int = 0
    error_messages: tuple[str, ...] = field(default=())

    def __add__(self, other: PhaseResult) -> PhaseResult:
        return PhaseResult(
            processed=self.processed + other.processed,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
            blacklisted=self.blacklisted + other.blacklisted,
            completed=self.completed + other.completed,
            needs_review=self.needs_review + other.needs_review,
            no_invoice_found=self.no_invoice_found + other.no_invoice_found,
            still_pending=self.still_pending + other.still_pending,
            terminal_failures=self.terminal_failures + other.terminal_failures,
            errors=self.errors + other.errors,
            error_messages=self.error_messages + other.error_messages,
        )


@dataclass(frozen=True)
class StaleJobsResult:
    found: int = 0
    cancelled: int = 0
    rules_advanced: int = 0
    errors: int = 0


# =============================================================================
# Orchestration runs
# =============================================================================


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.CANCELLED, RunStatus.COMPLETED, RunStatus.FAILED)


class RunStep(str, Enum):
    """Pipeline steps in execution order."""

    SYNC = "sync"
    CREATE_JOBS = "create_jobs"
    STATUS_CHECK = "status_check"
    CREDENTIAL_VERIFICATION = "credential_verification"
    SCRAPING = "scraping"
    FINAL_STATUS_CHECK = "final_status_check"


@dataclass(frozen=True)
class OrchestrationRun:
    """Persisted audit record of one run (see ``OrchestrationRunRecorder``)."""

    request_id: str
    status: RunStatus
    requested_at: datetime
    requested_by: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    current_step: str | None = None
    current_progress: str | None = None
    error_message: str | None = None
    counters: dict[str, int | float | None] = field(default_factory=dict)
