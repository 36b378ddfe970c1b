"""
adr_orchestration.domain -- Pure types, scheduling math and the job state
machine.

ZERO I/O.  All types are frozen dataclasses or enums.
"""

from adr_orchestration.domain.billing_period import (
    BillingWindow,
    PeriodSpec,
    RuleAdvance,
    RuleScheduler,
    parse_period_type,
)
from adr_orchestration.domain.lifecycle import (
    TERMINAL_STATUSES,
    can_transition,
    ensure_transition,
    is_terminal,
)
from adr_orchestration.domain.types import (
    Account,
    AccountRecord,
    BlacklistEntry,
    ExclusionType,
    Execution,
    FailureKind,
    Job,
    JobCreationResult,
    JobStatus,
    JobType,
    OrchestrationRun,
    PeriodType,
    PhaseResult,
    RequestType,
    Rule,
    RunStatus,
    RunStep,
    StaleJobsResult,
    StatusCheckMode,
    SyncResult,
)
from adr_orchestration.domain.vendor_status import VendorResponse, VendorStatus

__all__ = [
    "Account",
    "AccountRecord",
    "BillingWindow",
    "BlacklistEntry",
    "ExclusionType",
    "Execution",
    "FailureKind",
    "Job",
    "JobCreationResult",
    "JobStatus",
    "JobType",
    "OrchestrationRun",
    "PeriodSpec",
    "PeriodType",
    "PhaseResult",
    "RequestType",
    "Rule",
    "RuleAdvance",
    "RuleScheduler",
    "RunStatus",
    "RunStep",
    "StaleJobsResult",
    "StatusCheckMode",
    "SyncResult",
    "TERMINAL_STATUSES",
    "VendorResponse",
    "VendorStatus",
    "can_transition",
    "ensure_transition",
    "is_terminal",
    "parse_period_type",
]
