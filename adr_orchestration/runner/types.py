"""
Run request, live status snapshot and per-step results of the run queue.

All frozen: the status registry swaps whole snapshots with
``dataclasses.replace`` so readers never observe a half-updated status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from adr_orchestration.domain.types import (
    JobCreationResult,
    PhaseResult,
    RunStatus,
    RunStep,
    StatusCheckMode,
    SyncResult,
)


def new_request_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class RunRequest:
    """One request to run the pipeline, with step selection flags."""

    request_id: str = field(default_factory=new_request_id)
    requested_by: str = "system"
    requested_at: datetime | None = None
    run_sync: bool = True
    run_create_jobs: bool = True
    run_credential_verification: bool = True
    run_scraping: bool = True
    run_status_check: bool = True
    status_check_mode: StatusCheckMode = StatusCheckMode.CATCH_UP

    def __post_init__(self) -> None:
        if self.status_check_mode is StatusCheckMode.TODAY:
            raise ValueError("status_check_mode must be catch_up or check_all")

    @classmethod
    def status_check_only(cls, requested_by: str = "system") -> RunRequest:
        """Operator "check statuses": poll every outstanding job, nothing else."""
        return cls(
            requested_by=requested_by,
            run_sync=False,
            run_create_jobs=False,
            run_credential_verification=False,
            run_scraping=False,
            run_status_check=True,
            status_check_mode=StatusCheckMode.CHECK_ALL,
        )


@dataclass(frozen=True)
class RunResults:
    """What the pipeline has done so far.  Steps not run stay None."""

    sync: SyncResult | None = None
    job_creation: JobCreationResult | None = None
    status_check: PhaseResult | None = None
    credential_verification: PhaseResult | None = None
    scraping: PhaseResult | None = None
    final_status_check: PhaseResult | None = None
    skipped_steps: tuple[RunStep, ...] = ()
    orchestration_disabled: bool = False
    sync_duration_seconds: float | None = None
    create_jobs_duration_seconds: float | None = None
    credential_duration_seconds: float | None = None
    scraping_duration_seconds: float | None = None
    status_check_duration_seconds: float | None = None

    @property
    def all_status_checks(self) -> PhaseResult | None:
        """Catch-up and final status passes combined."""
        if self.status_check is None and self.final_status_check is None:
            return None
        return (self.status_check or PhaseResult()) + (self.final_status_check or PhaseResult())


@dataclass(frozen=True)
class RunStatusSnapshot:
    """Live, in-memory view of one run, as served to observers."""

    request_id: str
    requested_by: str
    requested_at: datetime
    status: RunStatus = RunStatus.QUEUED
    current_step: RunStep | None = None
    current_progress: int = 0
    current_total: int = 0
    sub_step_progress: int = 0
    sub_step_total: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    results: RunResults = field(default_factory=RunResults)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def progress_text(self) -> str:
        return f"{self.current_progress}/{self.current_total}"
