"""
Job lifecycle state machine.  ZERO I/O.

Pending -> credential check -> scrape request -> status polling -> terminal.
The ``*_IN_PROGRESS`` statuses mark jobs whose vendor call was issued by a
run that may have crashed; the owning phase picks them up again.  A
transition to the same status is always allowed (crash recovery re-marks).
"""

from __future__ import annotations

from adr_kernel.exceptions import InvalidJobTransitionError

from adr_orchestration.domain.types import JobStatus

S = JobStatus

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({
    S.COMPLETED,
    S.NEEDS_REVIEW,
    S.NO_INVOICE_FOUND,
    S.FAILED,
    S.CANCELLED,
})

IN_PROGRESS_STATUSES: frozenset[JobStatus] = frozenset({
    S.CREDENTIAL_CHECK_IN_PROGRESS,
    S.SCRAPE_IN_PROGRESS,
    S.STATUS_CHECK_IN_PROGRESS,
})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    S.PENDING: frozenset({S.CREDENTIAL_CHECK_IN_PROGRESS, S.CANCELLED}),
    S.CREDENTIAL_CHECK_IN_PROGRESS: frozenset({
        S.CREDENTIAL_VERIFIED, S.CREDENTIAL_FAILED, S.FAILED, S.CANCELLED,
    }),
    S.CREDENTIAL_FAILED: frozenset({S.CREDENTIAL_CHECK_IN_PROGRESS, S.FAILED, S.CANCELLED}),
    S.CREDENTIAL_VERIFIED: frozenset({S.SCRAPE_IN_PROGRESS, S.CANCELLED}),
    S.SCRAPE_IN_PROGRESS: frozenset({
        S.SCRAPE_REQUESTED, S.SCRAPE_FAILED, S.COMPLETED, S.NEEDS_REVIEW, S.FAILED, S.CANCELLED,
    }),
    S.SCRAPE_FAILED: frozenset({S.SCRAPE_IN_PROGRESS, S.FAILED, S.CANCELLED}),
    S.SCRAPE_REQUESTED: frozenset({S.STATUS_CHECK_IN_PROGRESS, S.CANCELLED}),
    S.STATUS_CHECK_IN_PROGRESS: frozenset({
        S.SCRAPE_REQUESTED,  # still processing at the vendor
        S.CREDENTIAL_VERIFIED,  # recycled for another scrape attempt
        S.COMPLETED,
        S.NEEDS_REVIEW,
        S.NO_INVOICE_FOUND,
        S.FAILED,
        S.CANCELLED,
    }),
}
for _terminal in TERMINAL_STATUSES:
    ALLOWED_TRANSITIONS[_terminal] = frozenset()


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    return from_status == to_status or to_status in ALLOWED_TRANSITIONS[from_status]


def ensure_transition(job_id, from_status: JobStatus, to_status: JobStatus) -> None:
    """Raise ``InvalidJobTransitionError`` unless the move is allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidJobTransitionError(
            str(job_id) if job_id is not None else None,
            from_status.value,
            to_status.value,
        )
