"""
Typed exception hierarchy for the ADR orchestration engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Orchestration code must react to failures precisely: a cancelled run is not
a failed run, a vendor timeout is retried on a later day while a rejected
credential is not, and a duplicate job is a skip rather than an error.
Matching on message text is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, log-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        handle.raise_if_cancelled()
    except RunCancelledError as e:
        if e.source == CancellationSource.SHUTDOWN:
            ...

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AdrError (base)
    |
    +-- ConfigurationError
    |   +-- OrchestrationDisabledError
    |
    +-- AccountNotFoundError
    |
    +-- RuleError
    |   +-- UnknownPeriodTypeError
    |   +-- RuleNotFoundError
    |
    +-- JobError
    |   +-- JobNotFoundError
    |   +-- InvalidJobTransitionError
    |
    +-- LedgerError
    |   +-- ExecutionAlreadyCompletedError
    |
    +-- VendorApiError
    |   +-- VendorResponseParseError
    |
    +-- OrchestrationError
        +-- RunNotFoundError
        +-- RunCancelledError
        +-- QueueStoppedError
"""

from __future__ import annotations

from typing import Any


class AdrError(Exception):
    """
    Base exception for all ADR orchestration errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ADR_ERROR"


# Configuration


class ConfigurationError(AdrError):
    """Settings could not be loaded or are invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)


class OrchestrationDisabledError(ConfigurationError):
    """Orchestration is switched off in the active configuration."""

    code: str = "ORCHESTRATION_DISABLED"

    def __init__(self):
        super().__init__("ADR orchestration is disabled in configuration")


# Accounts


class AccountNotFoundError(AdrError):
    """Account with given ID was not found (or is soft-deleted)."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


# Rules


class RuleError(AdrError):
    """Base exception for scheduling rule errors."""

    code: str = "RULE_ERROR"


class UnknownPeriodTypeError(RuleError):
    """Rule carries a billing period type the scheduler does not know.

    Rules with an unknown period type are flagged for review and skipped;
    the scheduler never substitutes a default cadence.
    """

    code: str = "UNKNOWN_PERIOD_TYPE"

    def __init__(self, period_type: str | None, rule_id: str | None = None):
        self.period_type = period_type
        self.rule_id = rule_id
        super().__init__(
            f"Unknown billing period type {period_type!r}"
            + (f" on rule {rule_id}" if rule_id else "")
        )


class RuleNotFoundError(RuleError):
    """Rule with given ID was not found."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")


# Jobs


class JobError(AdrError):
    """Base exception for job errors."""

    code: str = "JOB_ERROR"


class JobNotFoundError(JobError):
    """Job with given ID was not found."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidJobTransitionError(JobError):
    """Requested status change is not in the job lifecycle table."""

    code: str = "INVALID_JOB_TRANSITION"

    def __init__(self, job_id: str | None, from_status: str, to_status: str):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Job {job_id}: illegal transition {from_status} -> {to_status}"
        )


# Execution ledger


class LedgerError(AdrError):
    """Base exception for execution ledger errors."""

    code: str = "LEDGER_ERROR"


class ExecutionAlreadyCompletedError(LedgerError):
    """An execution row already carries its outcome and cannot be rewritten."""

    code: str = "EXECUTION_ALREADY_COMPLETED"

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution already completed: {execution_id}")


# Vendor API


class VendorApiError(AdrError):
    """A vendor API call failed.

    ``transient`` separates timeouts / 5xx (retried on a later run, within
    the job's retry budget) from permanent rejections.
    """

    code: str = "VENDOR_API_ERROR"

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        http_status: int | None = None,
        transient: bool = True,
    ):
        self.endpoint = endpoint
        self.http_status = http_status
        self.transient = transient
        super().__init__(message)


class VendorResponseParseError(VendorApiError):
    """Vendor returned a body that could not be interpreted."""

    code: str = "VENDOR_RESPONSE_UNPARSEABLE"

    def __init__(self, endpoint: str, body: str):
        self.body = body
        super().__init__(
            f"Could not parse vendor response from {endpoint}",
            endpoint=endpoint,
            transient=False,
        )


# Orchestration runs


class OrchestrationError(AdrError):
    """Base exception for orchestration run errors."""

    code: str = "ORCHESTRATION_ERROR"


class RunNotFoundError(OrchestrationError):
    """No orchestration run is known under the given request id."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Orchestration run not found: {request_id}")


class RunCancelledError(OrchestrationError):
    """Raised at a cancellation checkpoint to unwind a run.

    ``source`` is ``"shutdown"`` when the host is stopping (the worker loop
    exits after marking the run) or ``"user"`` when an operator cancelled
    this run only.
    """

    code: str = "RUN_CANCELLED"

    def __init__(self, request_id: str, source: Any, reason: str | None = None):
        self.request_id = request_id
        self.source = source
        self.reason = reason
        super().__init__(
            f"Run {request_id} cancelled ({getattr(source, 'value', source)})"
            + (f": {reason}" if reason else "")
        )


class QueueStoppedError(OrchestrationError):
    """The orchestration queue no longer accepts requests."""

    code: str = "QUEUE_STOPPED"

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id
        super().__init__("Orchestration queue is stopped")


class DuplicateRunError(OrchestrationError):
    """A run with this request id is already known to the queue."""

    code: str = "DUPLICATE_RUN"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Orchestration run already registered: {request_id}")
