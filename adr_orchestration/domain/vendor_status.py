"""
Vendor status codes and response classification.  ZERO I/O.

The vendor API reports progress of a retrieval request as a small integer
status.  Two flags drive the job state machine: ``is_error`` (the request
did not succeed) and ``is_final`` (no further polling will change it).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from adr_orchestration.domain.types import FailureKind


class VendorStatus(int, Enum):
    INSERTED = 1
    INSERTED_WITH_PRIORITY = 2
    INVALID_CREDENTIAL_ID = 3
    CANNOT_CONNECT_TO_VCM = 4
    CANNOT_INSERT_INTO_QUEUE = 5
    SENT_TO_AI = 6
    CANNOT_CONNECT_TO_AI = 7
    CANNOT_SAVE_RESULT = 8
    NEEDS_HUMAN_REVIEW = 9
    RECEIVED_FROM_AI = 10
    COMPLETE = 11
    LOGIN_ATTEMPT_SUCCEEDED = 12
    NO_DOCUMENTS_FOUND = 13
    FAILED_TO_PROCESS_ALL_DOCUMENTS = 14
    NO_DOCUMENTS_PROCESSED = 15

    @property
    def is_error(self) -> bool:
        return self in _ERROR_STATUSES

    @property
    def is_final(self) -> bool:
        return self in _FINAL_STATUSES

    @classmethod
    def from_code(cls, code: int | None) -> VendorStatus | None:
        if code is None:
            return None
        try:
            return cls(code)
        except ValueError:
            return None


_ERROR_STATUSES = frozenset({
    VendorStatus.INVALID_CREDENTIAL_ID,
    VendorStatus.CANNOT_CONNECT_TO_VCM,
    VendorStatus.CANNOT_INSERT_INTO_QUEUE,
    VendorStatus.CANNOT_CONNECT_TO_AI,
    VendorStatus.CANNOT_SAVE_RESULT,
    VendorStatus.NEEDS_HUMAN_REVIEW,
    VendorStatus.FAILED_TO_PROCESS_ALL_DOCUMENTS,
})

_FINAL_STATUSES = _ERROR_STATUSES | {VendorStatus.COMPLETE}

_TRANSIENT_HTTP = frozenset({408, 429})


def classify_failure(
    http_status: int | None,
    status: VendorStatus | None,
    transport_error: bool = False,
) -> FailureKind | None:
    """Transient vs permanent, or None when the response is not a failure.

    Needs-human-review is reported as permanent: it never clears by itself.
    """
    if transport_error:
        return FailureKind.TRANSIENT
    if status in (VendorStatus.INVALID_CREDENTIAL_ID, VendorStatus.NEEDS_HUMAN_REVIEW):
        return FailureKind.PERMANENT
    if http_status is not None and not 200 <= http_status < 300:
        if http_status in _TRANSIENT_HTTP or http_status >= 500:
            return FailureKind.TRANSIENT
        return FailureKind.PERMANENT
    if status is not None and status.is_error:
        return FailureKind.TRANSIENT
    return None


@dataclass(frozen=True)
class VendorResponse:
    """Normalized outcome of one vendor API call.

    ``accepted`` is True when the vendor answered 2xx with a readable body.
    A rejected call may still carry the vendor index id for diagnosis.  Raw
    payloads are stored already truncated.
    """

    accepted: bool
    http_status: int | None = None
    index_id: int | None = None
    status_id: int | None = None
    status_description: str | None = None
    is_error: bool = False
    is_final: bool = False
    failure_kind: FailureKind | None = None
    error_message: str | None = None
    request_payload: str | None = None
    response_payload: str | None = None

    @property
    def status(self) -> VendorStatus | None:
        return VendorStatus.from_code(self.status_id)

    @property
    def succeeded(self) -> bool:
        return self.accepted and not self.is_error

    @classmethod
    def transport_failure(cls, message: str, request_payload: str | None = None) -> VendorResponse:
        return cls(
            accepted=False,
            is_error=True,
            failure_kind=FailureKind.TRANSIENT,
            error_message=message,
            request_payload=request_payload,
        )
