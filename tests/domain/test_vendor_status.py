"""Tests for vendor status codes and failure classification."""

import pytest

from adr_orchestration.domain.types import FailureKind
from adr_orchestration.domain.vendor_status import (
    VendorResponse,
    VendorStatus,
    classify_failure,
)


class TestVendorStatusFlags:
    def test_complete_is_final_not_error(self):
        assert VendorStatus.COMPLETE.is_final
        assert not VendorStatus.COMPLETE.is_error

    def test_sent_to_ai_is_still_processing(self):
        assert not VendorStatus.SENT_TO_AI.is_final
        assert not VendorStatus.SENT_TO_AI.is_error

    @pytest.mark.parametrize(
        "status",
        [
            VendorStatus.INVALID_CREDENTIAL_ID,
            VendorStatus.CANNOT_CONNECT_TO_AI,
            VendorStatus.NEEDS_HUMAN_REVIEW,
            VendorStatus.FAILED_TO_PROCESS_ALL_DOCUMENTS,
        ],
    )
    def test_error_statuses_are_final(self, status):
        assert status.is_error
        assert status.is_final

    def test_no_documents_found_is_neither(self):
        assert not VendorStatus.NO_DOCUMENTS_FOUND.is_error
        assert not VendorStatus.NO_DOCUMENTS_FOUND.is_final

    def test_from_code(self):
        assert VendorStatus.from_code(11) is VendorStatus.COMPLETE
        assert VendorStatus.from_code(99) is None
        assert VendorStatus.from_code(None) is None


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "http_status, status, transport, expected",
        [
            (None, None, True, FailureKind.TRANSIENT),
            (200, VendorStatus.INVALID_CREDENTIAL_ID, False, FailureKind.PERMANENT),
            (200, VendorStatus.NEEDS_HUMAN_REVIEW, False, FailureKind.PERMANENT),
            (500, None, False, FailureKind.TRANSIENT),
            (503, None, False, FailureKind.TRANSIENT),
            (429, None, False, FailureKind.TRANSIENT),
            (408, None, False, FailureKind.TRANSIENT),
            (400, None, False, FailureKind.PERMANENT),
            (404, None, False, FailureKind.PERMANENT),
            (200, VendorStatus.CANNOT_CONNECT_TO_AI, False, FailureKind.TRANSIENT),
            (200, VendorStatus.COMPLETE, False, None),
            (200, None, False, None),
        ],
    )
    def test_classification(self, http_status, status, transport, expected):
        assert classify_failure(http_status, status, transport_error=transport) is expected


class TestVendorResponse:
    def test_succeeded_requires_accepted_and_no_error(self):
        assert VendorResponse(accepted=True, status_id=1).succeeded
        assert not VendorResponse(accepted=True, status_id=7, is_error=True).succeeded
        assert not VendorResponse(accepted=False, http_status=500, is_error=True).succeeded

    def test_status_property_decodes_id(self):
        assert VendorResponse(accepted=True, status_id=9).status is VendorStatus.NEEDS_HUMAN_REVIEW
        assert VendorResponse(accepted=True, status_id=42).status is None

    def test_transport_failure_is_transient(self):
        response = VendorResponse.transport_failure("ConnectError: refused", request_payload="{}")

        assert not response.accepted
        assert response.is_error
        assert response.failure_kind is FailureKind.TRANSIENT
        assert response.error_message == "ConnectError: refused"
        assert response.request_payload == "{}"
        assert response.http_status is None
