"""
Vendor API client -- login checks, retrieval requests and status polls.

Contract:
    ``VendorClient`` is the protocol the phase services call from worker
    threads.  Implementations never raise for remote failures: every
    outcome, including transport errors, comes back as a ``VendorResponse``
    whose ``failure_kind`` says whether a later retry can help.

    ``HttpVendorClient`` speaks the vendor's HTTP/JSON API with ``httpx``:

        POST {base_url}IngestAdrRequest                  (credential / download)
        GET  {base_url}GetRequestStatusByJobId/{job_id}  (status poll)

Failure modes:
    - Transport errors and timeouts -> transient failure.
    - HTTP 408/429/5xx -> transient; other non-2xx -> permanent.  A non-2xx
      body that still carries an ``IndexId`` keeps the index for diagnosis.
    - 2xx with an unparseable body -> ``VendorResponseParseError`` is logged
      and reported as a permanent failure.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol
from uuid import UUID

import httpx

from adr_config.schema import VendorApiSettings
from adr_kernel.exceptions import VendorResponseParseError
from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.types import FailureKind, RequestType
from adr_orchestration.domain.vendor_status import (
    VendorResponse,
    VendorStatus,
    classify_failure,
)

logger = get_logger("orchestration.vendor_client")

INGEST_ENDPOINT = "IngestAdrRequest"
STATUS_ENDPOINT = "GetRequestStatusByJobId"


def truncate(text: str | None, max_chars: int) -> str | None:
    if text is None or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


@dataclass(frozen=True)
class VendorRequest:
    """One ingest call (credential check or document download)."""

    job_id: UUID
    account_id: UUID
    request_type: RequestType
    credential_id: int | None
    start_date: date | None
    end_date: date | None
    vm_account_id: int | None = None
    interface_account_id: str | None = None
    is_last_attempt: bool = False

    def to_payload(
        self, source_application_name: str, recipient_email: str | None,
    ) -> dict[str, Any]:
        return {
            "ADRRequestTypeId": self.request_type.vendor_request_type_id,
            "CredentialId": self.credential_id,
            "StartDate": self.start_date.isoformat() if self.start_date else "",
            "EndDate": self.end_date.isoformat() if self.end_date else "",
            "SourceApplicationName": source_application_name,
            "RecipientEmail": recipient_email,
            "JobId": str(self.job_id),
            "AccountId": self.vm_account_id,
            "InterfaceAccountId": self.interface_account_id,
            "IsLastAttempt": self.is_last_attempt,
        }


class VendorClient(Protocol):
    def submit(self, request: VendorRequest) -> VendorResponse: ...

    def get_status(self, job_id: UUID) -> VendorResponse: ...


# =============================================================================
# Body parsing
# =============================================================================


def _field(body: dict[str, Any], name: str) -> Any:
    """Case-insensitive lookup of a vendor JSON field."""
    if name in body:
        return body[name]
    lowered = name.lower()
    for key, value in body.items():
        if key.lower() == lowered:
            return value
    return None


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_vendor_body(endpoint: str, text: str) -> dict[str, Any]:
    """Normalize an object, a list (first element) or a bare integer.

    Returns a dict with the keys index_id, status_id, status_description,
    is_error and is_final (any of which may be None).

    Raises:
        VendorResponseParseError: for anything else.
    """
    stripped = text.strip()
    if not stripped:
        return {}
    try:
        data = json.loads(stripped)
    except ValueError:
        raise VendorResponseParseError(endpoint, text) from None

    if isinstance(data, list):
        if not data:
            raise VendorResponseParseError(endpoint, text)
        data = data[0]
    if isinstance(data, int) and not isinstance(data, bool):
        return {"index_id": data}
    if not isinstance(data, dict):
        raise VendorResponseParseError(endpoint, text)

    description = _field(data, "StatusDescription")
    if description is None:
        description = _field(data, "Status")
    return {
        "index_id": _as_int(_field(data, "IndexId")),
        "status_id": _as_int(_field(data, "StatusId")),
        "status_description": description if description is None else str(description),
        "is_error": _field(data, "IsError"),
        "is_final": _field(data, "IsFinal"),
    }


# =============================================================================
# HTTP client
# =============================================================================


class HttpVendorClient:
    """``VendorClient`` over httpx.

    One ``httpx.Client`` is shared by all worker threads; httpx clients are
    safe to share for concurrent requests.  ``close()`` releases the pool.
    """

    def __init__(
        self,
        settings: VendorApiSettings,
        client: httpx.Client | None = None,
    ):
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=settings.timeout_seconds)
        self._lock = threading.Lock()
        self._closed = False

    def _url(self, path: str) -> str:
        base = self._settings.base_url
        if base and not base.endswith("/"):
            base += "/"
        return f"{base}{path}"

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpVendorClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def submit(self, request: VendorRequest) -> VendorResponse:
        payload = request.to_payload(
            self._settings.source_application_name,
            self._settings.recipient_email,
        )
        request_text = truncate(json.dumps(payload), self._settings.max_response_chars)
        try:
            response = self._client.post(self._url(INGEST_ENDPOINT), json=payload)
        except httpx.HTTPError as exc:
            logger.warning(
                "vendor_request_transport_error",
                extra={
                    "job_id": str(request.job_id),
                    "request_type": request.request_type.value,
                    "error": str(exc),
                },
            )
            return VendorResponse.transport_failure(
                f"{type(exc).__name__}: {exc}", request_payload=request_text,
            )
        return self._to_vendor_response(
            INGEST_ENDPOINT, response, request_text, empty_description="Request submitted",
        )

    def get_status(self, job_id: UUID) -> VendorResponse:
        path = f"{STATUS_ENDPOINT}/{job_id}"
        try:
            response = self._client.get(self._url(path))
        except httpx.HTTPError as exc:
            logger.warning(
                "vendor_status_transport_error",
                extra={"job_id": str(job_id), "error": str(exc)},
            )
            return VendorResponse.transport_failure(f"{type(exc).__name__}: {exc}")
        return self._to_vendor_response(STATUS_ENDPOINT, response, None)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _to_vendor_response(
        self,
        endpoint: str,
        response: httpx.Response,
        request_text: str | None,
        empty_description: str | None = None,
    ) -> VendorResponse:
        max_chars = self._settings.max_response_chars
        body = response.text
        response_text = truncate(body, max_chars)
        http_status = response.status_code

        if not response.is_success:
            index_id = None
            try:
                index_id = parse_vendor_body(endpoint, body).get("index_id")
            except VendorResponseParseError:
                pass  # error bodies are often plain text
            logger.warning(
                "vendor_http_error",
                extra={"endpoint": endpoint, "http_status": http_status, "index_id": index_id},
            )
            return VendorResponse(
                accepted=False,
                http_status=http_status,
                index_id=index_id,
                is_error=True,
                failure_kind=classify_failure(http_status, None),
                error_message=f"HTTP {http_status}: {truncate(body, 200)}",
                request_payload=request_text,
                response_payload=response_text,
            )

        try:
            parsed = parse_vendor_body(endpoint, body)
        except VendorResponseParseError as exc:
            logger.error(
                "vendor_response_unparseable",
                extra={"endpoint": endpoint, "body": truncate(body, 200)},
            )
            return VendorResponse(
                accepted=False,
                http_status=http_status,
                is_error=True,
                failure_kind=FailureKind.TRANSIENT if exc.transient else FailureKind.PERMANENT,
                error_message=str(exc),
                request_payload=request_text,
                response_payload=response_text,
            )

        status = VendorStatus.from_code(parsed.get("status_id"))
        is_error = bool(parsed.get("is_error")) or (status is not None and status.is_error)
        is_final = bool(parsed.get("is_final")) or (status is not None and status.is_final)
        description = parsed.get("status_description")
        if description is None and not parsed:
            description = empty_description

        return VendorResponse(
            accepted=True,
            http_status=http_status,
            index_id=parsed.get("index_id"),
            status_id=parsed.get("status_id"),
            status_description=description,
            is_error=is_error,
            is_final=is_final,
            failure_kind=(
                classify_failure(http_status, status) or FailureKind.TRANSIENT
            ) if is_error else None,
            error_message=description if is_error else None,
            request_payload=request_text,
            response_payload=response_text,
        )
