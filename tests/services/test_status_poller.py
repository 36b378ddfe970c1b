"""Tests for the status polling phase and its three modes."""

from datetime import date, timedelta

import pytest

from adr_orchestration.domain.types import JobStatus, RequestType, StatusCheckMode
from adr_orchestration.services.ledger import ExecutionLedger
from adr_orchestration.services.status_poller import StatusPoller

from tests.support import (
    CANNOT_CONNECT_TO_AI,
    COMPLETE,
    INVALID_CREDENTIAL,
    NEEDS_REVIEW,
    STILL_PROCESSING,
    TEST_ACTOR_ID,
    TODAY,
    add_account,
    add_job,
    add_rule,
    http_failure,
    transport_failure,
    vendor_response,
)

REQUESTED = JobStatus.SCRAPE_REQUESTED
YESTERDAY = TODAY - timedelta(days=1)


def _poller(session, vendor, settings, clock, mode=StatusCheckMode.CATCH_UP):
    return StatusPoller(
        session, vendor, settings, clock=clock, actor_id=TEST_ACTOR_ID, mode=mode,
    )


@pytest.fixture
def poller(session, vendor, settings, clock):
    return _poller(session, vendor, settings, clock)


def _run(poller, today=TODAY):
    return poller.process_batch(poller.select_candidates(today), today)


def _requested_job(session, **kwargs):
    kwargs.setdefault("scrape_requested_date", YESTERDAY)
    return add_job(session, add_account(session), status=REQUESTED, **kwargs)


# =============================================================================
# Modes
# =============================================================================


class TestModes:
    def test_catch_up_waits_for_the_delay(self, session, poller):
        old = _requested_job(session, scrape_requested_date=YESTERDAY)
        _requested_job(session, scrape_requested_date=TODAY)

        assert poller.select_candidates(TODAY) == [old.id]

    def test_today_mode_takes_todays_requests(self, session, vendor, settings, clock):
        _requested_job(session, scrape_requested_date=YESTERDAY)
        fresh = _requested_job(session, scrape_requested_date=TODAY)

        poller = _poller(session, vendor, settings, clock, StatusCheckMode.TODAY)
        assert poller.select_candidates(TODAY) == [fresh.id]

    def test_check_all_takes_every_outstanding_job(self, session, vendor, settings, clock):
        a = _requested_job(session, scrape_requested_date=YESTERDAY)
        b = _requested_job(session, scrape_requested_date=TODAY)
        crashed = add_job(
            session, add_account(session),
            status=JobStatus.STATUS_CHECK_IN_PROGRESS, scrape_requested_date=YESTERDAY,
        )
        add_job(session, add_account(session), status=JobStatus.CREDENTIAL_VERIFIED)

        poller = _poller(session, vendor, settings, clock, StatusCheckMode.CHECK_ALL)
        assert set(poller.select_candidates(TODAY)) == {a.id, b.id, crashed.id}


# =============================================================================
# Outcomes
# =============================================================================


class TestOutcomes:
    def test_complete(self, session, vendor, poller):
        account = add_account(session)
        rule = add_rule(session, account, last_successful_download_date=date(2025, 12, 15))
        job = add_job(session, account, rule=rule, status=REQUESTED, scrape_requested_date=YESTERDAY)
        vendor.status_responses[job.id] = vendor_response(COMPLETE, index_id=88)

        result = _run(poller)

        assert result.completed == 1
        assert job.status == JobStatus.COMPLETED.value
        assert job.vendor_status_id == COMPLETE
        assert job.vendor_index_id == 88
        assert job.scraping_completed_at is not None
        assert rule.last_successful_download_date == date(2026, 1, 15)

    def test_still_processing_keeps_waiting(self, session, poller):
        job = _requested_job(session)

        result = _run(poller)

        assert result.still_pending == 1
        assert job.status == REQUESTED.value
        assert job.retry_count == 0
        assert job.last_status_check_at is not None

    def test_period_ended_without_document(self, session, poller):
        job = _requested_job(
            session,
            billing_period_start=date(2026, 1, 1),
            billing_period_end=date(2026, 1, 10),
        )

        result = _run(poller)

        assert result.no_invoice_found == 1
        assert job.status == JobStatus.NO_INVOICE_FOUND.value

    def test_needs_review(self, session, vendor, poller):
        job = _requested_job(session)
        vendor.status_responses[job.id] = vendor_response(NEEDS_REVIEW)

        result = _run(poller)

        assert result.needs_review == 1
        assert job.status == JobStatus.NEEDS_REVIEW.value

    def test_final_error_recycles_for_another_scrape(self, session, vendor, poller):
        job = _requested_job(session)
        vendor.status_responses[job.id] = vendor_response(CANNOT_CONNECT_TO_AI)

        result = _run(poller)

        assert result.failed == 1
        assert job.status == JobStatus.CREDENTIAL_VERIFIED.value
        assert job.retry_count == 1

    def test_invalid_credential_on_poll_fails_job(self, session, vendor, poller):
        job = _requested_job(session)
        vendor.status_responses[job.id] = vendor_response(INVALID_CREDENTIAL)

        _run(poller)

        assert job.status == JobStatus.FAILED.value

    @pytest.mark.parametrize("response", [transport_failure(), http_failure(502)])
    def test_poll_failure_does_not_consume_retries(self, session, vendor, poller, response):
        job = _requested_job(session)
        vendor.status_responses[job.id] = response

        result = _run(poller)

        assert result.failed == 1
        assert job.status == REQUESTED.value
        assert job.retry_count == 0
        assert job.error_message == response.error_message


# =============================================================================
# Ledger
# =============================================================================


class TestLedger:
    def test_catch_up_polls_once_per_day(self, session, vendor, poller):
        job = _requested_job(session)

        _run(poller)
        second = _run(poller)

        assert second.skipped == 1
        assert vendor.polled == [job.id]

    def test_check_all_repeats_polls_with_one_ledger_row(self, session, vendor, settings, clock):
        job = _requested_job(session, scrape_requested_date=TODAY)
        vendor.status_responses[job.id] = vendor_response(STILL_PROCESSING)
        poller = _poller(session, vendor, settings, clock, StatusCheckMode.CHECK_ALL)

        for _ in range(3):
            _run(poller)

        assert vendor.polled == [job.id] * 3
        assert job.status == REQUESTED.value
        assert job.retry_count == 0
        executions = ExecutionLedger(session, clock).list_for_job(job.id)
        assert [e.request_type for e in executions] == [RequestType.PERIODIC_RECHECK]
