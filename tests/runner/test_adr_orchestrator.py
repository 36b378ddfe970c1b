"""Tests for AdrOrchestrator wiring, run triggers and operator actions."""

from dataclasses import replace
from datetime import date
from uuid import uuid4

import pytest

from adr_config.schema import AdrSettings, OrchestrationSettings, QueueSettings
from adr_kernel.db.engine import reset_engine
from adr_kernel.exceptions import (
    ConfigurationError,
    JobNotFoundError,
    OrchestrationDisabledError,
)

from adr_orchestration.domain.types import JobStatus, RunStatus, RunStep
from adr_orchestration.models.job import JobModel
from adr_orchestration.orchestrator import AdrOrchestrator
from adr_orchestration.runner.types import RunRequest

from tests.support import TEST_ACTOR_ID, add_account, add_job, add_rule, wait_for_recorded

WAIT = 10.0


@pytest.fixture
def adr_settings(settings):
    return AdrSettings(
        orchestration=settings,
        queue=QueueSettings(poll_interval_seconds=0.01, error_backoff_seconds=0.01),
    )


@pytest.fixture
def orchestrator(file_session_factory, vendor, adr_settings, clock):
    orch = AdrOrchestrator(
        file_session_factory,
        vendor,
        settings=adr_settings,
        clock=clock,
        actor_id=TEST_ACTOR_ID,
    )
    yield orch
    orch.stop(timeout=WAIT)


@pytest.fixture
def seed(file_session_factory):
    def _seed(fn):
        session = file_session_factory()
        try:
            result = fn(session)
            session.commit()
            return result
        finally:
            session.close()

    return _seed


# =============================================================================
# Wiring
# =============================================================================


class TestFromSettings:
    def test_missing_database_url_is_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            AdrOrchestrator.from_settings(AdrSettings())
        assert exc_info.value.source == "database_url"

    def test_builds_engine_and_schema(self, tmp_path, vendor):
        settings = AdrSettings(database_url=f"sqlite:///{tmp_path / 'from_settings.db'}")
        try:
            orch = AdrOrchestrator.from_settings(settings, vendor_client=vendor, create_schema=True)

            assert orch.settings is settings
            assert orch.load_configuration() == settings.orchestration
        finally:
            reset_engine()

    def test_queue_is_created_lazily_once(self, orchestrator):
        assert orchestrator.queue is orchestrator.queue
        assert not orchestrator.queue.is_running


# =============================================================================
# Runs
# =============================================================================


class TestRuns:
    def test_run_and_wait_executes_the_pipeline(self, orchestrator, seed, vendor):
        seed(lambda s: add_rule(s, add_account(s)))
        orchestrator.start()

        snapshot = orchestrator.run_and_wait(RunRequest(requested_by="ops"), timeout=WAIT)

        assert snapshot.status is RunStatus.COMPLETED
        assert snapshot.requested_by == "ops"
        assert snapshot.results.job_creation.created == 1
        assert len(vendor.submitted) == 2
        run = wait_for_recorded(orchestrator.recorder, snapshot.request_id)
        assert run.status is RunStatus.COMPLETED

    def test_check_all_statuses_runs_only_the_status_check(self, orchestrator, seed, vendor):
        def _seed(s):
            job = add_job(
                s,
                add_account(s),
                status=JobStatus.SCRAPE_REQUESTED,
                scrape_requested_date=date(2026, 1, 15),
            )
            return job.id

        job_id = seed(_seed)
        orchestrator.start()

        queued = orchestrator.check_all_statuses(requested_by="ops")
        snapshot = orchestrator.queue.wait_for(queued.request_id, timeout=WAIT)

        assert snapshot.status is RunStatus.COMPLETED
        assert snapshot.results.status_check.processed == 1
        assert RunStep.CREATE_JOBS in snapshot.results.skipped_steps
        assert vendor.polled == [job_id]
        assert vendor.submitted == []

    def test_status_views(self, orchestrator):
        orchestrator.start()
        snapshot = orchestrator.run_and_wait(timeout=WAIT)

        assert orchestrator.get_status(snapshot.request_id).status is RunStatus.COMPLETED
        assert [s.request_id for s in orchestrator.get_recent_statuses()] == [snapshot.request_id]
        assert orchestrator.get_current_run() is None

    def test_cancel_queued_run(self, orchestrator):
        # Worker not started: the request stays queued.
        snapshot = orchestrator.submit()

        assert orchestrator.cancel(snapshot.request_id) is True
        assert orchestrator.get_status(snapshot.request_id).status is RunStatus.CANCELLED
        assert orchestrator.cancel(snapshot.request_id) is False

    def test_stop_without_start_is_a_no_op(self, file_session_factory, vendor, adr_settings):
        AdrOrchestrator(file_session_factory, vendor, settings=adr_settings).stop(timeout=1)


# =============================================================================
# Operator actions
# =============================================================================


class TestConfiguration:
    def test_defaults_come_from_settings(self, orchestrator, settings):
        assert orchestrator.load_configuration() == settings

    def test_saved_configuration_is_loaded(self, orchestrator, settings):
        changed = replace(settings, max_retries=7, stale_job_lookback_days=30)

        orchestrator.save_configuration(changed)

        loaded = orchestrator.load_configuration()
        assert loaded.max_retries == 7
        assert loaded.stale_job_lookback_days == 30


class TestJobActions:
    def test_create_manual_job(self, orchestrator, seed, file_session_factory):
        account_id = seed(lambda s: add_account(s).id)

        job = orchestrator.create_manual_job(account_id, date(2025, 12, 1), date(2025, 12, 31))

        assert job.is_manual_request is True
        session = file_session_factory()
        try:
            assert session.get(JobModel, job.job_id) is not None
        finally:
            session.close()

    def test_create_job_for_rule(self, orchestrator, seed):
        def _seed(s):
            return add_rule(
                s,
                add_account(s),
                next_due_date=date(2026, 2, 15),
                next_window_start=date(2026, 2, 10),
                next_window_end=date(2026, 2, 20),
            ).id

        job = orchestrator.create_job_for_rule(seed(_seed))

        assert (job.billing_period_start, job.billing_period_end) == (date(2026, 2, 10), date(2026, 2, 20))

    def test_finalize_stale_jobs(self, orchestrator, seed):
        def _seed(s):
            add_job(
                s,
                add_account(s),
                billing_period_start=date(2025, 11, 10),
                billing_period_end=date(2025, 11, 20),
                expected_due_date=date(2025, 11, 15),
            )

        seed(_seed)

        result = orchestrator.finalize_stale_jobs()

        assert result.cancelled == 1

    def test_finalize_refused_while_disabled(self, orchestrator, settings):
        orchestrator.save_configuration(replace(settings, is_orchestration_enabled=False))

        with pytest.raises(OrchestrationDisabledError):
            orchestrator.finalize_stale_jobs()

    def test_cancel_job(self, orchestrator, seed):
        job_id = seed(lambda s: add_job(s, add_account(s)).id)

        job = orchestrator.cancel_job(job_id, reason="duplicate account")

        assert job.status is JobStatus.CANCELLED
        assert job.error_message == "duplicate account"

    def test_cancel_unknown_job_rolls_back(self, orchestrator):
        with pytest.raises(JobNotFoundError):
            orchestrator.cancel_job(uuid4())
