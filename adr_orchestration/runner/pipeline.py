"""
OrchestrationPipeline -- Runs the steps of one orchestration run in order.

Contract:
    ``run(request, handle, reporter)`` executes, for the steps the request
    selects:

        Sync -> CreateJobs -> StatusCheck (catch-up or check-all)
             -> CredentialVerification -> Scraping -> FinalStatusCheck

    and returns the ``RunResults``.  The final status check polls jobs
    dispatched earlier in the same run; it runs only when both status
    checks and scraping are selected.

Architecture: adr_orchestration/runner.  Owns the sessions of the run: each
    step opens its own session from the factory and commits after every
    batch.  Services underneath only flush.

Invariants enforced:
    - Steps never overlap; a step's vendor fan-out is joined before the
      next batch or step starts.
    - ``handle.raise_if_cancelled()`` is called before every step and
      between batches.  A batch in flight always finishes and commits.
    - Settings are loaded once per run from ``ConfigurationService`` and
      are read-only for the rest of the run.
    - A step's partial result is published to the reporter even when the
      step is cancelled or raises, so completed batches are never lost.
    - The reporter is only called while the step session has no open
      transaction; run bookkeeping writes through its own connection.

Failure modes:
    - RunCancelledError propagates to the caller (the queue worker).
    - Any other exception rolls back the current batch and propagates.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Protocol, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from adr_config.schema import OrchestrationSettings
from adr_kernel.domain.clock import Clock, SystemClock, today_utc
from adr_kernel.logging_config import LogContext, get_logger

from adr_orchestration.domain.billing_period import RuleScheduler
from adr_orchestration.domain.types import (
    SYSTEM_ACTOR_ID,
    JobCreationResult,
    PhaseResult,
    RunStep,
    StatusCheckMode,
)
from adr_orchestration.services.account_sync import AccountFeed, AccountSyncService
from adr_orchestration.services.configuration import ConfigurationService
from adr_orchestration.services.credential_verifier import CredentialVerifier
from adr_orchestration.services.job_factory import JobFactory
from adr_orchestration.services.phase import VendorPhase
from adr_orchestration.services.scrape_dispatcher import ScrapeDispatcher
from adr_orchestration.services.status_poller import StatusPoller
from adr_orchestration.services.vendor_client import VendorClient
from adr_orchestration.runner.cancellation import CancellationHandle
from adr_orchestration.runner.types import RunRequest, RunResults

logger = get_logger("orchestration.pipeline")

T = TypeVar("T")


class RunReporter(Protocol):
    """Where the pipeline publishes progress and results as it goes."""

    def progress(self, step: RunStep, current: int, total: int) -> None: ...

    def sub_progress(self, current: int, total: int) -> None: ...

    def publish(self, results: RunResults) -> None: ...


class NullReporter:
    def progress(self, step: RunStep, current: int, total: int) -> None:
        pass

    def sub_progress(self, current: int, total: int) -> None:
        pass

    def publish(self, results: RunResults) -> None:
        pass


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for offset in range(0, len(items), size):
        yield items[offset:offset + size]


class OrchestrationPipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        vendor_client: VendorClient,
        clock: Clock | None = None,
        account_feed: AccountFeed | None = None,
        scheduler: RuleScheduler | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        defaults: OrchestrationSettings | None = None,
    ):
        self._session_factory = session_factory
        self._vendor_client = vendor_client
        self._clock = clock or SystemClock()
        self._account_feed = account_feed
        self._scheduler = scheduler or RuleScheduler()
        self._actor_id = actor_id
        self._defaults = defaults

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def load_settings(self) -> OrchestrationSettings:
        with self._session() as session:
            return ConfigurationService(session, self._defaults).load()

    def run(
        self,
        request: RunRequest,
        handle: CancellationHandle,
        reporter: RunReporter | None = None,
    ) -> RunResults:
        reporter = reporter or NullReporter()
        settings = self.load_settings()
        if settings.max_orchestration_duration_minutes > 0:
            handle.set_deadline(
                time.monotonic() + settings.max_orchestration_duration_minutes * 60
            )

        if not settings.is_orchestration_enabled:
            results = RunResults(skipped_steps=tuple(RunStep), orchestration_disabled=True)
            reporter.publish(results)
            logger.warning("orchestration_disabled_run_skipped")
            return results

        run = _RunState(self, request, settings, handle, reporter, today_utc(self._clock))
        return run.execute()

    # -------------------------------------------------------------------------
    # Factories used by the steps
    # -------------------------------------------------------------------------

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def _phase(
        self,
        cls: type[VendorPhase],
        session: Session,
        settings: OrchestrationSettings,
        **kwargs,
    ) -> VendorPhase:
        return cls(
            session,
            self._vendor_client,
            settings,
            clock=self._clock,
            actor_id=self._actor_id,
            scheduler=self._scheduler,
            **kwargs,
        )


class _RunState:
    """Mutable state of one pipeline execution."""

    def __init__(
        self,
        pipeline: OrchestrationPipeline,
        request: RunRequest,
        settings: OrchestrationSettings,
        handle: CancellationHandle,
        reporter: RunReporter,
        today: date,
    ):
        self.pipeline = pipeline
        self.request = request
        self.settings = settings
        self.handle = handle
        self.reporter = reporter
        self.today = today
        self.results = RunResults()
        self.skipped: list[RunStep] = []

    def publish(self, **changes) -> None:
        self.results = replace(self.results, skipped_steps=tuple(self.skipped), **changes)
        self.reporter.publish(self.results)

    def execute(self) -> RunResults:
        request = self.request
        has_feed = self.pipeline._account_feed is not None

        self._step(RunStep.SYNC, request.run_sync and has_feed, self._sync)
        self._step(RunStep.CREATE_JOBS, request.run_create_jobs, self._create_jobs)
        self._step(RunStep.STATUS_CHECK, request.run_status_check, self._status_check)
        self._step(
            RunStep.CREDENTIAL_VERIFICATION,
            request.run_credential_verification,
            self._credential_verification,
        )
        self._step(RunStep.SCRAPING, request.run_scraping, self._scraping)
        self._step(
            RunStep.FINAL_STATUS_CHECK,
            request.run_status_check and request.run_scraping,
            self._final_status_check,
        )
        self.publish()
        return self.results

    def _step(self, step: RunStep, enabled: bool, body: Callable[[], None]) -> None:
        if not enabled:
            self.skipped.append(step)
            logger.info("step_skipped", extra={"run_step": step.value})
            return
        self.handle.raise_if_cancelled()
        with LogContext.bind(step=step.value):
            logger.info("step_started")
            start = time.monotonic()
            body()
            logger.info(
                "step_completed",
                extra={"duration_seconds": round(time.monotonic() - start, 3)},
            )

    def _progress(self, step: RunStep) -> Callable[[int, int], None]:
        def _report(current: int, total: int) -> None:
            self.reporter.progress(step, current, total)

        return _report

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _sync(self) -> None:
        start = time.monotonic()
        with self.pipeline._session() as session:
            service = AccountSyncService(
                session, self.settings, self.pipeline._scheduler, self.pipeline._actor_id,
            )
            result = service.sync(
                self.pipeline._account_feed,
                on_progress=self._progress(RunStep.SYNC),
                checkpoint=session.commit,
            )
        self.publish(sync=result, sync_duration_seconds=time.monotonic() - start)

    def _create_jobs(self) -> None:
        start = time.monotonic()
        result = JobCreationResult()
        try:
            with self.pipeline._session() as session:
                factory = JobFactory(
                    session,
                    self.settings,
                    scheduler=self.pipeline._scheduler,
                    clock=self.pipeline._clock,
                    actor_id=self.pipeline._actor_id,
                )
                rule_ids = factory.due_rule_ids(self.today)
                session.commit()
                total = len(rule_ids)
                self.reporter.progress(RunStep.CREATE_JOBS, 0, total)
                done = 0
                for batch in _chunks(rule_ids, self.settings.batch_size):
                    self.handle.raise_if_cancelled()
                    batch_result = factory.create_batch(list(batch), self.today)
                    session.commit()
                    result = result + batch_result
                    done += len(batch)
                    self.reporter.progress(RunStep.CREATE_JOBS, done, total)
        finally:
            self.publish(
                job_creation=result,
                create_jobs_duration_seconds=time.monotonic() - start,
            )
        logger.info(
            "job_creation_step_result",
            extra={"jobs_created": result.created, "skipped": result.skipped,
                   "blacklisted": result.blacklisted, "errors": result.errors},
        )

    def _status_check(self) -> None:
        self._run_phase(
            RunStep.STATUS_CHECK,
            StatusPoller,
            "status_check",
            mode=self.request.status_check_mode,
        )

    def _credential_verification(self) -> None:
        self._run_phase(RunStep.CREDENTIAL_VERIFICATION, CredentialVerifier, "credential_verification")

    def _scraping(self) -> None:
        self._run_phase(RunStep.SCRAPING, ScrapeDispatcher, "scraping")

    def _final_status_check(self) -> None:
        self._run_phase(
            RunStep.FINAL_STATUS_CHECK,
            StatusPoller,
            "final_status_check",
            mode=StatusCheckMode.TODAY,
        )

    def _run_phase(
        self,
        step: RunStep,
        cls: type[VendorPhase],
        result_field: str,
        **kwargs,
    ) -> None:
        start = time.monotonic()
        result = PhaseResult()
        try:
            with self.pipeline._session() as session:
                phase = self.pipeline._phase(cls, session, self.settings, **kwargs)
                job_ids = phase.select_candidates(self.today)
                session.commit()
                total = len(job_ids)
                self.reporter.progress(step, 0, total)
                done = 0
                for batch in _chunks(job_ids, self.settings.setup_batch_size):
                    self.handle.raise_if_cancelled()
                    result = result + phase.process_batch(
                        batch,
                        self.today,
                        checkpoint=session.commit,
                        on_progress=self.reporter.sub_progress,
                    )
                    session.commit()
                    done += len(batch)
                    self.reporter.progress(step, done, total)
        finally:
            self._publish_phase(result_field, result, time.monotonic() - start)

    def _publish_phase(self, result_field: str, result: PhaseResult, elapsed: float) -> None:
        if result_field == "credential_verification":
            self.publish(credential_verification=result, credential_duration_seconds=elapsed)
        elif result_field == "scraping":
            self.publish(scraping=result, scraping_duration_seconds=elapsed)
        else:
            previous = self.results.status_check_duration_seconds or 0.0
            self.publish(**{result_field: result}, status_check_duration_seconds=previous + elapsed)
