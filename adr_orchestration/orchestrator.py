"""
AdrOrchestrator -- DI container for the ADR orchestration engine.

Contract:
    Wires the pipeline, run recorder and run queue with one clock, one
    vendor client and one rule scheduler.  Single place where the engine's
    dependencies are composed; also the entry point for operator actions
    (manual jobs, stale job finalization, job cancellation, configuration).

Architecture: adr_orchestration (top-level).  Operator actions run in their
    own short transaction; orchestration runs go through the queue.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Operator actions commit on success and roll back on any exception.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from adr_config.schema import AdrSettings, OrchestrationSettings
from adr_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from adr_kernel.domain.clock import Clock, SystemClock, today_utc
from adr_kernel.exceptions import ConfigurationError, OrchestrationDisabledError
from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.billing_period import RuleScheduler
from adr_orchestration.domain.types import SYSTEM_ACTOR_ID, Job, StaleJobsResult
from adr_orchestration.runner.pipeline import OrchestrationPipeline
from adr_orchestration.runner.queue import OrchestrationQueue
from adr_orchestration.runner.recorder import OrchestrationRunRecorder
from adr_orchestration.runner.types import RunRequest, RunStatusSnapshot
from adr_orchestration.services.account_sync import AccountFeed
from adr_orchestration.services.configuration import ConfigurationService
from adr_orchestration.services.job_factory import JobFactory
from adr_orchestration.services.stale_jobs import StaleJobFinalizer
from adr_orchestration.services.vendor_client import HttpVendorClient, VendorClient

logger = get_logger("orchestration.orchestrator")


class AdrOrchestrator:
    """DI container for the orchestration engine.

    Contract:
        - ``from_settings()`` initializes the engine and builds an HTTP
          vendor client from the settings tree.
        - ``start()`` / ``stop()`` control the background worker.
        - ``submit()`` / ``cancel()`` / ``get_status()`` form the trigger
          surface for runs.

    Non-goals:
        - Does NOT start the worker automatically -- caller decides.
        - Does NOT expose an HTTP or UI surface.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        vendor_client: VendorClient,
        settings: AdrSettings | None = None,
        clock: Clock | None = None,
        account_feed: AccountFeed | None = None,
        scheduler: RuleScheduler | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> None:
        self._session_factory = session_factory
        self._vendor_client = vendor_client
        self._settings = settings or AdrSettings()
        self._clock = clock or SystemClock()
        self._account_feed = account_feed
        self._scheduler = scheduler or RuleScheduler.from_window_defaults(
            self._settings.period_windows
        )
        self._actor_id = actor_id
        self._recorder = OrchestrationRunRecorder(session_factory, self._clock)
        self._queue: OrchestrationQueue | None = None

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: AdrSettings,
        vendor_client: VendorClient | None = None,
        account_feed: AccountFeed | None = None,
        clock: Clock | None = None,
        create_schema: bool = False,
    ) -> AdrOrchestrator:
        """Initialize the database engine and wire a full orchestrator.

        Raises:
            ConfigurationError: no ``database_url`` is configured.
        """
        if not settings.database_url:
            raise ConfigurationError(
                "database_url is not configured (set ADR_DATABASE_URL)",
                source="database_url",
            )
        init_engine_from_url(settings.database_url)
        if create_schema:
            create_tables()

        return cls(
            session_factory=get_session_factory(),
            vendor_client=vendor_client or HttpVendorClient(settings.vendor_api),
            settings=settings,
            clock=clock,
            account_feed=account_feed,
        )

    def create_pipeline(self) -> OrchestrationPipeline:
        return OrchestrationPipeline(
            session_factory=self._session_factory,
            vendor_client=self._vendor_client,
            clock=self._clock,
            account_feed=self._account_feed,
            scheduler=self._scheduler,
            actor_id=self._actor_id,
            defaults=self._settings.orchestration,
        )

    def create_queue(self) -> OrchestrationQueue:
        pipeline = self.create_pipeline()
        return OrchestrationQueue(
            runner=pipeline.run,
            recorder=self._recorder,
            settings=self._settings.queue,
            clock=self._clock,
        )

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    @property
    def queue(self) -> OrchestrationQueue:
        if self._queue is None:
            self._queue = self.create_queue()
        return self._queue

    def start(self) -> None:
        self.queue.start()

    def stop(self, timeout: float = 30.0) -> None:
        if self._queue is not None:
            self._queue.stop(timeout=timeout)

    def submit(
        self, request: RunRequest | None = None, timeout: float | None = None,
    ) -> RunStatusSnapshot:
        return self.queue.enqueue(request or RunRequest(), timeout=timeout)

    def run_and_wait(
        self, request: RunRequest | None = None, timeout: float | None = None,
    ) -> RunStatusSnapshot:
        """Submit a run and block until it is terminal (or ``timeout``)."""
        snapshot = self.submit(request)
        return self.queue.wait_for(snapshot.request_id, timeout)

    def check_all_statuses(self, requested_by: str = "system") -> RunStatusSnapshot:
        """Queue a run that polls every outstanding job and does nothing else."""
        return self.submit(RunRequest.status_check_only(requested_by))

    def cancel(self, request_id: str) -> bool:
        return self.queue.cancel(request_id)

    def get_status(self, request_id: str) -> RunStatusSnapshot | None:
        return self.queue.get_status(request_id)

    def get_recent_statuses(self, limit: int | None = None) -> list[RunStatusSnapshot]:
        return self.queue.get_recent_statuses(limit)

    def get_current_run(self) -> RunStatusSnapshot | None:
        return self.queue.get_current_run()

    # -------------------------------------------------------------------------
    # Operator actions
    # -------------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def load_configuration(self) -> OrchestrationSettings:
        with self._transaction() as session:
            return ConfigurationService(session, self._settings.orchestration).load()

    def save_configuration(self, settings: OrchestrationSettings) -> OrchestrationSettings:
        """Takes effect from the next run; a run in flight keeps its snapshot."""
        with self._transaction() as session:
            return ConfigurationService(session, self._settings.orchestration).save(
                settings, self._actor_id,
            )

    def _job_factory(self, session: Session, settings: OrchestrationSettings) -> JobFactory:
        return JobFactory(
            session,
            settings,
            scheduler=self._scheduler,
            clock=self._clock,
            actor_id=self._actor_id,
        )

    def create_manual_job(
        self,
        account_id: UUID,
        billing_period_start: date,
        billing_period_end: date,
        expected_due_date: date | None = None,
    ) -> Job | None:
        with self._transaction() as session:
            settings = ConfigurationService(session, self._settings.orchestration).load()
            return self._job_factory(session, settings).create_manual_job(
                account_id, billing_period_start, billing_period_end, expected_due_date,
            )

    def create_job_for_rule(self, rule_id: UUID) -> Job | None:
        with self._transaction() as session:
            settings = ConfigurationService(session, self._settings.orchestration).load()
            return self._job_factory(session, settings).create_job_for_rule(
                rule_id, today_utc(self._clock),
            )

    def finalize_stale_jobs(self) -> StaleJobsResult:
        """Cancel pending jobs whose billing window has passed.

        Raises:
            OrchestrationDisabledError: orchestration is switched off.
        """
        with self._transaction() as session:
            settings = ConfigurationService(session, self._settings.orchestration).load()
            if not settings.is_orchestration_enabled:
                raise OrchestrationDisabledError()
            return StaleJobFinalizer(
                session,
                settings,
                scheduler=self._scheduler,
                clock=self._clock,
                actor_id=self._actor_id,
            ).finalize(today_utc(self._clock))

    def cancel_job(self, job_id: UUID, reason: str = "Cancelled by operator") -> Job:
        with self._transaction() as session:
            settings = ConfigurationService(session, self._settings.orchestration).load()
            return StaleJobFinalizer(
                session,
                settings,
                scheduler=self._scheduler,
                clock=self._clock,
                actor_id=self._actor_id,
            ).cancel_job(job_id, reason)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> AdrSettings:
        return self._settings

    @property
    def recorder(self) -> OrchestrationRunRecorder:
        return self._recorder

    @property
    def scheduler(self) -> RuleScheduler:
        return self._scheduler

    @property
    def actor_id(self) -> UUID:
        return self._actor_id
