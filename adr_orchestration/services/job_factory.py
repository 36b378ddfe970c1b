"""
JobFactory -- Materializes due scheduling rules into jobs.

Contract:
    ``create_jobs(today)`` walks every due download rule in batches and
    inserts one job per (account, billing period), then advances the rule
    by exactly one period.  ``create_manual_job`` and
    ``create_job_for_rule`` are the operator entry points.

Architecture: adr_orchestration/services.  Flushes, never commits; the
    optional ``checkpoint`` hook lets the step runner commit per batch.

Invariants enforced:
    - Uniqueness: the INSERT runs in its own SAVEPOINT.  A collision on
      ``uq_adr_jobs_account_period`` (concurrent run, earlier manual job)
      rolls back only that SAVEPOINT and counts as ``skipped``.
    - A rule advances when its job was created AND when the job already
      existed, so a duplicate never pins the rule to the same period.
    - Blacklisted rules (``download`` exclusion) are never materialized and
      are not advanced.
    - Unknown period types flag the rule ``needs_review`` and skip it; no
      job, no advancement.

Eligibility:
    job_type = download_invoice, enabled, not deleted, next_due_date <= today,
    window set, account not deleted and not historically "Missing".
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from adr_config.schema import OrchestrationSettings
from adr_kernel.domain.clock import Clock, SystemClock, today_utc
from adr_kernel.exceptions import (
    AccountNotFoundError,
    RuleNotFoundError,
    UnknownPeriodTypeError,
)
from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.billing_period import RuleAdvance, RuleScheduler
from adr_orchestration.domain.types import (
    SYSTEM_ACTOR_ID,
    ExclusionType,
    Job,
    JobCreationResult,
    JobStatus,
    JobType,
)
from adr_orchestration.models.account import AccountModel, RuleModel
from adr_orchestration.models.job import JobModel
from adr_orchestration.services.blacklist import BlacklistFilter

logger = get_logger("orchestration.job_factory")

MISSING_BILLING_STATUS = "Missing"


class JobFactory:
    """Creates jobs from due rules (SAVEPOINT per insert).

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT contact the vendor.
    """

    def __init__(
        self,
        session: Session,
        settings: OrchestrationSettings,
        scheduler: RuleScheduler | None = None,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        blacklist: BlacklistFilter | None = None,
    ):
        self._session = session
        self._settings = settings
        self._scheduler = scheduler or RuleScheduler()
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._blacklist = blacklist
        self._detail_level = logging.INFO if settings.enable_detailed_logging else logging.DEBUG

    # -------------------------------------------------------------------------
    # Scheduled creation
    # -------------------------------------------------------------------------

    def due_rule_ids(self, today: date) -> list[UUID]:
        stmt = (
            select(RuleModel.id)
            .join(AccountModel, RuleModel.account_id == AccountModel.id)
            .where(
                RuleModel.job_type == JobType.DOWNLOAD_INVOICE.value,
                RuleModel.is_enabled.is_(True),
                RuleModel.is_deleted.is_(False),
                RuleModel.next_due_date.is_not(None),
                RuleModel.next_due_date <= today,
                RuleModel.next_window_start.is_not(None),
                RuleModel.next_window_end.is_not(None),
                AccountModel.is_deleted.is_(False),
                or_(
                    AccountModel.historical_billing_status.is_(None),
                    AccountModel.historical_billing_status != MISSING_BILLING_STATUS,
                ),
            )
            .order_by(RuleModel.priority.desc(), RuleModel.next_due_date, RuleModel.id)
        )
        return list(self._session.execute(stmt).scalars().all())

    def create_jobs(
        self,
        today: date | None = None,
        checkpoint: Callable[[], None] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> JobCreationResult:
        """Create jobs for every due rule, one ``create_batch`` per chunk."""
        today = today or today_utc(self._clock)
        rule_ids = self.due_rule_ids(today)
        total = len(rule_ids)
        logger.info("job_creation_started", extra={"due_rules": total, "as_of": today})

        result = JobCreationResult()
        batch_size = self._settings.batch_size
        for offset in range(0, total, batch_size):
            batch = rule_ids[offset:offset + batch_size]
            result = result + self.create_batch(batch, today)
            (checkpoint or self._session.flush)()
            if on_progress is not None:
                on_progress(min(offset + batch_size, total), total)

        logger.info(
            "job_creation_completed",
            extra={
                "jobs_created": result.created,
                "skipped": result.skipped,
                "blacklisted": result.blacklisted,
                "needs_review": result.needs_review,
                "errors": result.errors,
            },
        )
        return result

    def create_batch(self, rule_ids: list[UUID], today: date) -> JobCreationResult:
        """Materialize one chunk of due rules (SAVEPOINT per rule)."""
        if self._blacklist is None:
            self._blacklist = BlacklistFilter.load(self._session, today)
        rows = self._session.execute(
            select(RuleModel, AccountModel)
            .join(AccountModel, RuleModel.account_id == AccountModel.id)
            .where(RuleModel.id.in_(rule_ids))
            .with_for_update(of=RuleModel)
        ).all()
        by_id = {rule.id: (rule, account) for rule, account in rows}

        created: list[UUID] = []
        skipped = blacklisted = needs_review = errors = 0
        messages: list[str] = []

        for rule_id in rule_ids:
            pair = by_id.get(rule_id)
            if pair is None:
                skipped += 1
                continue
            rule, account = pair
            if self._blacklist is not None and self._blacklist.is_blacklisted(
                account.to_dto(), ExclusionType.DOWNLOAD,
            ):
                blacklisted += 1
                logger.log(
                    self._detail_level,
                    "rule_blacklisted",
                    extra={"rule_id": str(rule_id), "account_id": str(account.id)},
                )
                continue
            try:
                with self._session.begin_nested():
                    outcome = self._materialize(rule, today)
            except Exception as exc:
                logger.exception("job_creation_failed", extra={"rule_id": str(rule_id)})
                errors += 1
                messages.append(f"Rule {rule_id}: {exc}")
                continue
            if outcome == "review":
                needs_review += 1
            elif outcome is None:
                skipped += 1
            else:
                created.append(outcome)

        return JobCreationResult(
            created=len(created),
            skipped=skipped,
            blacklisted=blacklisted,
            needs_review=needs_review,
            errors=errors,
            created_job_ids=tuple(created),
            error_messages=tuple(messages),
        )

    def _materialize(self, rule: RuleModel, today: date) -> UUID | str | None:
        """Job id when created, None when it already existed, "review" when
        the rule was flagged instead."""
        dto = rule.to_dto()
        try:
            advance = self._scheduler.advance(dto, today)
        except UnknownPeriodTypeError as exc:
            rule.needs_review = True
            rule.review_reason = str(exc)
            rule.updated_by_id = self._actor_id
            logger.warning(
                "rule_flagged_for_review",
                extra={"rule_id": str(rule.id), "period_type": rule.period_type},
            )
            return "review"
        if advance is None:
            return None

        job_id = self._insert_job(
            account_id=rule.account_id,
            rule_id=rule.id,
            start=rule.next_window_start,
            end=rule.next_window_end,
            expected_due_date=rule.next_due_date,
            is_manual=False,
        )
        self._apply_advance(rule, advance)
        return job_id

    def _apply_advance(self, rule: RuleModel, advance: RuleAdvance) -> None:
        rule.next_due_date = advance.window.due_date
        rule.next_window_start = advance.window.start
        rule.next_window_end = advance.window.end
        rule.updated_by_id = self._actor_id
        logger.log(
            self._detail_level,
            "rule_advanced",
            extra={
                "rule_id": str(rule.id),
                "previous_due_date": advance.previous_due_date,
                "next_due_date": advance.window.due_date,
                "drift_corrected": advance.drift_corrected,
            },
        )

    def _insert_job(
        self,
        account_id: UUID,
        rule_id: UUID | None,
        start: date,
        end: date,
        expected_due_date: date | None,
        is_manual: bool,
    ) -> UUID | None:
        """INSERT one pending job; None if the period already has one."""
        model = JobModel(
            account_id=account_id,
            rule_id=rule_id,
            job_type=JobType.DOWNLOAD_INVOICE.value,
            billing_period_start=start,
            billing_period_end=end,
            expected_due_date=expected_due_date,
            status=JobStatus.PENDING.value,
            retry_count=0,
            is_manual_request=is_manual,
            created_by_id=self._actor_id,
        )
        try:
            with self._session.begin_nested():
                self._session.add(model)
                self._session.flush()
        except IntegrityError:
            logger.log(
                self._detail_level,
                "job_already_exists",
                extra={
                    "account_id": str(account_id),
                    "billing_period_start": start,
                    "billing_period_end": end,
                },
            )
            return None
        logger.log(
            self._detail_level,
            "job_created",
            extra={
                "job_id": str(model.id),
                "account_id": str(account_id),
                "billing_period_start": start,
                "billing_period_end": end,
            },
        )
        return model.id

    # -------------------------------------------------------------------------
    # Operator entry points
    # -------------------------------------------------------------------------

    def create_manual_job(
        self,
        account_id: UUID,
        billing_period_start: date,
        billing_period_end: date,
        expected_due_date: date | None = None,
    ) -> Job | None:
        """Create a manual-request job; None if the period already has one.

        Raises:
            AccountNotFoundError: unknown or deleted account.
            ValueError: start after end.
        """
        if billing_period_start > billing_period_end:
            raise ValueError(
                f"Billing period start {billing_period_start} is after end {billing_period_end}"
            )
        account = self._session.get(AccountModel, account_id)
        if account is None or account.is_deleted:
            raise AccountNotFoundError(str(account_id))

        rule_id = self._session.execute(
            select(RuleModel.id).where(
                RuleModel.account_id == account_id,
                RuleModel.job_type == JobType.DOWNLOAD_INVOICE.value,
                RuleModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()

        job_id = self._insert_job(
            account_id=account_id,
            rule_id=rule_id,
            start=billing_period_start,
            end=billing_period_end,
            expected_due_date=expected_due_date or billing_period_end,
            is_manual=True,
        )
        if job_id is None:
            return None
        logger.info("manual_job_created", extra={"job_id": str(job_id), "account_id": str(account_id)})
        return self._session.get(JobModel, job_id).to_dto()

    def create_job_for_rule(self, rule_id: UUID, today: date | None = None) -> Job | None:
        """Materialize one rule now, even if it is not due yet.

        The job covers the rule's current window; the rule advances one
        period.  Returns None if the period already has a job.

        Raises:
            RuleNotFoundError: unknown or deleted rule, or a rule without a
                window.
            UnknownPeriodTypeError: the rule's period type is unrecognized.
        """
        today = today or today_utc(self._clock)
        rule = self._session.get(RuleModel, rule_id)
        if (
            rule is None
            or rule.is_deleted
            or rule.next_due_date is None
            or rule.next_window_start is None
            or rule.next_window_end is None
        ):
            raise RuleNotFoundError(str(rule_id))

        # Pretend the rule is due so that advance() always steps.
        advance = self._scheduler.advance(rule.to_dto(), max(today, rule.next_due_date))
        job_id = self._insert_job(
            account_id=rule.account_id,
            rule_id=rule.id,
            start=rule.next_window_start,
            end=rule.next_window_end,
            expected_due_date=rule.next_due_date,
            is_manual=True,
        )
        self._apply_advance(rule, advance)
        self._session.flush()
        if job_id is None:
            return None
        return self._session.get(JobModel, job_id).to_dto()

