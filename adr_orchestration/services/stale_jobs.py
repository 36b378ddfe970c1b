"""
StaleJobFinalizer -- Operator cleanup of jobs that missed their window.

A pending job whose billing period ended before today was never picked up
(orchestration disabled, blacklisted at the time, outage).  Such jobs are
cancelled with an explanatory message and their rule is caught up to the
first due date on or after today, so the next run schedules fresh work
instead of replaying the backlog.

Flushes, never commits.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from adr_config.schema import OrchestrationSettings
from adr_kernel.domain.clock import Clock, SystemClock, today_utc
from adr_kernel.exceptions import JobNotFoundError, UnknownPeriodTypeError
from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.billing_period import RuleScheduler
from adr_orchestration.domain.lifecycle import ensure_transition
from adr_orchestration.domain.types import SYSTEM_ACTOR_ID, Job, JobStatus, StaleJobsResult
from adr_orchestration.models.account import RuleModel
from adr_orchestration.models.job import JobModel

logger = get_logger("orchestration.stale_jobs")


def missed_window_message(billing_period_end: date, today: date) -> str:
    return (
        f"Job missed processing window. Billing period ended "
        f"{billing_period_end.isoformat()}. Finalized on {today.isoformat()}."
    )


class StaleJobFinalizer:
    def __init__(
        self,
        session: Session,
        settings: OrchestrationSettings,
        scheduler: RuleScheduler | None = None,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session = session
        self._settings = settings
        self._scheduler = scheduler or RuleScheduler()
        self._clock = clock or SystemClock()
        self._actor_id = actor_id

    def find_stale(self, today: date) -> list[JobModel]:
        horizon = today - timedelta(days=self._settings.stale_job_lookback_days)
        return list(
            self._session.execute(
                select(JobModel)
                .where(
                    JobModel.status == JobStatus.PENDING.value,
                    JobModel.is_deleted.is_(False),
                    JobModel.billing_period_end < today,
                    JobModel.billing_period_end >= horizon,
                )
                .order_by(JobModel.billing_period_end, JobModel.id)
                .with_for_update()
            ).scalars().all()
        )

    def finalize(self, today: date | None = None) -> StaleJobsResult:
        """Cancel stale pending jobs and catch their rules up."""
        today = today or today_utc(self._clock)
        stale = self.find_stale(today)
        cancelled = rules_advanced = errors = 0
        advanced: set[UUID] = set()

        for job in stale:
            try:
                with self._session.begin_nested():
                    ensure_transition(job.id, JobStatus(job.status), JobStatus.CANCELLED)
                    job.status = JobStatus.CANCELLED.value
                    job.error_message = missed_window_message(job.billing_period_end, today)
                    job.updated_by_id = self._actor_id
                    if job.rule_id is not None and job.rule_id not in advanced:
                        if self._catch_up_rule(job.rule_id, today):
                            rules_advanced += 1
                        advanced.add(job.rule_id)
            except Exception:
                logger.exception("stale_job_finalize_failed", extra={"job_id": str(job.id)})
                errors += 1
                continue
            cancelled += 1

        self._session.flush()
        logger.info(
            "stale_jobs_finalized",
            extra={
                "found": len(stale),
                "cancelled": cancelled,
                "rules_advanced": rules_advanced,
                "errors": errors,
            },
        )
        return StaleJobsResult(
            found=len(stale),
            cancelled=cancelled,
            rules_advanced=rules_advanced,
            errors=errors,
        )

    def _catch_up_rule(self, rule_id: UUID, today: date) -> bool:
        rule = self._session.get(RuleModel, rule_id)
        if rule is None or rule.is_deleted:
            return False
        try:
            window = self._scheduler.next_on_or_after(rule.to_dto(), today)
        except UnknownPeriodTypeError as exc:
            rule.needs_review = True
            rule.review_reason = str(exc)
            rule.updated_by_id = self._actor_id
            return False
        if window.due_date == rule.next_due_date:
            return False
        rule.next_due_date = window.due_date
        rule.next_window_start = window.start
        rule.next_window_end = window.end
        rule.updated_by_id = self._actor_id
        return True

    def cancel_job(self, job_id: UUID, reason: str) -> Job:
        """Operator cancel of one non-terminal job.

        Raises:
            JobNotFoundError: unknown or deleted job.
            InvalidJobTransitionError: the job already reached another
                terminal status.
        """
        job = self._session.get(JobModel, job_id)
        if job is None or job.is_deleted:
            raise JobNotFoundError(str(job_id))
        ensure_transition(job.id, JobStatus(job.status), JobStatus.CANCELLED)
        job.status = JobStatus.CANCELLED.value
        job.error_message = reason
        job.updated_by_id = self._actor_id
        self._session.flush()
        logger.info("job_cancelled", extra={"job_id": str(job_id), "reason": reason})
        return job.to_dto()
