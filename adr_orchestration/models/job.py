"""
ORM models for jobs and the execution ledger.

Contract:
    JobModel is one billing period of work for one account; ExecutionModel
    is one vendor call attempt for a job.  Both convert to frozen DTOs via
    ``to_dto()``.

Invariants enforced:
    - ``uq_adr_jobs_account_period``: at most one non-deleted job per
      (account_id, billing_period_start, billing_period_end).  Enforced by
      the database as a partial unique index, not only in application code.
    - ``uq_adr_job_executions_job_type_date``: at most one execution per
      (job_id, request_type, execution_date).  ``execution_date`` is the
      UTC calendar day of the attempt.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from adr_kernel.db.base import SoftDeleteMixin, TrackedBase, UUIDString

if TYPE_CHECKING:
    from adr_orchestration.domain.types import Execution, Job


class JobModel(SoftDeleteMixin, TrackedBase):
    """Job lifecycle row (see ``domain.lifecycle`` for legal transitions)."""

    __tablename__ = "adr_jobs"

    __table_args__ = (
        Index(
            "uq_adr_jobs_account_period",
            "account_id",
            "billing_period_start",
            "billing_period_end",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index("ix_adr_jobs_status", "status"),
        Index("ix_adr_jobs_status_scrape_date", "status", "scrape_requested_date"),
        Index("ix_adr_jobs_rule", "rule_id"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("adr_accounts.id"),
        nullable=False,
    )
    rule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("adr_account_rules.id"),
        nullable=True,
    )
    job_type: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    expected_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    vendor_status_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vendor_status_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    vendor_index_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_manual_request: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    credential_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    scrape_requested_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    scraping_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_status_check_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    account = relationship("AccountModel", foreign_keys=[account_id])
    rule = relationship("RuleModel", foreign_keys=[rule_id])
    executions: Mapped[list["ExecutionModel"]] = relationship(
        "ExecutionModel",
        back_populates="job",
        foreign_keys="ExecutionModel.job_id",
    )

    def to_dto(self) -> Job:
        from adr_orchestration.domain.types import Job, JobStatus, JobType

        return Job(
            job_id=self.id,
            account_id=self.account_id,
            billing_period_start=self.billing_period_start,
            billing_period_end=self.billing_period_end,
            status=JobStatus(self.status),
            rule_id=self.rule_id,
            job_type=JobType(self.job_type),
            expected_due_date=self.expected_due_date,
            vendor_status_id=self.vendor_status_id,
            vendor_status_description=self.vendor_status_description,
            vendor_index_id=self.vendor_index_id,
            retry_count=self.retry_count,
            is_manual_request=self.is_manual_request,
            error_message=self.error_message,
            credential_verified_at=self.credential_verified_at,
            scrape_requested_date=self.scrape_requested_date,
            scraping_completed_at=self.scraping_completed_at,
            last_status_check_at=self.last_status_check_at,
            is_deleted=self.is_deleted,
        )


class ExecutionModel(TrackedBase):
    """Ledger row: one vendor call attempt, claimed before the call is made."""

    __tablename__ = "adr_job_executions"

    __table_args__ = (
        UniqueConstraint(
            "job_id",
            "request_type",
            "execution_date",
            name="uq_adr_job_executions_job_type_date",
        ),
        Index("ix_adr_job_executions_started", "started_at"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("adr_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    request_type: Mapped[str] = mapped_column(String(50), nullable=False)
    execution_date: Mapped[date] = mapped_column(Date, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    is_success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vendor_status_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vendor_status_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    vendor_index_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_payload: Mapped[str | None] = mapped_column(Text, nullable=True)

    job: Mapped["JobModel"] = relationship(
        "JobModel",
        back_populates="executions",
        foreign_keys=[job_id],
    )

    def to_dto(self) -> Execution:
        from adr_orchestration.domain.types import Execution, RequestType

        return Execution(
            execution_id=self.id,
            job_id=self.job_id,
            request_type=RequestType(self.request_type),
            execution_date=self.execution_date,
            started_at=self.started_at,
            completed_at=self.completed_at,
            is_success=self.is_success,
            http_status=self.http_status,
            vendor_status_id=self.vendor_status_id,
            vendor_status_description=self.vendor_status_description,
            vendor_index_id=self.vendor_index_id,
            error_message=self.error_message,
            request_payload=self.request_payload,
            response_payload=self.response_payload,
        )
