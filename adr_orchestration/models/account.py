"""
ORM models for tracked accounts and their scheduling rules.

Contract:
    AccountModel mirrors the external account feed; RuleModel holds the
    due-date schedule for one (account, job type).  Both are soft-deleted
    only.  Each has ``to_dto()`` / ``from_dto()`` round-trip methods.

Invariants enforced:
    - One non-deleted account per (vm_account_id, vm_account_number).
    - One non-deleted rule per (account, job_type)
      (partial unique index ``uq_adr_account_rules_account_job_type``).
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from adr_kernel.db.base import SoftDeleteMixin, TrackedBase, UUIDString

if TYPE_CHECKING:
    from adr_orchestration.domain.types import Account, Rule


class AccountModel(SoftDeleteMixin, TrackedBase):
    """Vendor account synchronized from the account feed."""

    __tablename__ = "adr_accounts"

    __table_args__ = (
        Index(
            "uq_adr_accounts_vm_account",
            "vm_account_id",
            "vm_account_number",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index("ix_adr_accounts_credential", "credential_id"),
        Index("ix_adr_accounts_vendor", "primary_vendor_code"),
    )

    vm_account_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    vm_account_number: Mapped[str] = mapped_column(String(100), nullable=False)
    interface_account_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    client_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    primary_vendor_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    master_vendor_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    credential_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    expected_next_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    historical_billing_status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    rules: Mapped[list["RuleModel"]] = relationship(
        "RuleModel",
        back_populates="account",
        foreign_keys="RuleModel.account_id",
    )

    def to_dto(self) -> Account:
        from adr_orchestration.domain.types import Account

        return Account(
            account_id=self.id,
            vm_account_id=self.vm_account_id,
            vm_account_number=self.vm_account_number,
            interface_account_id=self.interface_account_id,
            client_name=self.client_name,
            primary_vendor_code=self.primary_vendor_code,
            master_vendor_code=self.master_vendor_code,
            credential_id=self.credential_id,
            period_type=self.period_type,
            expected_next_date=self.expected_next_date,
            historical_billing_status=self.historical_billing_status,
            is_deleted=self.is_deleted,
        )

    @classmethod
    def from_dto(cls, dto: Account, created_by_id: UUID) -> AccountModel:
        return cls(
            id=dto.account_id,
            vm_account_id=dto.vm_account_id,
            vm_account_number=dto.vm_account_number,
            interface_account_id=dto.interface_account_id,
            client_name=dto.client_name,
            primary_vendor_code=dto.primary_vendor_code,
            master_vendor_code=dto.master_vendor_code,
            credential_id=dto.credential_id,
            period_type=dto.period_type,
            expected_next_date=dto.expected_next_date,
            historical_billing_status=dto.historical_billing_status,
            is_deleted=dto.is_deleted,
            created_by_id=created_by_id,
            updated_by_id=None,
        )


class RuleModel(SoftDeleteMixin, TrackedBase):
    """Scheduling rule: when the next document for an account is due."""

    __tablename__ = "adr_account_rules"

    __table_args__ = (
        Index(
            "uq_adr_account_rules_account_job_type",
            "account_id",
            "job_type",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index("ix_adr_account_rules_due", "job_type", "is_enabled", "next_due_date"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("adr_accounts.id"),
        nullable=False,
    )
    job_type: Mapped[int] = mapped_column(Integer, nullable=False)
    period_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_window_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_window_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    window_days_before: Mapped[int | None] = mapped_column(Integer, nullable=True)
    window_days_after: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_manually_overridden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_successful_download_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    account: Mapped["AccountModel"] = relationship(
        "AccountModel",
        back_populates="rules",
        foreign_keys=[account_id],
    )

    def to_dto(self) -> Rule:
        from adr_orchestration.domain.types import JobType, Rule

        return Rule(
            rule_id=self.id,
            account_id=self.account_id,
            job_type=JobType(self.job_type),
            period_type=self.period_type,
            period_days=self.period_days,
            day_of_month=self.day_of_month,
            next_due_date=self.next_due_date,
            next_window_start=self.next_window_start,
            next_window_end=self.next_window_end,
            window_days_before=self.window_days_before,
            window_days_after=self.window_days_after,
            is_enabled=self.is_enabled,
            priority=self.priority,
            is_manually_overridden=self.is_manually_overridden,
            needs_review=self.needs_review,
            review_reason=self.review_reason,
            last_successful_download_date=self.last_successful_download_date,
        )

    @classmethod
    def from_dto(cls, dto: Rule, created_by_id: UUID) -> RuleModel:
        return cls(
            id=dto.rule_id,
            account_id=dto.account_id,
            job_type=dto.job_type.value,
            period_type=dto.period_type,
            period_days=dto.period_days,
            day_of_month=dto.day_of_month,
            next_due_date=dto.next_due_date,
            next_window_start=dto.next_window_start,
            next_window_end=dto.next_window_end,
            window_days_before=dto.window_days_before,
            window_days_after=dto.window_days_after,
            is_enabled=dto.is_enabled,
            priority=dto.priority,
            is_manually_overridden=dto.is_manually_overridden,
            needs_review=dto.needs_review,
            review_reason=dto.review_reason,
            last_successful_download_date=dto.last_successful_download_date,
            is_deleted=False,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
