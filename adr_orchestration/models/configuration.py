"""
ORM models for operator-maintained settings: the singleton configuration
row and the account blacklist.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, Date, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from adr_kernel.db.base import SoftDeleteMixin, TrackedBase

if TYPE_CHECKING:
    from adr_config.schema import OrchestrationSettings
    from adr_orchestration.domain.types import BlacklistEntry

SINGLETON_KEY = "default"


class ConfigurationModel(TrackedBase):
    """Singleton orchestration configuration.

    ``singleton_key`` is unique and always ``"default"``, so a second row
    cannot be inserted.
    """

    __tablename__ = "adr_configuration"

    singleton_key: Mapped[str] = mapped_column(
        String(20), nullable=False, unique=True, default=SINGLETON_KEY,
    )
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False)
    max_parallel_requests: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    setup_batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    default_window_days_before: Mapped[int] = mapped_column(Integer, nullable=False)
    default_window_days_after: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_status_check_delay_days: Mapped[int] = mapped_column(Integer, nullable=False)
    test_mode_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    test_mode_max_scraping_jobs: Mapped[int] = mapped_column(Integer, nullable=False)
    test_mode_max_credential_checks: Mapped[int] = mapped_column(Integer, nullable=False)
    is_orchestration_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    enable_detailed_logging: Mapped[bool] = mapped_column(Boolean, nullable=False)
    max_orchestration_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    stale_job_lookback_days: Mapped[int] = mapped_column(Integer, nullable=False)

    def to_settings(self) -> OrchestrationSettings:
        from adr_config.schema import OrchestrationSettings

        return OrchestrationSettings(
            max_retries=self.max_retries,
            max_parallel_requests=self.max_parallel_requests,
            batch_size=self.batch_size,
            setup_batch_size=self.setup_batch_size,
            default_window_days_before=self.default_window_days_before,
            default_window_days_after=self.default_window_days_after,
            daily_status_check_delay_days=self.daily_status_check_delay_days,
            test_mode_enabled=self.test_mode_enabled,
            test_mode_max_scraping_jobs=self.test_mode_max_scraping_jobs,
            test_mode_max_credential_checks=self.test_mode_max_credential_checks,
            is_orchestration_enabled=self.is_orchestration_enabled,
            enable_detailed_logging=self.enable_detailed_logging,
            max_orchestration_duration_minutes=self.max_orchestration_duration_minutes,
            stale_job_lookback_days=self.stale_job_lookback_days,
        )

    @classmethod
    def from_settings(cls, settings: OrchestrationSettings, created_by_id) -> ConfigurationModel:
        return cls(
            singleton_key=SINGLETON_KEY,
            max_retries=settings.max_retries,
            max_parallel_requests=settings.max_parallel_requests,
            batch_size=settings.batch_size,
            setup_batch_size=settings.setup_batch_size,
            default_window_days_before=settings.default_window_days_before,
            default_window_days_after=settings.default_window_days_after,
            daily_status_check_delay_days=settings.daily_status_check_delay_days,
            test_mode_enabled=settings.test_mode_enabled,
            test_mode_max_scraping_jobs=settings.test_mode_max_scraping_jobs,
            test_mode_max_credential_checks=settings.test_mode_max_credential_checks,
            is_orchestration_enabled=settings.is_orchestration_enabled,
            enable_detailed_logging=settings.enable_detailed_logging,
            max_orchestration_duration_minutes=settings.max_orchestration_duration_minutes,
            stale_job_lookback_days=settings.stale_job_lookback_days,
            created_by_id=created_by_id,
        )


class BlacklistModel(SoftDeleteMixin, TrackedBase):
    """Exclusion entry; any criterion that is set may match an account."""

    __tablename__ = "adr_account_blacklist"

    __table_args__ = (
        Index("ix_adr_account_blacklist_active", "is_active", "is_deleted"),
    )

    exclusion_type: Mapped[str] = mapped_column(String(30), nullable=False)
    primary_vendor_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    master_vendor_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vm_account_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    vm_account_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    credential_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> BlacklistEntry:
        from adr_orchestration.domain.types import BlacklistEntry, ExclusionType

        return BlacklistEntry(
            entry_id=self.id,
            exclusion_type=ExclusionType(self.exclusion_type),
            primary_vendor_code=self.primary_vendor_code,
            master_vendor_code=self.master_vendor_code,
            vm_account_id=self.vm_account_id,
            vm_account_number=self.vm_account_number,
            credential_id=self.credential_id,
            is_active=self.is_active,
            effective_start_date=self.effective_start_date,
            effective_end_date=self.effective_end_date,
            reason=self.reason,
        )
