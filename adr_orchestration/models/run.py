"""
ORM model for orchestration run bookkeeping.

One row per accepted run request.  Written only by
``OrchestrationRunRecorder``, each write in its own session so that a
bookkeeping failure never touches the run's job processing.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from adr_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from adr_orchestration.domain.types import OrchestrationRun


class OrchestrationRunModel(TrackedBase):
    """Audit record of one orchestration run with per-step counters."""

    __tablename__ = "adr_orchestration_runs"

    __table_args__ = (
        Index("ix_adr_orchestration_runs_status", "status"),
        Index("ix_adr_orchestration_runs_requested_at", "requested_at"),
    )

    request_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    requested_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    current_step: Mapped[str | None] = mapped_column(String(50), nullable=True)
    current_progress: Mapped[str | None] = mapped_column(String(100), nullable=True)
    total_items: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_items: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Sync
    sync_accounts_inserted: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sync_accounts_updated: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sync_accounts_total: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Job creation
    jobs_created: Mapped[int | None] = mapped_column(Integer, nullable=True)
    jobs_skipped: Mapped[int | None] = mapped_column(Integer, nullable=True)
    jobs_blacklisted: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Credential verification
    credentials_verified: Mapped[int | None] = mapped_column(Integer, nullable=True)
    credentials_failed: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Scraping
    scraping_requested: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scraping_failed: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Status checks
    statuses_checked: Mapped[int | None] = mapped_column(Integer, nullable=True)
    statuses_completed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    statuses_failed: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Durations (seconds)
    sync_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    create_jobs_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    credential_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    scraping_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    status_check_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    def to_dto(self) -> OrchestrationRun:
        from adr_orchestration.domain.types import OrchestrationRun, RunStatus

        return OrchestrationRun(
            request_id=self.request_id,
            status=RunStatus(self.status),
            requested_at=self.requested_at,
            requested_by=self.requested_by,
            started_at=self.started_at,
            completed_at=self.completed_at,
            current_step=self.current_step,
            current_progress=self.current_progress,
            error_message=self.error_message,
            counters={name: getattr(self, name) for name in COUNTER_COLUMNS},
        )


COUNTER_COLUMNS: tuple[str, ...] = (
    "sync_accounts_inserted",
    "sync_accounts_updated",
    "sync_accounts_total",
    "jobs_created",
    "jobs_skipped",
    "jobs_blacklisted",
    "credentials_verified",
    "credentials_failed",
    "scraping_requested",
    "scraping_failed",
    "statuses_checked",
    "statuses_completed",
    "statuses_failed",
    "sync_duration_seconds",
    "create_jobs_duration_seconds",
    "credential_duration_seconds",
    "scraping_duration_seconds",
    "status_check_duration_seconds",
)
