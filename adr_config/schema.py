"""
Settings schema for the ADR orchestration engine.

YAML fragments are parsed into these frozen dataclasses by
``adr_config.loader``.  ``OrchestrationSettings`` doubles as the runtime
snapshot of the singleton configuration row: the pipeline reads it once per
run and never mutates it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Orchestration behaviour
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrchestrationSettings:
    """Per-run limits, batch sizes and feature flags."""

    max_retries: int = 5
    max_parallel_requests: int = 8
    batch_size: int = 1000
    setup_batch_size: int = 500
    default_window_days_before: int = 5
    default_window_days_after: int = 5
    daily_status_check_delay_days: int = 1
    test_mode_enabled: bool = False
    test_mode_max_scraping_jobs: int = 50
    test_mode_max_credential_checks: int = 50
    is_orchestration_enabled: bool = True
    enable_detailed_logging: bool = False
    max_orchestration_duration_minutes: int = 240
    stale_job_lookback_days: int = 90

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.max_parallel_requests < 1:
            raise ValueError("max_parallel_requests must be >= 1")
        if self.batch_size < 1 or self.setup_batch_size < 1:
            raise ValueError("batch sizes must be >= 1")


# ---------------------------------------------------------------------------
# Run queue
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueueSettings:
    capacity: int = 10
    recent_run_limit: int = 10
    status_retention_hours: int = 24
    error_backoff_seconds: float = 5.0
    poll_interval_seconds: float = 1.0


# ---------------------------------------------------------------------------
# Vendor API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VendorApiSettings:
    base_url: str = ""
    source_application_name: str = "ADR Orchestrator"
    recipient_email: str | None = None
    timeout_seconds: float = 60.0
    max_response_chars: int = 500


# ---------------------------------------------------------------------------
# Billing period defaults
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PeriodWindowDefault:
    """Default search window and approximate length for one period type."""

    period_type: str
    approx_days: int
    window_days_before: int
    window_days_after: int


@dataclass(frozen=True)
class AdrSettings:
    """Complete settings tree as loaded from YAML."""

    orchestration: OrchestrationSettings = field(default_factory=OrchestrationSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    vendor_api: VendorApiSettings = field(default_factory=VendorApiSettings)
    period_windows: tuple[PeriodWindowDefault, ...] = ()
    database_url: str | None = None

    def window_default(self, period_type: str) -> PeriodWindowDefault | None:
        for entry in self.period_windows:
            if entry.period_type == period_type:
                return entry
        return None
