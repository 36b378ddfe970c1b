"""
RuleScheduler -- Pure due-date and billing-window arithmetic.

Contract:
    Given a scheduling ``Rule`` and "today", computes the rule's next due
    date and search window, or reports that the rule is not due yet.  No
    I/O, no clock access: callers pass ``today`` explicitly.

Architecture: adr_orchestration/domain.  Imports only domain types and the
    kernel exception hierarchy.

Algorithm:
    - Calendar-anchored periods (monthly, bi-monthly, quarterly,
      semi-annually, annually) step by whole months and land on the rule's
      ``day_of_month`` (or the current due day), clamped to the month
      length: Jan 31 -> Feb 28 -> Mar 31.
    - Day-based periods (bi-weekly) add ``period_days`` (default 14).  A
      bi-weekly rule that has drifted more than three days off the grid
      implied by its last successful download is re-anchored on that grid.
    - Window = due - before .. due + after.  The start is clamped so it
      never precedes the previous window's end (and never passes the due
      date).  Offsets outside 0..365 fall back to the period default.

Invariants enforced:
    - Monotonic: an advanced due date is always strictly after the
      previous due date.
    - ``window.start <= window.due_date <= window.end``.
    - Unknown period types raise ``UnknownPeriodTypeError``; there is no
      silent default cadence.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, timedelta
from uuid import UUID

from adr_kernel.exceptions import UnknownPeriodTypeError

from adr_orchestration.domain.types import PeriodType, Rule

MAX_CATCH_UP_ITERATIONS = 100
MAX_WINDOW_OFFSET_DAYS = 365
BI_WEEKLY_DRIFT_THRESHOLD_DAYS = 3


# =============================================================================
# Period table
# =============================================================================


@dataclass(frozen=True)
class PeriodSpec:
    """Cadence and default window of one period type.

    ``months`` > 0 marks a calendar-anchored period; otherwise ``days`` is
    the step.
    """

    period_type: PeriodType
    months: int
    days: int
    approx_days: int
    window_days_before: int
    window_days_after: int

    @property
    def is_calendar_anchored(self) -> bool:
        return self.months > 0


DEFAULT_PERIOD_SPECS: dict[PeriodType, PeriodSpec] = {
    PeriodType.BI_WEEKLY: PeriodSpec(PeriodType.BI_WEEKLY, 0, 14, 14, 3, 3),
    PeriodType.MONTHLY: PeriodSpec(PeriodType.MONTHLY, 1, 0, 30, 5, 5),
    PeriodType.BI_MONTHLY: PeriodSpec(PeriodType.BI_MONTHLY, 2, 0, 60, 7, 7),
    PeriodType.QUARTERLY: PeriodSpec(PeriodType.QUARTERLY, 3, 0, 90, 10, 10),
    PeriodType.SEMI_ANNUALLY: PeriodSpec(PeriodType.SEMI_ANNUALLY, 6, 0, 180, 14, 14),
    PeriodType.ANNUALLY: PeriodSpec(PeriodType.ANNUALLY, 12, 0, 365, 21, 21),
}

_PERIOD_ALIASES: dict[str, PeriodType] = {
    "biweekly": PeriodType.BI_WEEKLY,
    "monthly": PeriodType.MONTHLY,
    "bimonthly": PeriodType.BI_MONTHLY,
    "quarterly": PeriodType.QUARTERLY,
    "semiannually": PeriodType.SEMI_ANNUALLY,
    "annually": PeriodType.ANNUALLY,
}


def parse_period_type(
    value: str | PeriodType | None, rule_id: UUID | None = None,
) -> PeriodType:
    """Normalize "Bi-Weekly", "bi_weekly", "BiWeekly" ... to ``PeriodType``.

    Raises:
        UnknownPeriodTypeError: for empty or unrecognized values.
    """
    if isinstance(value, PeriodType):
        return value
    key = re.sub(r"[^a-z]", "", (value or "").lower())
    try:
        return _PERIOD_ALIASES[key]
    except KeyError:
        raise UnknownPeriodTypeError(value, str(rule_id) if rule_id else None) from None


# =============================================================================
# Value objects
# =============================================================================


@dataclass(frozen=True)
class BillingWindow:
    """Expected document date and the search window around it."""

    due_date: date
    start: date
    end: date

    def __post_init__(self) -> None:
        if not (self.start <= self.due_date <= self.end):
            raise ValueError(
                f"Window {self.start}..{self.end} does not contain {self.due_date}"
            )


@dataclass(frozen=True)
class RuleAdvance:
    """Result of advancing a due rule by one period."""

    rule_id: UUID
    previous_due_date: date
    window: BillingWindow
    drift_corrected: bool = False


# =============================================================================
# Pure helpers
# =============================================================================


def add_months(value: date, months: int, anchor_day: int | None = None) -> date:
    """Step ``months`` calendar months, landing on ``anchor_day`` clamped."""
    day = anchor_day if anchor_day and 1 <= anchor_day <= 31 else value.day
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def resolve_offsets(rule: Rule, spec: PeriodSpec) -> tuple[int, int]:
    """Rule's window offsets, each replaced by the default when out of range."""

    def _valid(value: int | None) -> bool:
        return value is not None and 0 <= value <= MAX_WINDOW_OFFSET_DAYS

    before = rule.window_days_before if _valid(rule.window_days_before) else spec.window_days_before
    after = rule.window_days_after if _valid(rule.window_days_after) else spec.window_days_after
    return before, after


def build_window(
    due: date, days_before: int, days_after: int, prior_end: date | None = None,
) -> BillingWindow:
    start = due - timedelta(days=days_before)
    if prior_end is not None and start < prior_end:
        start = min(prior_end, due)
    return BillingWindow(due_date=due, start=start, end=due + timedelta(days=days_after))


def detect_bi_weekly_drift(
    calculated: date,
    last_download: date,
    period_days: int = 14,
    threshold_days: int = BI_WEEKLY_DRIFT_THRESHOLD_DAYS,
) -> bool:
    """True when ``calculated`` is more than ``threshold_days`` off the grid
    ``last_download + k * period_days``."""
    offset = (calculated - last_download).days % period_days
    return min(offset, period_days - offset) > threshold_days


def correct_bi_weekly_drift(
    last_download: date, period_days: int, after: date,
) -> date:
    """First grid date ``last_download + k * period_days`` strictly after ``after``."""
    candidate = last_download + timedelta(days=period_days)
    if candidate <= after:
        steps = (after - candidate).days // period_days + 1
        candidate += timedelta(days=steps * period_days)
    return candidate


# =============================================================================
# RuleScheduler
# =============================================================================


class RuleScheduler:
    """Due-date engine for scheduling rules.

    Contract:
        - ``advance(rule, today)`` returns ``None`` when the rule is not due,
          else the next window one period later.
        - ``next_on_or_after(rule, today)`` catches a stale rule up to the
          first due date >= today (bounded at 100 steps).
        - ``initial_window(...)`` builds the first window for a new rule.

    Non-goals:
        - Does NOT persist anything; callers apply the result to the row.
        - Does NOT parse cron expressions.
    """

    def __init__(self, period_specs: Mapping[PeriodType, PeriodSpec] | None = None):
        self._specs = dict(DEFAULT_PERIOD_SPECS)
        if period_specs:
            self._specs.update(period_specs)

    @classmethod
    def from_window_defaults(cls, defaults: Iterable) -> RuleScheduler:
        """Build from ``adr_config`` ``PeriodWindowDefault`` entries."""
        specs: dict[PeriodType, PeriodSpec] = {}
        for entry in defaults:
            period_type = parse_period_type(entry.period_type)
            base = DEFAULT_PERIOD_SPECS[period_type]
            specs[period_type] = PeriodSpec(
                period_type=period_type,
                months=base.months,
                days=base.days,
                approx_days=entry.approx_days,
                window_days_before=entry.window_days_before,
                window_days_after=entry.window_days_after,
            )
        return cls(specs)

    def spec_for(self, period_type: str | PeriodType | None, rule_id: UUID | None = None) -> PeriodSpec:
        return self._specs[parse_period_type(period_type, rule_id)]

    def is_due(self, rule: Rule, today: date) -> bool:
        return rule.next_due_date is not None and rule.next_due_date <= today

    def step(self, rule: Rule, spec: PeriodSpec, from_due: date) -> date:
        """One period after ``from_due``."""
        if spec.is_calendar_anchored:
            return add_months(from_due, spec.months, rule.day_of_month)
        days = rule.period_days if rule.period_days and rule.period_days > 0 else spec.days
        return from_due + timedelta(days=days)

    def advance(self, rule: Rule, today: date) -> RuleAdvance | None:
        """Advance a due rule by exactly one period.

        Raises:
            UnknownPeriodTypeError: the rule must be flagged for review.
        """
        if not self.is_due(rule, today):
            return None
        spec = self.spec_for(rule.period_type, rule.rule_id)
        current = rule.next_due_date
        due = self.step(rule, spec, current)

        drift_corrected = False
        if (
            spec.period_type is PeriodType.BI_WEEKLY
            and rule.last_successful_download_date is not None
        ):
            period_days = rule.period_days if rule.period_days and rule.period_days > 0 else spec.days
            if detect_bi_weekly_drift(due, rule.last_successful_download_date, period_days):
                due = correct_bi_weekly_drift(
                    rule.last_successful_download_date, period_days, after=current,
                )
                drift_corrected = True

        before, after = resolve_offsets(rule, spec)
        return RuleAdvance(
            rule_id=rule.rule_id,
            previous_due_date=current,
            window=build_window(due, before, after, prior_end=rule.next_window_end),
            drift_corrected=drift_corrected,
        )

    def next_on_or_after(self, rule: Rule, today: date) -> BillingWindow:
        """First window whose due date is >= ``today``.

        A rule already due today or later keeps its current due date.
        """
        spec = self.spec_for(rule.period_type, rule.rule_id)
        if (
            rule.next_due_date is not None
            and rule.next_due_date >= today
            and rule.next_window_start is not None
            and rule.next_window_end is not None
        ):
            return BillingWindow(rule.next_due_date, rule.next_window_start, rule.next_window_end)

        before, after = resolve_offsets(rule, spec)
        due = rule.next_due_date or today
        for _ in range(MAX_CATCH_UP_ITERATIONS):
            if due >= today:
                break
            due = self.step(rule, spec, due)
        return build_window(due, before, after, prior_end=rule.next_window_end)

    def initial_window(
        self,
        period_type: str | PeriodType,
        expected_date: date,
        days_before: int | None = None,
        days_after: int | None = None,
    ) -> BillingWindow:
        """Window for a freshly created rule around ``expected_date``."""
        spec = self.spec_for(period_type)
        before = days_before if days_before is not None and 0 <= days_before <= MAX_WINDOW_OFFSET_DAYS else spec.window_days_before
        after = days_after if days_after is not None and 0 <= days_after <= MAX_WINDOW_OFFSET_DAYS else spec.window_days_after
        return build_window(expected_date, before, after)

    def download_anchor(
        self, rule: Rule, job_due_date: date | None, today: date,
    ) -> date:
        """``last_successful_download_date`` to record when a job completes.

        The job's expected due date is recorded (today when unknown), except
        that it may not pass one period after the previous anchor: an early
        vendor moves the anchor earlier, a late vendor never drags it later.
        """
        job_date = job_due_date or today
        previous = rule.last_successful_download_date
        if previous is None:
            return job_date
        spec = self.spec_for(rule.period_type, rule.rule_id)
        if spec.is_calendar_anchored:
            expected = add_months(previous, spec.months)
        else:
            days = rule.period_days if rule.period_days and rule.period_days > 0 else spec.days
            expected = previous + timedelta(days=days)
        return min(job_date, expected)
