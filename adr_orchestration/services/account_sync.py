"""
AccountSyncService -- Mirrors the external account feed (the Sync step).

Contract:
    ``sync(feed)`` upserts every feed record keyed by
    (vm_account_id, vm_account_number), soft-deletes accounts that are no
    longer delivered, and makes sure each account with a recognized period
    type and an expected next date has a download rule.

Architecture: adr_orchestration/services.  The feed is an external
    collaborator behind the ``AccountFeed`` protocol; ``FileAccountFeed``
    reads a YAML export for local runs.  Flushes, never commits; the
    ``checkpoint`` hook commits per batch.

Invariants enforced:
    - Rules with ``is_manually_overridden`` keep their billing pattern
      (period type, period days, day of month).  Due dates are never
      touched by sync; they belong to the RuleScheduler.
    - One bad record is rolled back to its SAVEPOINT and counted in
      ``errors``; the sync continues.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import date
from pathlib import Path
from typing import Any, Protocol
from uuid import UUID

import yaml
from sqlalchemy import select
from sqlalchemy.orm import Session

from adr_config.schema import OrchestrationSettings
from adr_kernel.exceptions import UnknownPeriodTypeError
from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.billing_period import RuleScheduler, parse_period_type
from adr_orchestration.domain.types import SYSTEM_ACTOR_ID, AccountRecord, JobType, SyncResult
from adr_orchestration.models.account import AccountModel, RuleModel

logger = get_logger("orchestration.account_sync")

AccountKey = tuple[int, str]


class AccountFeed(Protocol):
    """Source of truth for the tracked account population."""

    def fetch_accounts(self) -> list[AccountRecord]:
        ...


class FileAccountFeed:
    """Account feed read from a YAML list of records."""

    def __init__(self, path: Path | str):
        self._path = Path(path)

    def fetch_accounts(self) -> list[AccountRecord]:
        with open(self._path) as f:
            data = yaml.safe_load(f) or []
        if isinstance(data, Mapping):
            data = data.get("accounts") or []
        return [_record_from_mapping(item) for item in data]


def _record_from_mapping(item: Mapping[str, Any]) -> AccountRecord:
    expected = item.get("expected_next_date")
    if isinstance(expected, str):
        expected = date.fromisoformat(expected)
    return AccountRecord(
        vm_account_id=int(item["vm_account_id"]),
        vm_account_number=str(item["vm_account_number"]),
        interface_account_id=item.get("interface_account_id"),
        client_name=item.get("client_name"),
        primary_vendor_code=item.get("primary_vendor_code"),
        master_vendor_code=item.get("master_vendor_code"),
        credential_id=item.get("credential_id"),
        period_type=item.get("period_type"),
        expected_next_date=expected,
        historical_billing_status=item.get("historical_billing_status"),
        day_of_month=item.get("day_of_month"),
    )


def _is_known_period_type(value: str | None) -> bool:
    try:
        parse_period_type(value)
    except UnknownPeriodTypeError:
        return False
    return True


class AccountSyncService:
    def __init__(
        self,
        session: Session,
        settings: OrchestrationSettings,
        scheduler: RuleScheduler | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session = session
        self._settings = settings
        self._scheduler = scheduler or RuleScheduler()
        self._actor_id = actor_id

    def sync(
        self,
        feed: AccountFeed,
        on_progress: Callable[[int, int], None] | None = None,
        checkpoint: Callable[[], None] | None = None,
    ) -> SyncResult:
        records = feed.fetch_accounts()
        total = len(records)
        logger.info("account_sync_started", extra={"feed_accounts": total})
        if on_progress is not None:
            on_progress(0, total)

        existing = self._load_existing()
        seen: set[AccountKey] = set()
        counts = {"inserted": 0, "updated": 0, "rules_created": 0, "rules_updated": 0}
        errors = 0
        messages: list[str] = []
        commit = checkpoint or self._session.flush

        for index, record in enumerate(records, start=1):
            key = (record.vm_account_id, record.vm_account_number)
            seen.add(key)
            try:
                with self._session.begin_nested():
                    self._upsert(record, existing, counts)
            except Exception as exc:
                logger.exception(
                    "account_sync_record_failed",
                    extra={"vm_account_id": record.vm_account_id},
                )
                errors += 1
                messages.append(f"VMAccountId {record.vm_account_id}: {exc}")
            if index % self._settings.batch_size == 0:
                commit()
                if on_progress is not None:
                    on_progress(index, total)

        deleted = 0
        for key, account in existing.items():
            if key not in seen and not account.is_deleted:
                account.is_deleted = True
                account.updated_by_id = self._actor_id
                deleted += 1
        commit()
        if on_progress is not None:
            on_progress(total, total)

        result = SyncResult(
            total=total,
            inserted=counts["inserted"],
            updated=counts["updated"],
            deleted=deleted,
            rules_created=counts["rules_created"],
            rules_updated=counts["rules_updated"],
            errors=errors,
            error_messages=tuple(messages),
        )
        logger.info(
            "account_sync_completed",
            extra={
                "total": result.total,
                "inserted": result.inserted,
                "updated": result.updated,
                "deleted": result.deleted,
                "rules_created": result.rules_created,
                "rules_updated": result.rules_updated,
                "errors": result.errors,
            },
        )
        return result

    def _load_existing(self) -> dict[AccountKey, AccountModel]:
        rows = self._session.execute(
            select(AccountModel).where(AccountModel.is_deleted.is_(False))
        ).scalars().all()
        return {(row.vm_account_id, row.vm_account_number): row for row in rows}

    def _upsert(
        self,
        record: AccountRecord,
        existing: dict[AccountKey, AccountModel],
        counts: dict[str, int],
    ) -> None:
        key = (record.vm_account_id, record.vm_account_number)
        account = existing.get(key)
        if account is None:
            account = AccountModel(
                vm_account_id=record.vm_account_id,
                vm_account_number=record.vm_account_number,
                is_deleted=False,
                created_by_id=self._actor_id,
            )
            self._session.add(account)
            counts["inserted"] += 1
        else:
            account.updated_by_id = self._actor_id
            counts["updated"] += 1

        account.interface_account_id = record.interface_account_id
        account.client_name = record.client_name
        account.primary_vendor_code = record.primary_vendor_code
        account.master_vendor_code = record.master_vendor_code
        account.credential_id = record.credential_id
        account.period_type = record.period_type
        account.expected_next_date = record.expected_next_date
        account.historical_billing_status = record.historical_billing_status
        self._session.flush()
        existing[key] = account

        outcome = self._ensure_rule(account, record)
        if outcome == "created":
            counts["rules_created"] += 1
        elif outcome == "updated":
            counts["rules_updated"] += 1

    def _ensure_rule(self, account: AccountModel, record: AccountRecord) -> str | None:
        """"created", "updated" or None (unchanged / not schedulable)."""
        if record.expected_next_date is None:
            return None
        try:
            spec = self._scheduler.spec_for(record.period_type)
        except UnknownPeriodTypeError:
            logger.debug(
                "account_period_type_unrecognized",
                extra={"account_id": str(account.id), "period_type": record.period_type},
            )
            return None

        period_days = spec.approx_days
        day_of_month = record.day_of_month
        if day_of_month is None and spec.is_calendar_anchored:
            day_of_month = record.expected_next_date.day

        rule = self._session.execute(
            select(RuleModel).where(
                RuleModel.account_id == account.id,
                RuleModel.job_type == JobType.DOWNLOAD_INVOICE.value,
                RuleModel.is_deleted.is_(False),
            )
        ).scalar_one_or_none()

        if rule is None:
            window = self._scheduler.initial_window(spec.period_type, record.expected_next_date)
            self._session.add(
                RuleModel(
                    account_id=account.id,
                    job_type=JobType.DOWNLOAD_INVOICE.value,
                    period_type=spec.period_type.value,
                    period_days=period_days,
                    day_of_month=day_of_month,
                    next_due_date=window.due_date,
                    next_window_start=window.start,
                    next_window_end=window.end,
                    window_days_before=spec.window_days_before,
                    window_days_after=spec.window_days_after,
                    is_enabled=True,
                    priority=0,
                    is_manually_overridden=False,
                    needs_review=False,
                    is_deleted=False,
                    created_by_id=self._actor_id,
                )
            )
            return "created"

        if rule.is_manually_overridden:
            return None

        pattern = (spec.period_type.value, period_days, day_of_month)
        if (rule.period_type, rule.period_days, rule.day_of_month) == pattern:
            return None
        if rule.needs_review and not _is_known_period_type(rule.period_type):
            rule.needs_review = False
            rule.review_reason = None
        rule.period_type, rule.period_days, rule.day_of_month = pattern
        rule.updated_by_id = self._actor_id
        return "updated"
