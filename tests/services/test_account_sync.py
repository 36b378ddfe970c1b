"""Tests for the account feed sync step."""

from datetime import date

import pytest
import yaml
from sqlalchemy import select

from adr_orchestration.domain.types import AccountRecord
from adr_orchestration.models.account import AccountModel, RuleModel
from adr_orchestration.services.account_sync import AccountSyncService, FileAccountFeed

from tests.support import TEST_ACTOR_ID, add_account, add_rule


class ListFeed:
    def __init__(self, records):
        self.records = list(records)

    def fetch_accounts(self):
        return list(self.records)


def _record(vm_account_id=501, **overrides) -> AccountRecord:
    values = dict(
        vm_account_id=vm_account_id,
        vm_account_number=f"ACC-{vm_account_id}",
        client_name="Acme Holdings",
        primary_vendor_code="ATT",
        credential_id=700,
        period_type="Monthly",
        expected_next_date=date(2026, 1, 25),
    )
    values.update(overrides)
    return AccountRecord(**values)


@pytest.fixture
def service(session, settings):
    return AccountSyncService(session, settings, actor_id=TEST_ACTOR_ID)


def _rule_for(session, account_id):
    return session.execute(
        select(RuleModel).where(RuleModel.account_id == account_id)
    ).scalar_one_or_none()


def _account(session, vm_account_id):
    return session.execute(
        select(AccountModel).where(AccountModel.vm_account_id == vm_account_id)
    ).scalar_one()


# =============================================================================
# Accounts
# =============================================================================


class TestAccounts:
    def test_new_account_is_inserted_with_rule(self, session, service):
        result = service.sync(ListFeed([_record()]))

        assert (result.total, result.inserted, result.rules_created) == (1, 1, 1)
        account = _account(session, 501)
        assert account.primary_vendor_code == "ATT"
        rule = _rule_for(session, account.id)
        assert rule.period_type == "monthly"
        assert rule.next_due_date == date(2026, 1, 25)
        assert (rule.next_window_start, rule.next_window_end) == (date(2026, 1, 20), date(2026, 1, 30))
        assert rule.day_of_month == 25

    def test_existing_account_is_updated(self, session, service):
        account = add_account(session, vm_account_id=501, vm_account_number="ACC-501", credential_id=1)

        result = service.sync(ListFeed([_record(credential_id=2)]))

        assert result.updated == 1
        assert result.inserted == 0
        assert account.credential_id == 2

    def test_account_missing_from_feed_is_soft_deleted(self, session, service):
        gone = add_account(session, vm_account_id=900, vm_account_number="ACC-900")

        result = service.sync(ListFeed([_record()]))

        assert result.deleted == 1
        assert gone.is_deleted is True

    def test_account_without_expected_date_gets_no_rule(self, session, service):
        result = service.sync(ListFeed([_record(expected_next_date=None)]))

        assert result.rules_created == 0
        assert _rule_for(session, _account(session, 501).id) is None

    def test_unknown_period_type_gets_no_rule(self, session, service):
        result = service.sync(ListFeed([_record(period_type="Whenever")]))

        assert result.inserted == 1
        assert result.rules_created == 0


# =============================================================================
# Rules
# =============================================================================


class TestRules:
    def test_changed_pattern_updates_rule_but_not_due_date(self, session, service):
        account = add_account(session, vm_account_id=501, vm_account_number="ACC-501")
        rule = add_rule(session, account)

        result = service.sync(ListFeed([_record(period_type="Quarterly", expected_next_date=date(2026, 1, 15))]))

        assert result.rules_updated == 1
        assert rule.period_type == "quarterly"
        assert rule.period_days == 90
        assert rule.next_due_date == date(2026, 1, 15)

    def test_unchanged_pattern_is_left_alone(self, session, service):
        account = add_account(session, vm_account_id=501, vm_account_number="ACC-501")
        add_rule(session, account)

        result = service.sync(ListFeed([_record(expected_next_date=date(2026, 1, 15))]))

        assert result.rules_updated == 0
        assert result.rules_created == 0

    def test_manually_overridden_rule_is_untouched(self, session, service):
        account = add_account(session, vm_account_id=501, vm_account_number="ACC-501")
        rule = add_rule(session, account, is_manually_overridden=True)

        result = service.sync(ListFeed([_record(period_type="Annually")]))

        assert result.rules_updated == 0
        assert rule.period_type == "monthly"


# =============================================================================
# Batching and the file feed
# =============================================================================


class TestBatching:
    def test_checkpoint_and_progress(self, session, settings):
        service = AccountSyncService(session, type(settings)(batch_size=2), actor_id=TEST_ACTOR_ID)
        checkpoints = []
        progress = []

        service.sync(
            ListFeed([_record(vm_account_id=n) for n in range(1, 6)]),
            on_progress=lambda done, total: progress.append((done, total)),
            checkpoint=lambda: checkpoints.append(1),
        )

        assert progress == [(0, 5), (2, 5), (4, 5), (5, 5)]
        assert len(checkpoints) == 3


class TestFileAccountFeed:
    def test_reads_list_of_records(self, tmp_path):
        path = tmp_path / "accounts.yaml"
        path.write_text(yaml.safe_dump([
            {
                "vm_account_id": 7,
                "vm_account_number": 12345,
                "period_type": "Bi-Weekly",
                "expected_next_date": "2026-02-01",
            },
        ]))

        [record] = FileAccountFeed(path).fetch_accounts()

        assert record.vm_account_id == 7
        assert record.vm_account_number == "12345"
        assert record.expected_next_date == date(2026, 2, 1)

    def test_reads_accounts_key(self, tmp_path):
        path = tmp_path / "accounts.yaml"
        path.write_text("accounts:\n  - vm_account_id: 8\n    vm_account_number: A-8\n    expected_next_date: 2026-03-01\n")

        [record] = FileAccountFeed(path).fetch_accounts()

        assert record.vm_account_number == "A-8"
        assert record.expected_next_date == date(2026, 3, 1)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "accounts.yaml"
        path.write_text("")

        assert FileAccountFeed(path).fetch_accounts() == []
