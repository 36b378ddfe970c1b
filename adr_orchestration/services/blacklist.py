"""
BlacklistFilter -- Excludes accounts from job creation and vendor calls.

Contract:
    ``BlacklistFilter.load(session, today)`` snapshots the entries that are
    in effect today; ``is_blacklisted(account, exclusion)`` answers from the
    snapshot without further I/O.  Load once per step.

Invariants enforced:
    - An entry matches when ANY criterion it sets equals the account's
      value.  An entry with no criteria matches nothing.
    - An entry applies to a phase when its type is ``all`` or equals the
      phase's exclusion type.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.types import Account, BlacklistEntry, ExclusionType
from adr_orchestration.models.configuration import BlacklistModel

logger = get_logger("orchestration.blacklist")


def is_in_effect(entry: BlacklistEntry, today: date) -> bool:
    if not entry.is_active:
        return False
    if entry.effective_start_date is not None and today < entry.effective_start_date:
        return False
    if entry.effective_end_date is not None and today > entry.effective_end_date:
        return False
    return True


def entry_matches(entry: BlacklistEntry, account: Account) -> bool:
    pairs = (
        (entry.primary_vendor_code, account.primary_vendor_code),
        (entry.master_vendor_code, account.master_vendor_code),
        (entry.vm_account_id, account.vm_account_id),
        (entry.vm_account_number, account.vm_account_number),
        (entry.credential_id, account.credential_id),
    )
    return any(criterion is not None and criterion == value for criterion, value in pairs)


class BlacklistFilter:
    """In-memory snapshot of effective blacklist entries."""

    def __init__(self, entries: Iterable[BlacklistEntry] = ()):
        self._entries = tuple(entries)

    @classmethod
    def load(cls, session: Session, today: date) -> BlacklistFilter:
        rows = session.execute(
            select(BlacklistModel).where(
                BlacklistModel.is_active.is_(True),
                BlacklistModel.is_deleted.is_(False),
            )
        ).scalars().all()
        entries = [row.to_dto() for row in rows]
        active = [entry for entry in entries if is_in_effect(entry, today)]
        logger.debug(
            "blacklist_loaded",
            extra={"entries": len(entries), "in_effect": len(active), "as_of": today},
        )
        return cls(active)

    @property
    def entries(self) -> tuple[BlacklistEntry, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def matching_entry(
        self, account: Account, exclusion: ExclusionType,
    ) -> BlacklistEntry | None:
        for entry in self._entries:
            if entry.exclusion_type not in (ExclusionType.ALL, exclusion):
                continue
            if entry_matches(entry, account):
                return entry
        return None

    def is_blacklisted(self, account: Account, exclusion: ExclusionType) -> bool:
        return self.matching_entry(account, exclusion) is not None
