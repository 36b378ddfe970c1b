"""
RunStatusRegistry -- The only in-memory state shared between the worker
and status readers.

Holds the live status snapshot and the cancellation handle of every known
run, guarded by one ``threading.Condition``.  Snapshots are immutable; an
update swaps the whole snapshot and wakes ``wait_for`` callers.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from adr_kernel.exceptions import DuplicateRunError, RunNotFoundError

from adr_orchestration.domain.types import RunStatus
from adr_orchestration.runner.cancellation import CancellationHandle
from adr_orchestration.runner.types import RunStatusSnapshot

_ACTIVE = (RunStatus.RUNNING, RunStatus.CANCELLING)


class RunStatusRegistry:
    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._statuses: dict[str, RunStatusSnapshot] = {}
        self._handles: dict[str, CancellationHandle] = {}

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def register(self, snapshot: RunStatusSnapshot, handle: CancellationHandle) -> None:
        """Raises DuplicateRunError if the request id is already registered."""
        with self._cond:
            if snapshot.request_id in self._statuses:
                raise DuplicateRunError(snapshot.request_id)
            self._statuses[snapshot.request_id] = snapshot
            self._handles[snapshot.request_id] = handle
            self._cond.notify_all()

    def update(self, request_id: str, **changes: Any) -> RunStatusSnapshot:
        with self._cond:
            current = self._statuses.get(request_id)
            if current is None:
                raise RunNotFoundError(request_id)
            updated = replace(current, **changes)
            self._statuses[request_id] = updated
            self._cond.notify_all()
            return updated

    def update_if(
        self,
        request_id: str,
        predicate: Callable[[RunStatusSnapshot], bool],
        **changes: Any,
    ) -> RunStatusSnapshot | None:
        """Atomic check-and-update; None when the predicate rejects it."""
        with self._cond:
            current = self._statuses.get(request_id)
            if current is None or not predicate(current):
                return None
            updated = replace(current, **changes)
            self._statuses[request_id] = updated
            self._cond.notify_all()
            return updated

    def remove(self, request_id: str) -> None:
        with self._cond:
            self._statuses.pop(request_id, None)
            self._handles.pop(request_id, None)
            self._cond.notify_all()

    def release_handle(self, request_id: str) -> None:
        with self._cond:
            self._handles.pop(request_id, None)

    def remove_terminal_before(self, cutoff: datetime) -> int:
        with self._cond:
            stale = [
                request_id
                for request_id, snapshot in self._statuses.items()
                if snapshot.is_terminal
                and snapshot.completed_at is not None
                and snapshot.completed_at < cutoff
            ]
            for request_id in stale:
                self._statuses.pop(request_id, None)
                self._handles.pop(request_id, None)
            return len(stale)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, request_id: str) -> RunStatusSnapshot | None:
        with self._cond:
            return self._statuses.get(request_id)

    def handle(self, request_id: str) -> CancellationHandle | None:
        with self._cond:
            return self._handles.get(request_id)

    def current(self) -> RunStatusSnapshot | None:
        with self._cond:
            for snapshot in self._statuses.values():
                if snapshot.status in _ACTIVE:
                    return snapshot
            return None

    def request_ids(self) -> list[str]:
        with self._cond:
            return list(self._statuses)

    def active_count(self) -> int:
        with self._cond:
            return sum(1 for s in self._statuses.values() if s.status in _ACTIVE)

    def recent(self, limit: int) -> list[RunStatusSnapshot]:
        with self._cond:
            ordered = sorted(
                self._statuses.values(), key=lambda s: s.requested_at, reverse=True,
            )
            return ordered[:limit]

    def wait_for(
        self,
        request_id: str,
        predicate: Callable[[RunStatusSnapshot], bool],
        timeout: float | None = None,
    ) -> RunStatusSnapshot | None:
        """Block until ``predicate(snapshot)`` holds or ``timeout`` elapses.

        Returns the latest snapshot either way (None if the run is unknown).
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                snapshot = self._statuses.get(request_id)
                if snapshot is None or predicate(snapshot):
                    return snapshot
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return snapshot
                self._cond.wait(remaining)
