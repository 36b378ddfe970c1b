"""
Per-run cancellation handle.

A handle combines two signals into one:

    shutdown  -- the host is stopping; shared by every handle of a queue.
                 Propagates: the worker marks the run cancelled and exits.
    user      -- an operator cancelled this run (or its maximum duration
                 elapsed).  Contained: the worker continues with the next
                 request.

Cancellation is cooperative.  The pipeline calls ``raise_if_cancelled()``
before every step and between batches; nothing is interrupted mid-batch.
"""

from __future__ import annotations

import threading
import time
from enum import Enum

from adr_kernel.exceptions import RunCancelledError

MAX_DURATION_REASON = "maximum duration exceeded"


class CancellationSource(str, Enum):
    SHUTDOWN = "shutdown"
    USER = "user"


class CancellationHandle:
    def __init__(self, request_id: str, shutdown_event: threading.Event | None = None):
        self._request_id = request_id
        self._shutdown = shutdown_event or threading.Event()
        self._user = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._deadline: float | None = None

    @property
    def request_id(self) -> str:
        return self._request_id

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Request user cancellation.  False if it was already requested."""
        with self._lock:
            if self._user.is_set():
                return False
            self._reason = reason
            self._user.set()
            return True

    def set_deadline(self, monotonic_deadline: float | None) -> None:
        """Cancel (user-scoped) at the first checkpoint after this instant."""
        self._deadline = monotonic_deadline

    @property
    def source(self) -> CancellationSource | None:
        if self._shutdown.is_set():
            return CancellationSource.SHUTDOWN
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel(MAX_DURATION_REASON)
        if self._user.is_set():
            return CancellationSource.USER
        return None

    @property
    def is_cancelled(self) -> bool:
        return self.source is not None

    def raise_if_cancelled(self) -> None:
        """Checkpoint.

        Raises:
            RunCancelledError: with ``source`` set to the signal that fired;
                shutdown wins over a user request.
        """
        source = self.source
        if source is None:
            return
        reason = None if source is CancellationSource.SHUTDOWN else self._reason
        raise RunCancelledError(self._request_id, source, reason)
