"""
adr_orchestration.runner -- Run queue, background worker and run tracking.

Invariants enforced:
    - One worker thread; runs execute strictly one at a time, FIFO.
    - The status registry is the only in-memory state shared between the
      worker and readers, guarded by a single lock.
    - Run bookkeeping is written in its own session per write.
"""

from adr_orchestration.runner.cancellation import (
    MAX_DURATION_REASON,
    CancellationHandle,
    CancellationSource,
)
from adr_orchestration.runner.pipeline import NullReporter, OrchestrationPipeline, RunReporter
from adr_orchestration.runner.queue import OrchestrationQueue
from adr_orchestration.runner.recorder import OrchestrationRunRecorder
from adr_orchestration.runner.status_registry import RunStatusRegistry
from adr_orchestration.runner.types import RunRequest, RunResults, RunStatusSnapshot

__all__ = [
    "MAX_DURATION_REASON",
    "CancellationHandle",
    "CancellationSource",
    "NullReporter",
    "OrchestrationPipeline",
    "OrchestrationQueue",
    "OrchestrationRunRecorder",
    "RunReporter",
    "RunRequest",
    "RunResults",
    "RunStatusRegistry",
    "RunStatusSnapshot",
]
