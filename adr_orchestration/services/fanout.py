"""
Bounded fan-out of vendor calls across a thread pool.

Calls run in at most ``max_parallel`` threads and all of them are joined
before ``fan_out`` returns, so a step never overlaps the next one.  The
callables must not touch the database session: sessions are not
thread-safe, and results are applied sequentially by the caller.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

from adr_kernel.logging_config import get_logger

from adr_orchestration.domain.vendor_status import VendorResponse

logger = get_logger("orchestration.fanout")

T = TypeVar("T")


def fan_out(
    items: Sequence[T],
    call: Callable[[T], VendorResponse],
    max_parallel: int,
    on_done: Callable[[int, int], None] | None = None,
) -> list[VendorResponse]:
    """Run ``call`` for each item; results keep the order of ``items``.

    An exception escaping ``call`` becomes a transient failure response for
    that item instead of aborting the batch.
    """
    if not items:
        return []

    total = len(items)
    results: list[VendorResponse | None] = [None] * total

    def _guarded(index: int) -> None:
        try:
            results[index] = call(items[index])
        except Exception as exc:
            logger.exception("vendor_call_crashed", extra={"index": index})
            results[index] = VendorResponse.transport_failure(f"{type(exc).__name__}: {exc}")

    workers = max(1, min(max_parallel, total))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="adr-vendor") as pool:
        futures = [pool.submit(_guarded, i) for i in range(total)]
        for done, future in enumerate(futures, start=1):
            future.result()
            if on_done is not None:
                on_done(done, total)

    return [r for r in results if r is not None]
