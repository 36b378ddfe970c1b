"""
Pure kernel domain layer: the injectable clock.
"""

from adr_kernel.domain.clock import Clock, DeterministicClock, SystemClock, today_utc

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "today_utc",
]
