"""
Profiling utilities for QTrack store operations.

Measures wall-clock time on the monotonic high-resolution clock
(``time.perf_counter``) together with a process RSS/CPU snapshot from psutil.
The store uses it to time opening and migrating the database so the
``DB_INIT_SUCCESS`` event carries an execution time.

Usage:
    from qtrack.utils.profiler import profile_block

    with profile_block("db-open") as stats:
        open_database()

    log.info("opened", extra={"execution_time_ms": stats.duration_ms})
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    rss_bytes: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return round(self.duration_seconds * 1000.0, 3)


@contextlib.contextmanager
def profile_block(label: str) -> Generator[ProfileStats, None, None]:
    """
    Context manager timing a block of code.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.

    Notes
    -----
    Duration is recorded even when the block raises, so failures can be logged
    with their elapsed time.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    # CPU percent needs a priming call
    process.cpu_percent(interval=None)

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        try:
            stats.rss_bytes = process.memory_info().rss
            stats.cpu_percent = process.cpu_percent(interval=None)
        except psutil.Error:
            stats.rss_bytes = None
            stats.cpu_percent = None


__all__ = ["ProfileStats", "profile_block"]
