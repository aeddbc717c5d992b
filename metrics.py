#!/usr/bin/env python3
"""
Rolling ingestion counters.

RollingMetrics is shared by every feed and article task. All mutations go
through one lock, so counters stay exact even when increments arrive from
worker threads as well as from the event loop.
"""

from threading import Lock
from time import time, monotonic
from typing import Callable, NamedTuple

from utils import format_duration

HOUR_IN_SECONDS = 3600


class MetricsSnapshot(NamedTuple):
    grand_total: int
    per_hour: int
    already_seen: int
    elapsed: float


def hour_bucket(timestamp: float) -> int:
    """Return the wall-clock hour index for a Unix timestamp."""
    return int(timestamp // HOUR_IN_SECONDS)


class RollingMetrics:
    """Thread-safe grand total, per-hour and already-seen counters.

    The per-hour counter is tied to the wall-clock hour bucket: the first
    increment after the bucket advances resets it to 1. The bucket check,
    the reset and the increment happen under the same lock, so a concurrent
    increment can never be lost across the reset.

    Args:
        clock: Wall-clock source (seconds since the epoch), used for hour buckets.
        timer: Monotonic source used for the elapsed time.
    """

    def __init__(self, clock: Callable[[], float] = time, timer: Callable[[], float] = monotonic):
        self._clock = clock
        self._timer = timer
        self._lock = Lock()
        self._grand_total = 0
        self._already_seen = 0
        self._per_hour = 0
        self._current_hour = hour_bucket(clock())
        self._started = timer()

    def increment_grand_total(self) -> None:
        with self._lock:
            self._grand_total += 1
            self._increment_per_hour_locked()

    def increment_already_seen(self) -> None:
        with self._lock:
            self._already_seen += 1

    def _increment_per_hour_locked(self) -> None:
        now_hour = hour_bucket(self._clock())
        if now_hour > self._current_hour:
            self._current_hour = now_hour
            self._per_hour = 0
        self._per_hour += 1

    @property
    def elapsed(self) -> float:
        return self._timer() - self._started

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(self._grand_total, self._per_hour, self._already_seen, self.elapsed)


def format_progress_line(
    snapshot: MetricsSnapshot,
    processed: int,
    total: int,
    tier_label: str,
    cpu: float,
    cpu_avg: float,
    memory_mb: float,
    memory_avg_mb: float,
) -> str:
    """Render the one-line progress report logged after each feed."""
    elapsed = snapshot.elapsed
    feeds_per_sec = processed / elapsed if elapsed > 0 else 0.0
    articles_per_sec = snapshot.grand_total / elapsed if elapsed > 0 else 0.0
    return (
        f"Grand: {snapshot.grand_total}, This Hour: {snapshot.per_hour}, "
        f"Already Seen: {snapshot.already_seen}, Elapsed: {format_duration(elapsed)}, "
        f"Progress: {processed}/{total}, Mode: {tier_label}, "
        f"CPU: {cpu:.1f}% (avg {cpu_avg:.1f}%), "
        f"RAM: {memory_mb:.1f} MB (avg {memory_avg_mb:.1f} MB), "
        f"Feeds/sec: {feeds_per_sec:.2f}, Articles/sec: {articles_per_sec:.2f}"
    )
