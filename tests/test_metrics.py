from concurrent.futures import ThreadPoolExecutor

import pytest

from metrics import HOUR_IN_SECONDS, MetricsSnapshot, RollingMetrics, format_progress_line, hour_bucket


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_grand_total_exact_under_thread_contention():
    metrics = RollingMetrics()

    def bump(_):
        for _ in range(500):
            metrics.increment_grand_total()

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(bump, range(8)))

    snapshot = metrics.snapshot()
    assert snapshot.grand_total == 4000
    assert snapshot.per_hour == 4000


def test_per_hour_resets_to_one_when_hour_advances():
    clock = FakeClock(10 * HOUR_IN_SECONDS + 5)
    metrics = RollingMetrics(clock=clock)

    for _ in range(3):
        metrics.increment_grand_total()
    assert metrics.snapshot().per_hour == 3

    clock.now = 11 * HOUR_IN_SECONDS + 1
    metrics.increment_grand_total()

    snapshot = metrics.snapshot()
    assert snapshot.per_hour == 1
    assert snapshot.grand_total == 4


def test_per_hour_not_reset_within_same_hour():
    clock = FakeClock(5 * HOUR_IN_SECONDS)
    metrics = RollingMetrics(clock=clock)
    metrics.increment_grand_total()
    clock.now += HOUR_IN_SECONDS - 1
    metrics.increment_grand_total()
    assert metrics.snapshot().per_hour == 2


def test_already_seen_counts_independently():
    metrics = RollingMetrics()
    metrics.increment_already_seen()
    metrics.increment_already_seen()
    snapshot = metrics.snapshot()
    assert snapshot.already_seen == 2
    assert snapshot.grand_total == 0


def test_elapsed_uses_monotonic_timer():
    ticks = iter([100.0, 130.5])
    metrics = RollingMetrics(timer=lambda: next(ticks))
    assert metrics.elapsed == pytest.approx(30.5)


def test_hour_bucket():
    assert hour_bucket(0) == 0
    assert hour_bucket(HOUR_IN_SECONDS - 0.1) == 0
    assert hour_bucket(HOUR_IN_SECONDS) == 1


def test_format_progress_line_contains_all_fields():
    snapshot = MetricsSnapshot(grand_total=20, per_hour=5, already_seen=7, elapsed=10.0)
    line = format_progress_line(snapshot, 4, 10, "High", 12.34, 8.0, 55.5, 50.0)

    assert "Grand: 20" in line
    assert "This Hour: 5" in line
    assert "Already Seen: 7" in line
    assert "Elapsed: 10s" in line
    assert "Progress: 4/10" in line
    assert "Mode: High" in line
    assert "CPU: 12.3% (avg 8.0%)" in line
    assert "RAM: 55.5 MB (avg 50.0 MB)" in line
    assert "Feeds/sec: 0.40" in line
    assert "Articles/sec: 2.00" in line


def test_format_progress_line_zero_elapsed():
    snapshot = MetricsSnapshot(grand_total=3, per_hour=3, already_seen=0, elapsed=0.0)
    line = format_progress_line(snapshot, 1, 1, "Low", 0.0, 0.0, 0.0, 0.0)
    assert "Feeds/sec: 0.00" in line
    assert "Articles/sec: 0.00" in line
