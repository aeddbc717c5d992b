#!/usr/bin/env python3
"""
Self-process CPU and memory sampling.

The sampler runs as a background task next to the ingestion tasks and keeps
the latest reading plus a running mean for the progress line.
"""

from asyncio import Event, wait_for, TimeoutError
from time import monotonic
from typing import Callable, NamedTuple, Optional

import psutil

from config import config, get_logger

logger = get_logger("sampler")

BYTES_PER_MB = 1024 * 1024


class ResourceSample(NamedTuple):
    cpu_percent: float
    memory_mb: float


class ResourceSampler:
    """Periodic CPU% and RSS sampler for the current process.

    CPU% is accumulated process CPU time (user + system) over wall time,
    normalised by core count, so 100% means every core was busy.
    """

    def __init__(
        self,
        interval: Optional[float] = None,
        process: Optional[psutil.Process] = None,
        cpu_count: Optional[int] = None,
        timer: Callable[[], float] = monotonic,
    ):
        self.interval = interval if interval is not None else config.RESOURCE_SAMPLE_INTERVAL
        self.process = process or psutil.Process()
        self.cpu_count = cpu_count or psutil.cpu_count() or 1
        self._timer = timer

        self.current_cpu = 0.0
        self.average_cpu = 0.0
        self.current_memory_mb = 0.0
        self.average_memory_mb = 0.0
        self.sample_count = 0
        self._total_cpu = 0.0
        self._total_memory_mb = 0.0

        self._prev_cpu_time = self._cpu_time()
        self._prev_wall = self._timer()

    def _cpu_time(self) -> float:
        times = self.process.cpu_times()
        return times.user + times.system

    def sample(self) -> ResourceSample:
        """Take one reading relative to the previous one and update the means."""
        cpu_time = self._cpu_time()
        wall = self._timer()
        wall_delta = wall - self._prev_wall
        cpu_delta = cpu_time - self._prev_cpu_time

        if wall_delta > 0:
            cpu_percent = (cpu_delta / (wall_delta * self.cpu_count)) * 100.0
        else:
            cpu_percent = 0.0
        memory_mb = self.process.memory_info().rss / BYTES_PER_MB

        self.current_cpu = cpu_percent
        self.current_memory_mb = memory_mb
        self._total_cpu += cpu_percent
        self._total_memory_mb += memory_mb
        self.sample_count += 1
        self.average_cpu = self._total_cpu / self.sample_count
        self.average_memory_mb = self._total_memory_mb / self.sample_count

        self._prev_cpu_time = cpu_time
        self._prev_wall = wall
        return ResourceSample(cpu_percent, memory_mb)

    async def run(self, stop: Event) -> None:
        """Sample every interval until the stop event is set."""
        logger.debug(f"Resource sampler started (interval={self.interval}s, cores={self.cpu_count})")
        while not stop.is_set():
            try:
                await wait_for(stop.wait(), timeout=self.interval)
                break
            except TimeoutError:
                pass
            try:
                self.sample()
            except psutil.Error as e:
                logger.warning(f"Resource sample failed: {e}")
        logger.debug(f"Resource sampler stopped after {self.sample_count} samples")
