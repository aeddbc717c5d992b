import asyncio

import pytest

from admission import AdmissionController

TIERS = {"low": 3, "high": 10, "max": 25}


class InFlightTracker:
    def __init__(self):
        self.current = 0
        self.peak = 0
        self.samples = []

    async def work(self, admission: AdmissionController, delay: float = 0.01):
        async with admission.slot():
            self.current += 1
            self.peak = max(self.peak, self.current)
            self.samples.append(self.current)
            await asyncio.sleep(delay)
            self.current -= 1


@pytest.mark.asyncio
async def test_in_flight_never_exceeds_low_ceiling():
    admission = AdmissionController(TIERS, "low")
    tracker = InFlightTracker()

    await asyncio.gather(*(tracker.work(admission) for _ in range(25)))

    assert tracker.peak <= 3
    assert all(sample <= 3 for sample in tracker.samples)
    assert admission.held == 0


@pytest.mark.asyncio
async def test_raising_ceiling_admits_waiters():
    admission = AdmissionController(TIERS, "low")
    tracker = InFlightTracker()

    tasks = [asyncio.create_task(tracker.work(admission, delay=0.05)) for _ in range(12)]
    await asyncio.sleep(0.01)
    assert admission.held == 3

    admission.set_tier("high")
    await asyncio.sleep(0.01)
    assert admission.held == 10

    await asyncio.gather(*tasks)
    assert tracker.peak == 10


@pytest.mark.asyncio
async def test_lowering_ceiling_does_not_evict_holders():
    admission = AdmissionController(TIERS, "high")
    release = asyncio.Event()

    async def hold():
        async with admission.slot():
            await release.wait()

    holders = [asyncio.create_task(hold()) for _ in range(10)]
    await asyncio.sleep(0.01)
    assert admission.held == 10

    admission.set_tier("low")
    await asyncio.sleep(0.01)
    # Current holders keep their slots
    assert admission.held == 10
    assert not any(task.done() for task in holders)

    # New work waits until in-flight drops below the new ceiling
    late = asyncio.create_task(admission.acquire())
    await asyncio.sleep(0.01)
    assert not late.done()

    release.set()
    await asyncio.gather(*holders)
    await asyncio.wait_for(late, timeout=1.0)
    assert admission.held == 1
    admission.release()


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_leak_slot():
    admission = AdmissionController({"one": 1}, "one")
    await admission.acquire()

    waiter = asyncio.create_task(admission.acquire())
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    admission.release()
    assert admission.held == 0
    await asyncio.wait_for(admission.acquire(), timeout=1.0)
    assert admission.held == 1


def test_unknown_tier_rejected():
    with pytest.raises(ValueError):
        AdmissionController(TIERS, "turbo")

    admission = AdmissionController(TIERS, "low")
    with pytest.raises(ValueError):
        admission.set_tier("turbo")
    assert admission.ceiling == 3


def test_release_without_acquire_raises():
    admission = AdmissionController(TIERS, "low")
    with pytest.raises(RuntimeError):
        admission.release()


def test_tier_label_and_ceiling():
    admission = AdmissionController(TIERS, "max")
    assert admission.tier == "max"
    assert admission.tier_label == "Max"
    assert admission.ceiling == 25
    assert admission.set_tier("low") == 3


@pytest.mark.asyncio
async def test_switching_to_low_with_queued_tasks_bounds_sampled_in_flight():
    admission = AdmissionController(TIERS, "high")
    tracker = InFlightTracker()
    sampled = []
    done = asyncio.Event()

    async def sample_in_flight():
        while not done.is_set():
            sampled.append(admission.held)
            await asyncio.sleep(0.002)

    tasks = [asyncio.create_task(tracker.work(admission, delay=0.05)) for _ in range(25)]
    await asyncio.sleep(0)
    # Ten hold slots and fifteen are queued
    assert admission.held == 10
    assert tracker.current == 10

    grants_before_switch = len(tracker.samples)
    admission.set_tier("low")
    sampler = asyncio.create_task(sample_in_flight())

    await asyncio.gather(*tasks)
    done.set()
    await sampler

    # No queued task is granted until in-flight drops below three
    assert all(sample <= 3 for sample in tracker.samples[grants_before_switch:])
    assert len(tracker.samples) == 25
    drained = next(i for i, sample in enumerate(sampled) if sample <= 3)
    assert sampled[0] == 10
    assert all(sample <= 3 for sample in sampled[drained:])
