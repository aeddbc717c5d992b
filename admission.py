#!/usr/bin/env python3
"""
Admission control for network-bound tasks.

One AdmissionController is shared by feed downloads and article extractions,
so the operator-selected tier bounds every in-flight request in the process.
It behaves like asyncio.Semaphore except that the ceiling can change while
tasks are waiting.
"""

from asyncio import CancelledError, Future, get_event_loop
from collections import deque
from contextlib import asynccontextmanager
from typing import Deque, Dict, Optional

from config import config, get_logger

logger = get_logger("admission")


class AdmissionController:
    """Counting gate with a runtime-adjustable ceiling.

    Lowering the ceiling never evicts current holders; it only delays later
    acquisitions until enough slots have been released. Waiters are woken
    in arrival order but must re-check the ceiling, so a newly arriving task
    may win a freed slot first.

    Must be used from the event loop thread.
    """

    def __init__(self, tiers: Optional[Dict[str, int]] = None, initial_tier: Optional[str] = None):
        self._tiers = dict(tiers or config.TIER_LIMITS)
        tier = initial_tier or config.INITIAL_TIER
        if tier not in self._tiers:
            raise ValueError(f"Unknown tier {tier!r}; expected one of {', '.join(self._tiers)}")
        self._tier = tier
        self._ceiling = self._tiers[tier]
        self._held = 0
        self._waiters: Deque[Future] = deque()

    @property
    def tier(self) -> str:
        return self._tier

    @property
    def tier_label(self) -> str:
        return self._tier.capitalize()

    @property
    def tiers(self) -> Dict[str, int]:
        return dict(self._tiers)

    @property
    def ceiling(self) -> int:
        return self._ceiling

    @property
    def held(self) -> int:
        return self._held

    def _available(self) -> int:
        return max(0, self._ceiling - self._held)

    def _wake(self, count: int) -> None:
        while count > 0 and self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                count -= 1

    async def acquire(self) -> None:
        """Wait until fewer than `ceiling` slots are held, then take one."""
        while self._held >= self._ceiling:
            waiter = get_event_loop().create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            except CancelledError:
                if waiter.done() and not waiter.cancelled():
                    # We were woken but will not use the slot; pass it on
                    self._wake(self._available())
                else:
                    try:
                        self._waiters.remove(waiter)
                    except ValueError:
                        pass
                raise
        self._held += 1

    def release(self) -> None:
        """Free one slot and wake waiters that may now fit under the ceiling."""
        if self._held <= 0:
            raise RuntimeError("release() called without a matching acquire()")
        self._held -= 1
        self._wake(self._available())

    @asynccontextmanager
    async def slot(self):
        """Hold one slot for the duration of the block."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def set_tier(self, tier: str) -> int:
        """Switch the ceiling to a named tier; returns the new ceiling.

        Raises:
            ValueError: If the tier name is not configured.
        """
        if tier not in self._tiers:
            raise ValueError(f"Unknown tier {tier!r}; expected one of {', '.join(self._tiers)}")
        previous = self._ceiling
        self._tier = tier
        self._ceiling = self._tiers[tier]
        if self._ceiling != previous:
            logger.info(
                f"Concurrency tier set to {self.tier_label} ({previous} -> {self._ceiling}, {self._held} in flight)"
            )
        self._wake(self._available())
        return self._ceiling
