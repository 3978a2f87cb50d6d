"""
Tick schedulers pacing the compositor's render loops
"""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional


class TickScheduler(ABC):
    """
    Source of render ticks.

    `next_tick()` waits for the next tick and returns False once the
    scheduler has been cancelled, so render loops read as
    `while await scheduler.next_tick(): ...`.
    """

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    @abstractmethod
    async def next_tick(self) -> bool:
        """Wait for the next tick."""


class FixedRateScheduler(TickScheduler):
    """Wall-clock ticks every `interval` seconds with drift correction."""

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__()
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._deadline: Optional[float] = None

    async def next_tick(self) -> bool:
        if self._cancelled:
            return False

        now = self._clock()
        if self._deadline is None:
            self._deadline = now
        self._deadline += self.interval

        delay = self._deadline - now
        if delay > 0:
            await self._sleep(delay)
        elif -delay > self.interval:
            # Fell behind by more than a tick: resync instead of bursting
            self._deadline = now
        return not self._cancelled


class ImmediateScheduler(TickScheduler):
    """Ticks as fast as the loop allows; used for offline rendering."""

    async def next_tick(self) -> bool:
        if self._cancelled:
            return False
        await asyncio.sleep(0)
        return not self._cancelled


def scheduler_factory(realtime: bool) -> Callable[[float], TickScheduler]:
    """Factory mapping a tick interval to a scheduler."""
    if realtime:
        return FixedRateScheduler
    return lambda interval: ImmediateScheduler()
