"""Progress reporting utilities"""
import inspect
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger()

ProgressCallback = Callable[[float], Any]


class ProgressReporter:
    """
    Forwards 0-100 progress to a callback, never moving backwards.

    The callback may be sync or async. Values below the last reported one
    are clamped, and repeats of the same value are not forwarded.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None, label: str = "progress"):
        self.callback = callback
        self.label = label
        self.value = 0.0
        self._started = False

    async def report(self, value: float) -> None:
        value = min(100.0, max(self.value, float(value)))
        if self._started and value == self.value:
            return
        self._started = True
        self.value = value

        if self.callback is None:
            return
        result = self.callback(value)
        if inspect.isawaitable(result):
            await result

    async def complete(self) -> None:
        await self.report(100.0)
        logger.debug("Progress complete", label=self.label)
