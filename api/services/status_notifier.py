"""
Server-sent status events for a processing video
"""
import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import structlog

from api.config import settings
from api.models.video import StatusEvent, VideoStatus

logger = structlog.get_logger()

StatusFetcher = Callable[[str], Awaitable[Optional[StatusEvent]]]

TERMINAL_STATUSES = {VideoStatus.COMPLETED.value, VideoStatus.FAILED.value}


def format_sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


class StatusNotifier:
    """
    Samples a video's status at a fixed interval and yields SSE frames.

    The stream ends after a terminal status, after reporting a missing
    record or a failed read, or as soon as `stop` is set.
    """

    def __init__(self, fetch_status: StatusFetcher, interval: Optional[float] = None):
        self._fetch = fetch_status
        self.interval = settings.STATUS_POLL_INTERVAL if interval is None else interval

    async def _wait(self, stop: asyncio.Event) -> bool:
        """Sleep one interval. True when the stop signal fired first."""
        try:
            await asyncio.wait_for(stop.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False

    async def stream(self, video_id: str, stop: Optional[asyncio.Event] = None) -> AsyncIterator[str]:
        stop = stop or asyncio.Event()
        first = True

        while not stop.is_set():
            if not first and await self._wait(stop):
                break
            first = False

            try:
                event = await self._fetch(video_id)
            except Exception as e:
                logger.error("Status check failed", video_id=video_id, error=str(e))
                yield format_sse({"error": "Failed to check status"})
                return

            if event is None:
                yield format_sse({"error": "Video not found"})
                return

            yield format_sse(event.model_dump())
            if event.status in TERMINAL_STATUSES:
                return

        logger.debug("Status stream stopped", video_id=video_id)
