"""
Dispatch of processing jobs to the worker
"""
import asyncio
from typing import Optional, Set

import httpx
from celery import Celery
import structlog

from api.config import settings

logger = structlog.get_logger()

PROCESS_TASK = "worker.process_video"


class QueueService:
    """
    Hands a video to the processing pipeline without waiting for it.

    With a broker configured (QUEUE_URL) the job goes to the Celery worker.
    Without one, the API posts the job to its own /api/process endpoint in
    the background; the task references are kept so they are not collected
    mid-flight.
    """

    def __init__(
        self,
        queue_url: Optional[str] = None,
        public_url: Optional[str] = None,
        celery_app: Optional[Celery] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.queue_url = queue_url if queue_url is not None else settings.QUEUE_URL
        self.public_url = (public_url or settings.PUBLIC_URL).rstrip("/")
        self.celery_app = celery_app
        self._http_client = http_client
        self._background: Set[asyncio.Task] = set()

    @property
    def mode(self) -> str:
        return "queue" if self.celery_app is not None else "direct"

    async def initialize(self) -> None:
        if self.celery_app is None and self.queue_url:
            self.celery_app = Celery("livephoto_worker", broker=self.queue_url)
        logger.info("Queue service initialized", mode=self.mode)

    async def cleanup(self) -> None:
        """Cancel direct dispatches still in flight."""
        pending = list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Cancelled in-flight dispatches", count=len(pending))
        self._background.clear()

    async def enqueue_video(self, video_id: str, video_url: str) -> str:
        """Dispatch processing for a video. Returns the task id or "direct"."""
        if self.celery_app is not None:
            result = self.celery_app.send_task(PROCESS_TASK, args=[video_id, video_url])
            logger.info("Video queued", video_id=video_id, task_id=result.id)
            return result.id

        task = asyncio.create_task(self._post_process(video_id, video_url))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.info("Video dispatched directly", video_id=video_id)
        return "direct"

    async def _post_process(self, video_id: str, video_url: str) -> None:
        url = f"{self.public_url}/api/process"
        payload = {"videoId": video_id, "videoUrl": video_url}
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload)
            else:
                # The pipeline runs inside this request, so no read timeout
                async with httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None)) as client:
                    response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Background processing request failed", video_id=video_id, error=str(e))
            return

        if not response.is_success:
            logger.error("Background processing failed", video_id=video_id,
                         status_code=response.status_code, body=response.text[:500])
        else:
            logger.info("Background processing finished", video_id=video_id)

    @property
    def in_flight(self) -> int:
        return len(self._background)
