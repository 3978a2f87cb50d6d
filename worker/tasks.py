"""
Processing task: uploaded video -> doodle cover -> composed Live Photo clip
"""
import asyncio
import time
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import structlog

from api.config import settings
from api.models.video import Video, record_metadata
from api.services.metrics import MetricsTimer, business_metrics
from api.services.storage import StorageService
from api.services.stylization import StylizationClient, TaskState
from api.utils.error_handlers import ProviderError
from worker.base import BaseWorkerTask, ProcessingError, TaskExecutionMixin
from worker.processors.compositor import VideoCompositor
from worker.processors.frames import FrameExtractor
from worker.utils.media import VideoAsset, guess_mime_type

logger = structlog.get_logger()


class VideoProcessingTask(BaseWorkerTask, TaskExecutionMixin):
    """Runs the full pipeline for one uploaded video."""

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        stylization: Optional[StylizationClient] = None,
        extractor: Optional[FrameExtractor] = None,
        compositor: Optional[VideoCompositor] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        session_factory=None,
    ):
        super().__init__(session_factory=session_factory)
        self.storage = storage or StorageService()
        self.stylization = stylization
        self.extractor = extractor or FrameExtractor()
        self.compositor = compositor or VideoCompositor()
        self._http_client = http_client

    async def load_source(self, video: Video, video_url: str) -> VideoAsset:
        """Read the upload back from storage, or download it by URL."""
        metadata = video.video_metadata or {}
        file_name = metadata.get("fileName") or Path(video_url.split("?", 1)[0]).name or "video.mp4"
        mime_type = metadata.get("mimeType") or guess_mime_type(file_name)

        key = video.storage_key()
        if key:
            data = await self.storage.read_bytes(key)
        else:
            data = await self._download(video_url)
        if not data:
            raise ProcessingError(f"Source video for {video.id} is empty")
        return VideoAsset(data=data, mime_type=mime_type, file_name=file_name)

    async def _download(self, url: str) -> bytes:
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url)
            else:
                async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            raise ProcessingError(f"Source video could not be downloaded: {e}")
        if not response.is_success:
            raise ProcessingError(f"Source video download returned HTTP {response.status_code}")
        if len(response.content) > settings.MAX_UPLOAD_SIZE:
            raise ProcessingError("Source video exceeds the upload size limit")
        return response.content

    async def process_video_async(self, video: Video, video_url: str) -> Dict[str, Any]:
        started = time.perf_counter()
        await self.storage.initialize()

        asset = await self.load_source(video, video_url)
        frame = await self.extractor.extract(asset)
        frame_blob = await self.storage.put(
            f"{Path(asset.file_name).stem}-frame.jpg", frame.image, "image/jpeg", prefix="frames"
        )

        stylization = self.stylization or StylizationClient()
        try:
            task = await stylization.stylize(frame_blob.url)
        finally:
            if self.stylization is None:
                await stylization.aclose()
        if task.state is TaskState.FAILED:
            raise ProviderError(f"Stylization failed: {task.error_detail or 'no detail'}")
        if not task.result_url:
            raise ProviderError(f"Stylization {task.request_id} completed without an output")

        with MetricsTimer() as timer:
            try:
                composed = await self.compositor.compose(asset, task.result_url)
            except Exception:
                business_metrics.record_composition("failed")
                raise
        business_metrics.record_composition("completed", timer.elapsed)

        try:
            output_blob = await self.storage.put(
                f"{Path(asset.file_name).stem}-livephoto{composed.container_extension}",
                composed.data,
                composed.mime_type,
                prefix="processed",
            )
        finally:
            composed.release()

        metadata = dict(video.video_metadata or {})
        metadata.update(record_metadata(
            frame.metadata.width,
            frame.metadata.height,
            frame.metadata.duration_seconds,
            frameUrl=frame_blob.url,
            stylizationRequestId=task.request_id,
            codec=composed.codec,
            outputKey=output_blob.key,
        ))
        return {
            "coverUrl": task.result_url,
            "processedVideoUrl": output_blob.url,
            "aspectRatio": frame.metadata.aspect_ratio,
            "processingTimeMs": int((time.perf_counter() - started) * 1000),
            "metadata": metadata,
        }


async def run_video_pipeline(video_id: str, video_url: str) -> Dict[str, Any]:
    """
    Process a video in the current event loop (used by /api/process).

    Each run gets its own task, so concurrent runs share no extractor or
    compositor state.
    """
    logger.info("Starting video processing", video_id=video_id)
    task = VideoProcessingTask()
    return await task.execute_with_error_handling(video_id, task.process_video_async, video_url)


def process_video(video_id: str, video_url: str) -> Dict[str, Any]:
    """
    Celery entry point for `worker.process_video`.

    Each task runs in a fresh event loop, so the engine's pooled
    connections are disposed before the loop closes.
    """
    from api.models.database import engine

    async def _run():
        try:
            return await run_video_pipeline(video_id, video_url)
        finally:
            await engine.dispose()

    return asyncio.run(_run())
