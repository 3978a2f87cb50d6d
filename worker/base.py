"""
Base classes for worker tasks
"""
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.models.video import Video, VideoStatus
from api.services.metrics import business_metrics
from api.utils.error_handlers import LivePhotoError

logger = structlog.get_logger()


class ProcessingError(LivePhotoError):
    """A video cannot be processed (missing record, unreadable source)."""

    code = "PROCESSING_ERROR"
    user_message = "The video could not be processed."


def parse_video_id(video_id: Any) -> Optional[UUID]:
    if isinstance(video_id, UUID):
        return video_id
    try:
        return UUID(str(video_id))
    except (TypeError, ValueError):
        return None


class AsyncDatabaseMixin:
    """Mixin for async database operations."""

    session_factory: Optional[async_sessionmaker] = None

    def _get_session_maker(self) -> async_sessionmaker:
        if self.session_factory is None:
            from api.models.database import AsyncSessionLocal
            return AsyncSessionLocal
        return self.session_factory

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session."""
        async with self._get_session_maker()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


class BaseWorkerTask(AsyncDatabaseMixin):
    """Record bookkeeping shared by processing tasks."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is not None:
            self.session_factory = session_factory

    async def get_video(self, video_id: str) -> Video:
        uid = parse_video_id(video_id)
        if uid is None:
            raise ProcessingError(f"Invalid video id {video_id!r}")
        async with self.get_async_session() as session:
            video = await session.get(Video, uid)
            if not video:
                raise ProcessingError(f"Video {video_id} not found")
            return video

    async def update_video_status(self, video_id: str, status: VideoStatus, **fields) -> None:
        """Update a record's status and any other columns passed."""
        uid = parse_video_id(video_id)
        if uid is None:
            logger.warning("Cannot update status of invalid video id", video_id=video_id)
            return
        async with self.get_async_session() as session:
            video = await session.get(Video, uid)
            if video is None:
                logger.warning("Video vanished before status update", video_id=video_id,
                               status=status.value)
                return
            video.status = status.value
            for key, value in fields.items():
                if hasattr(video, key):
                    setattr(video, key, value)
        logger.info("Video status updated", video_id=video_id, status=status.value)

    async def handle_video_error(self, video_id: str, error: Exception) -> None:
        logger.error("Video processing failed", video_id=video_id, error=str(error),
                     error_type=type(error).__name__)
        await self.update_video_status(video_id, VideoStatus.FAILED)

    async def start_video_processing(self, video_id: str) -> Video:
        video = await self.get_video(video_id)
        if video.status != VideoStatus.PROCESSING.value:
            await self.update_video_status(video_id, VideoStatus.PROCESSING)
        return video

    async def complete_video_processing(self, video_id: str, result: Dict[str, Any]) -> None:
        await self.update_video_status(
            video_id,
            VideoStatus.COMPLETED,
            cover_url=result.get("coverUrl"),
            processed_url=result.get("processedVideoUrl"),
            aspect_ratio=result.get("aspectRatio", "auto"),
            processing_time_ms=result.get("processingTimeMs"),
            video_metadata=result.get("metadata"),
        )


class TaskExecutionMixin:
    """Mixin for task execution patterns."""

    async def execute_with_error_handling(
        self,
        video_id: str,
        processing_func: Callable[..., Awaitable[Dict[str, Any]]],
        *args,
        **kwargs,
    ) -> Dict[str, Any]:
        """Run processing_func, keeping the record's status in step with the outcome."""
        started = time.perf_counter()
        try:
            video = await self.start_video_processing(video_id)
            result = await processing_func(video, *args, **kwargs)
            await self.complete_video_processing(video_id, result)
        except Exception as e:
            await self.handle_video_error(video_id, e)
            business_metrics.record_job("failed", time.perf_counter() - started)
            raise

        business_metrics.record_job("completed", time.perf_counter() - started)
        return result
