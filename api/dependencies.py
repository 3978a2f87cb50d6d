"""
FastAPI dependencies for the database and shared services
"""
from functools import lru_cache
from typing import AsyncGenerator, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.models.database import AsyncSessionLocal, get_session
from api.models.video import StatusEvent, Video
from api.services.limits import DailyLimitService
from api.services.queue import QueueService
from api.services.status_notifier import StatusNotifier
from api.services.storage import StorageService
from api.services.stylization import StylizationClient

logger = structlog.get_logger()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async for session in get_session():
        yield session


@lru_cache()
def get_storage_service() -> StorageService:
    return StorageService()


@lru_cache()
def get_queue_service() -> QueueService:
    return QueueService()


@lru_cache()
def get_limit_service() -> DailyLimitService:
    return DailyLimitService()


@lru_cache()
def get_stylization_client() -> StylizationClient:
    return StylizationClient()


async def fetch_status_event(video_id: str) -> Optional[StatusEvent]:
    """Read a record's current status in its own short-lived session."""
    try:
        uid = UUID(video_id)
    except ValueError:
        return None
    async with AsyncSessionLocal() as session:
        video = await session.get(Video, uid)
        return StatusEvent.from_record(video) if video else None


def get_status_notifier() -> StatusNotifier:
    return StatusNotifier(fetch_status_event)
