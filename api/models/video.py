"""
Video record model and API schemas
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import CHAR, TypeDecorator
from pydantic import BaseModel, ConfigDict, Field

Base = declarative_base()


class GUID(TypeDecorator):
    """Platform-agnostic GUID type for SQLite and PostgreSQL compatibility."""
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, UUID):
            return str(value)
        return str(UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return UUID(value)


class VideoStatus(str, Enum):
    """Lifecycle of an uploaded video."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VideoStatus.COMPLETED, VideoStatus.FAILED)


# Coarse phase indicator reported on the status stream
STATUS_PROGRESS = {
    VideoStatus.UPLOADED: 10,
    VideoStatus.PROCESSING: 50,
    VideoStatus.COMPLETED: 100,
}


def progress_for_status(status: str) -> int:
    """Map a record status to its coarse progress value."""
    try:
        return STATUS_PROGRESS.get(VideoStatus(status), 0)
    except ValueError:
        return 0


class Video(Base):
    """Persisted upload and its processing outcome."""
    __tablename__ = "videos"

    id = Column(GUID(), primary_key=True, default=uuid4)
    original_url = Column(String, nullable=False)
    cover_url = Column(String, nullable=True)
    processed_url = Column(String, nullable=True)
    aspect_ratio = Column(String, nullable=False, default="auto")
    status = Column(String, nullable=False, default=VideoStatus.UPLOADED.value)
    processing_time_ms = Column(Integer, nullable=True)
    # "metadata" is reserved on declarative classes
    video_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_video_status", "status"),
        Index("idx_video_created_at", "created_at"),
    )

    def storage_key(self) -> Optional[str]:
        """Storage key of the original upload, when it was stored by this service."""
        return (self.video_metadata or {}).get("storageKey")


# Pydantic schemas for API
class UploadResponse(BaseModel):
    url: str
    downloadUrl: str
    videoId: str


class GenerateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    videoId: str = Field(..., min_length=1)


class GenerateResponse(BaseModel):
    status: str = "queued"
    videoId: str


class ProcessRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    videoId: str
    videoUrl: str


class ProcessResponse(BaseModel):
    status: str = "success"
    coverUrl: Optional[str] = None
    processedVideoUrl: Optional[str] = None
    processingTimeMs: int


class StatusEvent(BaseModel):
    """One frame of the status stream."""
    id: str
    status: str
    progress: int
    coverUrl: Optional[str] = None
    processedVideoUrl: Optional[str] = None

    @classmethod
    def from_record(cls, video: Video) -> "StatusEvent":
        return cls(
            id=str(video.id),
            status=video.status,
            progress=progress_for_status(video.status),
            coverUrl=video.cover_url,
            processedVideoUrl=video.processed_url,
        )


class StylizeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    frameDataUrl: str
    fileName: str = "frame.jpg"


class StylizeSubmitResponse(BaseModel):
    requestId: str
    status: str
    frameUrl: str
    resultUrl: Optional[str] = None


class StylizeResultResponse(BaseModel):
    status: str
    resultUrl: Optional[str] = None
    error: Optional[str] = None
    progress: Optional[float] = None


class LimitStatusResponse(BaseModel):
    remaining: int
    limit: int
    used: int


def record_metadata(width: int, height: int, duration: float, **extra: Any) -> Dict[str, Any]:
    """Build the metadata JSON stored on a processed record."""
    data: Dict[str, Any] = {"width": width, "height": height, "duration": duration}
    data.update(extra)
    return data
