"""
Database models
"""
from .video import Video, VideoStatus, Base, progress_for_status
from .database import get_session, init_db, engine, AsyncSessionLocal

__all__ = [
    "Video",
    "VideoStatus",
    "Base",
    "progress_for_status",
    "get_session",
    "init_db",
    "engine",
    "AsyncSessionLocal",
]
