"""
Test configuration and fixtures
"""
import os
import tempfile

# Settings are read at import time, so the environment is pinned first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("STORAGE_PATH", tempfile.mkdtemp(prefix="livephoto_test_storage_"))
os.environ.setdefault("STORAGE_CONFIG", "./tests/does-not-exist.yml")
os.environ.setdefault("STATUS_POLL_INTERVAL", "0.05")
os.environ.setdefault("COMPOSE_REALTIME", "false")
os.environ.pop("WAVESPEED_API_KEY", None)
os.environ.pop("QUEUE_URL", None)

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import cv2
import numpy as np
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tests.utils.helpers import write_test_video


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests crossing API, database and media layers")


@pytest.fixture
def sample_video(tmp_path) -> Path:
    """A 1 second 160x120 clip at 10 fps."""
    return write_test_video(tmp_path / "clip.mp4", width=160, height=120, fps=10, frames=10)


@pytest.fixture
def cover_png() -> bytes:
    """A small solid-colour PNG used as the stylized cover."""
    image = np.full((60, 80, 3), (40, 180, 220), dtype=np.uint8)
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


@pytest.fixture
def db_engine():
    """
    Engine over a private in-memory database.

    Tables are created by `create_tables` inside the test, since async
    setup must run in the test's event loop.
    """
    return create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def mock_queue_service():
    queue = MagicMock()
    queue.enqueue_video = AsyncMock(return_value="task-123")
    queue.mode = "queue"
    queue.in_flight = 0
    return queue


@pytest.fixture
def mock_limit_service():
    limits = MagicMock()
    limits.limit = 100
    limits.can_make_call = AsyncMock(return_value=True)
    limits.increment = AsyncMock(return_value=1)
    limits.status = AsyncMock(return_value={"remaining": 99, "limit": 100, "used": 1})
    return limits
