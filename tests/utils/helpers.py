"""
Test helper functions
"""
from pathlib import Path
from typing import Any, Dict, List, Optional

import cv2
import numpy as np


def write_test_video(path: Path, width: int = 160, height: int = 120, fps: int = 10, frames: int = 10) -> Path:
    """Write a short mp4v clip whose frames brighten one step at a time."""
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"mp4v"), fps, (width, height))
    assert writer.isOpened(), "OpenCV build cannot write mp4v"
    try:
        for index in range(frames):
            frame = np.full((height, width, 3), (index * 20) % 255, dtype=np.uint8)
            cv2.putText(frame, str(index), (10, height // 2), cv2.FONT_HERSHEY_SIMPLEX, 1, (255, 255, 255), 2)
            writer.write(frame)
    finally:
        writer.release()
    return path


def parse_sse(body: str) -> List[Dict[str, Any]]:
    """Decode the JSON payloads of a server-sent event stream."""
    import json

    events = []
    for block in body.split("\n\n"):
        block = block.strip()
        if block.startswith("data: "):
            events.append(json.loads(block[len("data: "):]))
    return events


def assert_error_response(response_data: Dict[str, Any], expected_code: Optional[str] = None) -> None:
    """Assert that a response carries the error envelope."""
    assert "error" in response_data, "Response should contain error field"

    error = response_data["error"]
    for field in ("code", "message"):
        assert field in error, f"Missing required error field: {field}"

    if expected_code:
        assert error["code"] == expected_code


async def create_tables(engine) -> None:
    from api.models.video import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class FakeClock:
    """Virtual monotonic clock; sleeping advances it."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
