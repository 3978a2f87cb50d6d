"""
OpenCV decode sessions for source videos and cover images
"""
from typing import Optional

import cv2
import numpy as np

from api.utils.error_handlers import DecodeError


class DecodeSession:
    """
    An open cv2.VideoCapture plus the intrinsic size, rate and duration.

    All methods block; async callers run them through asyncio.to_thread.
    """

    def __init__(self, capture: "cv2.VideoCapture", width: int, height: int, fps: float, frame_count: int):
        self.capture = capture
        self.width = width
        self.height = height
        self.fps = fps
        self.frame_count = max(0, frame_count)
        self.frames_read = 0

    @property
    def duration(self) -> float:
        if self.fps <= 0:
            return 0.0
        return self.frame_count / self.fps

    def seek_start(self) -> None:
        self.capture.set(cv2.CAP_PROP_POS_FRAMES, 0)
        self.frames_read = 0

    def read(self) -> Optional[np.ndarray]:
        """Next BGR frame, or None at end of stream."""
        ok, frame = self.capture.read()
        if not ok or frame is None:
            return None
        self.frames_read += 1
        return frame

    def read_first_frame(self) -> Optional[np.ndarray]:
        self.seek_start()
        return self.read()

    def release(self) -> None:
        self.capture.release()


def open_decode_session(path) -> DecodeSession:
    """Open a video file and read its intrinsic metadata."""
    capture = cv2.VideoCapture(str(path))
    if not capture.isOpened():
        capture.release()
        raise DecodeError(f"Decoder could not open {path}")

    width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
    if width <= 0 or height <= 0:
        capture.release()
        raise DecodeError(f"Decoder reported no frame size for {path}")

    fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
    frame_count = int(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
    return DecodeSession(capture, width, height, float(fps), frame_count)


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (PNG, JPEG, ...) into a BGR array."""
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    if image is None:
        raise DecodeError("Image bytes could not be decoded")
    return image


def encode_jpeg(frame: np.ndarray, quality: int = 90) -> bytes:
    ok, encoded = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise DecodeError("Frame could not be encoded as JPEG")
    return encoded.tobytes()
