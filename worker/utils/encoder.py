"""
Push-based encoder sessions over cv2.VideoWriter
"""
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
import structlog

from api.utils.error_handlers import EncodingError

logger = structlog.get_logger()


@dataclass(frozen=True)
class EncoderProfile:
    fourcc: str
    extension: str
    mime_type: str


# Most widely playable first
ENCODER_CANDIDATES: Tuple[EncoderProfile, ...] = (
    EncoderProfile("avc1", ".mp4", "video/mp4"),
    EncoderProfile("mp4v", ".mp4", "video/mp4"),
    EncoderProfile("VP80", ".webm", "video/webm"),
    EncoderProfile("MJPG", ".avi", "video/x-msvideo"),
)


class EncoderSession:
    """
    Frames pushed into the session are appended to the output container.

    The output timeline advances by 1/fps per captured frame, so holding a
    surface for N seconds means capturing it round(N * fps) times.
    """

    def __init__(self, writer: "cv2.VideoWriter", profile: EncoderProfile, path: Path,
                 fps: float, frame_size: Tuple[int, int]):
        self.writer = writer
        self.profile = profile
        self.path = path
        self.fps = fps
        self.frame_size = frame_size
        self.frames_written = 0
        self._closed = False

    @property
    def timeline_seconds(self) -> float:
        return self.frames_written / self.fps

    def capture(self, surface: np.ndarray) -> None:
        if self._closed:
            raise EncodingError("Encoder session is already closed")
        height, width = surface.shape[:2]
        if (width, height) != self.frame_size:
            raise EncodingError(
                f"Surface is {width}x{height}, encoder expects {self.frame_size[0]}x{self.frame_size[1]}"
            )
        try:
            self.writer.write(surface)
        except cv2.error as e:
            raise EncodingError(f"Encoder rejected frame {self.frames_written}: {e}")
        self.frames_written += 1

    def capture_until(self, surface: np.ndarray, timeline_end: float) -> int:
        """Repeat the surface until the output timeline reaches timeline_end."""
        target = int(round(timeline_end * self.fps))
        captured = 0
        while self.frames_written < target:
            self.capture(surface)
            captured += 1
        return captured

    def finalize(self) -> bytes:
        """Flush the container and return its bytes."""
        self._release_writer()
        try:
            data = self.path.read_bytes()
        except OSError as e:
            raise EncodingError(f"Encoded output could not be read: {e}")
        finally:
            self.path.unlink(missing_ok=True)
        if not data or self.frames_written == 0:
            raise EncodingError("Encoder produced no output")
        return data

    def abort(self) -> None:
        """Discard any partial output."""
        self._release_writer()
        self.path.unlink(missing_ok=True)

    def _release_writer(self) -> None:
        if not self._closed:
            self._closed = True
            self.writer.release()


def open_encoder_session(
    frame_size: Tuple[int, int],
    fps: float,
    candidates: Sequence[EncoderProfile] = ENCODER_CANDIDATES,
    directory: Optional[str] = None,
) -> EncoderSession:
    """
    Open the first encoder this OpenCV build supports.

    Availability depends on the codecs compiled into the installed wheel,
    so each candidate is probed by opening a writer and checking isOpened().
    """
    width, height = frame_size
    if width <= 0 or height <= 0:
        raise EncodingError(f"Invalid output size {width}x{height}")

    for profile in candidates:
        fd, name = tempfile.mkstemp(prefix="livephoto_out_", suffix=profile.extension, dir=directory)
        os.close(fd)
        path = Path(name)
        writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*profile.fourcc), float(fps), (width, height))
        if writer.isOpened():
            logger.info("Encoder opened", fourcc=profile.fourcc, extension=profile.extension, fps=fps,
                        width=width, height=height)
            return EncoderSession(writer, profile, path, float(fps), (width, height))

        writer.release()
        path.unlink(missing_ok=True)
        logger.debug("Encoder unavailable", fourcc=profile.fourcc)

    raise EncodingError("No supported video encoder is available on this system")
