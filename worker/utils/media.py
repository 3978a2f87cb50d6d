"""
Media value types shared by the extractor, the compositor and the API
"""
import base64
import math
import mimetypes
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Tuple

VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".webm", ".mkv", ".avi", ".3gp"}
HEIC_EXTENSIONS = {".heic", ".heif"}
HEIC_MIME_TYPES = {"image/heic", "image/heif"}
GENERIC_MIME_TYPE = "application/octet-stream"

# Checked in order, first match wins
CANONICAL_RATIOS: Tuple[Tuple[str, float, float], ...] = (
    ("16:9", 16 / 9, 0.1),
    ("9:16", 9 / 16, 0.1),
    ("4:3", 4 / 3, 0.1),
    ("1:1", 1.0, 0.01),
)


def calculate_aspect_ratio(width: int, height: int) -> str:
    """
    Label a frame size with its canonical aspect ratio.

    The size is reduced by its GCD first, so 1920x1080 and 3840x2160 both
    give "16:9". Sizes near no canonical ratio come back as the reduced
    literal, e.g. 1000x300 -> "10:3".
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Frame size must be positive, got {width}x{height}")

    divisor = math.gcd(width, height)
    rw, rh = width // divisor, height // divisor
    ratio = rw / rh
    for label, target, tolerance in CANONICAL_RATIOS:
        if abs(ratio - target) <= tolerance:
            return label
    return f"{rw}:{rh}"


def guess_mime_type(file_name: str) -> str:
    suffix = Path(file_name).suffix.lower()
    if suffix in HEIC_EXTENSIONS:
        return "image/heic"
    if suffix == ".mov":
        return "video/quicktime"
    return mimetypes.guess_type(file_name)[0] or GENERIC_MIME_TYPE


@dataclass(frozen=True)
class VideoAsset:
    """An uploaded video held in memory."""
    data: bytes = field(repr=False)
    mime_type: str
    file_name: str

    @classmethod
    def from_path(cls, path, mime_type: Optional[str] = None) -> "VideoAsset":
        path = Path(path)
        return cls(
            data=path.read_bytes(),
            mime_type=mime_type or guess_mime_type(path.name),
            file_name=path.name,
        )

    @property
    def extension(self) -> str:
        return Path(self.file_name).suffix.lower()

    @property
    def size(self) -> int:
        return len(self.data)

    def is_heic(self) -> bool:
        return self.mime_type.lower() in HEIC_MIME_TYPES or self.extension in HEIC_EXTENSIONS

    def is_decodable_video(self) -> bool:
        """True when the declared type promises a container the decoder reads."""
        if self.is_heic():
            return False
        mime = self.mime_type.lower()
        if mime.startswith("video/"):
            return True
        return mime in ("", GENERIC_MIME_TYPE) and self.extension in VIDEO_EXTENSIONS

    @contextmanager
    def temporary_file(self, directory: Optional[str] = None) -> Iterator[Path]:
        """Write the bytes to a temp file for the decoder; removed on exit."""
        suffix = self.extension if self.extension in VIDEO_EXTENSIONS else ".mp4"
        fd, name = tempfile.mkstemp(prefix="livephoto_src_", suffix=suffix, dir=directory)
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(self.data)
            yield path
        finally:
            path.unlink(missing_ok=True)


@dataclass(frozen=True)
class FrameMetadata:
    width: int
    height: int
    duration_seconds: float
    aspect_ratio: str

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid frame size {self.width}x{self.height}")
        if self.duration_seconds < 0:
            raise ValueError(f"Invalid duration {self.duration_seconds}")

    @classmethod
    def for_size(cls, width: int, height: int, duration_seconds: float) -> "FrameMetadata":
        return cls(
            width=width,
            height=height,
            duration_seconds=max(0.0, duration_seconds),
            aspect_ratio=calculate_aspect_ratio(width, height),
        )


@dataclass(frozen=True)
class ExtractedFrame:
    """First frame of a video as a JPEG still."""
    image: bytes = field(repr=False)
    metadata: FrameMetadata
    mime_type: str = "image/jpeg"

    def data_url(self) -> str:
        encoded = base64.b64encode(self.image).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def format_file_size(num_bytes: int) -> str:
    """Human-readable size: 0 -> "0 Bytes", 1536 -> "1.5 KB"."""
    if num_bytes <= 0:
        return "0 Bytes"
    sizes = ("Bytes", "KB", "MB", "GB", "TB")
    value, index = float(num_bytes), 0
    while value >= 1024 and index < len(sizes) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {sizes[index]}"


def format_duration(seconds: float) -> str:
    """Minutes and zero-padded seconds: 75.4 -> "1:15"."""
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}:{secs:02d}"
