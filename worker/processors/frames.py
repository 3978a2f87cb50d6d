"""
First-frame extraction from uploaded videos
"""
import asyncio
from enum import Enum
from typing import Callable, Optional

import structlog

from api.config import settings
from api.utils.error_handlers import (
    DecodeError,
    LivePhotoError,
    LoadTimeoutError,
    UnsupportedFormatError,
)
from worker.utils.decoder import DecodeSession, encode_jpeg, open_decode_session
from worker.utils.media import ExtractedFrame, FrameMetadata, VideoAsset, format_file_size

logger = structlog.get_logger()


class ExtractionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SEEKING = "seeking"
    CAPTURED = "captured"
    FAILED = "failed"


def _release_late_session(future: "asyncio.Future") -> None:
    """Release a decoder that finished opening after the load timeout fired."""
    if future.cancelled() or future.exception() is not None:
        return
    future.result().release()
    logger.debug("Released decoder opened after timeout")


def check_supported(asset: VideoAsset) -> None:
    """Reject inputs this runtime cannot decode, before touching the decoder."""
    if asset.is_heic():
        raise UnsupportedFormatError(
            f"{asset.file_name} is HEIC/HEIF, which cannot be decoded here; convert it to MP4 or MOV"
        )
    if not asset.is_decodable_video():
        raise UnsupportedFormatError(
            f"{asset.file_name} has unsupported type {asset.mime_type or 'unknown'}"
        )


class FrameExtractor:
    """
    Extracts the first frame of a video as a JPEG still.

    Each call walks IDLE -> LOADING -> SEEKING -> CAPTURED, or ends in
    FAILED. `state` reflects the most recent call. Blocking OpenCV work runs
    in worker threads; the temp file and the decoder are released on every
    path out of `extract`.
    """

    def __init__(
        self,
        load_timeout: Optional[float] = None,
        jpeg_quality: Optional[int] = None,
        opener: Callable[..., DecodeSession] = open_decode_session,
    ):
        self.load_timeout = settings.FRAME_LOAD_TIMEOUT if load_timeout is None else load_timeout
        self.jpeg_quality = settings.FRAME_JPEG_QUALITY if jpeg_quality is None else jpeg_quality
        self._opener = opener
        self.state = ExtractionState.IDLE

    def _transition(self, state: ExtractionState, **context) -> None:
        logger.debug("Extractor state", previous=self.state.value, state=state.value, **context)
        self.state = state

    async def extract(self, asset: VideoAsset) -> ExtractedFrame:
        self.state = ExtractionState.IDLE
        try:
            check_supported(asset)
            with asset.temporary_file() as path:
                self._transition(ExtractionState.LOADING, file_name=asset.file_name)
                session = await self._load(path)
                try:
                    self._transition(ExtractionState.SEEKING)
                    frame = await asyncio.to_thread(session.read_first_frame)
                    if frame is None:
                        raise DecodeError(f"No frame could be read from {asset.file_name}")

                    image = await asyncio.to_thread(encode_jpeg, frame, self.jpeg_quality)
                    height, width = frame.shape[:2]
                    metadata = FrameMetadata.for_size(width, height, session.duration)
                finally:
                    session.release()
        except LivePhotoError as e:
            self._transition(ExtractionState.FAILED, error=e.code)
            raise
        except Exception as e:
            self._transition(ExtractionState.FAILED, error=type(e).__name__)
            raise DecodeError(f"Frame extraction failed: {e}")

        self._transition(ExtractionState.CAPTURED)
        logger.info(
            "Frame extracted",
            file_name=asset.file_name,
            size=format_file_size(asset.size),
            width=metadata.width,
            height=metadata.height,
            aspect_ratio=metadata.aspect_ratio,
            jpeg_bytes=len(image),
        )
        return ExtractedFrame(image=image, metadata=metadata)

    async def _load(self, path) -> DecodeSession:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._opener, path)
        try:
            # shield keeps the open running past the timeout so it can be released
            return await asyncio.wait_for(asyncio.shield(future), timeout=self.load_timeout)
        except asyncio.TimeoutError:
            future.add_done_callback(_release_late_session)
            raise LoadTimeoutError(f"Video metadata did not load within {self.load_timeout}s")
