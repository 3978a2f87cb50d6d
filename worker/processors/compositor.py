"""
Cover-then-video composition

The composed clip holds the stylized cover, cross-fades into the first
frame of the source, then plays the source through to its end.
"""
import asyncio
import base64
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

import cv2
import httpx
import numpy as np
import structlog

from api.config import settings
from api.utils.error_handlers import (
    CompositionError,
    CoverLoadError,
    EncodingError,
    LivePhotoError,
    SourceLoadError,
    ValidationError,
)
from worker.processors.frames import check_supported
from worker.utils.decoder import DecodeSession, decode_image, open_decode_session
from worker.utils.encoder import EncoderSession, open_encoder_session
from worker.utils.media import VideoAsset, format_duration, format_file_size
from worker.utils.progress import ProgressCallback, ProgressReporter
from worker.utils.scheduler import TickScheduler, scheduler_factory

logger = structlog.get_logger()

CoverSource = Union[bytes, str]

# Share of phase 1 ticks that fade the cover in
FADE_IN_SHARE = 0.3


class CompositionPhase(str, Enum):
    SETUP = "setup"
    COVER_HOLD = "cover_hold"
    TRANSITION = "transition"
    PLAYBACK = "playback"
    FINALIZE = "finalize"


# Progress range per phase
PHASE_PROGRESS = {
    CompositionPhase.SETUP: (0.0, 30.0),
    CompositionPhase.COVER_HOLD: (30.0, 50.0),
    CompositionPhase.TRANSITION: (50.0, 60.0),
    CompositionPhase.PLAYBACK: (60.0, 95.0),
    CompositionPhase.FINALIZE: (95.0, 100.0),
}


@dataclass(frozen=True)
class CompositionJob:
    source: VideoAsset
    cover: CoverSource = field(repr=False)
    cover_hold_seconds: float = 1.5
    transition_seconds: float = 0.5
    target_fps: int = 30

    def __post_init__(self):
        if self.cover_hold_seconds < 0:
            raise ValidationError("cover_hold_seconds must be >= 0", field="cover_hold_seconds")
        if self.transition_seconds < 0:
            raise ValidationError("transition_seconds must be >= 0", field="transition_seconds")
        if self.target_fps < 1:
            raise ValidationError("target_fps must be >= 1", field="target_fps")

    @property
    def hold_ticks(self) -> int:
        return int(round(self.cover_hold_seconds * self.target_fps))

    @property
    def transition_ticks(self) -> int:
        return int(round(self.transition_seconds * self.target_fps))


@dataclass
class ComposedVideo:
    """Encoded output. Call release() once the bytes have been consumed."""
    data: Optional[bytes] = field(repr=False)
    container_extension: str
    mime_type: str
    codec: str
    frame_count: int
    duration_seconds: float

    @property
    def released(self) -> bool:
        return self.data is None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    def release(self) -> None:
        self.data = None


def blend(top: np.ndarray, bottom: np.ndarray, opacity: float) -> np.ndarray:
    """Draw `top` over `bottom` at the given opacity."""
    opacity = min(1.0, max(0.0, opacity))
    return cv2.addWeighted(top, opacity, bottom, 1.0 - opacity, 0.0)


def fit_surface(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Scale an image to fill the surface, as 3-channel BGR."""
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    if image.shape[1] != width or image.shape[0] != height:
        image = cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA)
    return image


class VideoCompositor:
    """
    Renders a CompositionJob into an encoded video.

    Phases 1 and 2 are paced one tick per 1/fps by the pacer; phase 3 is
    driven by a frame scheduler ticking at the source frame rate. With
    realtime pacing disabled both run as fast as decoding allows, which
    does not change the output timeline.
    """

    def __init__(
        self,
        target_fps: Optional[int] = None,
        realtime: Optional[bool] = None,
        schedulers: Optional[Callable[[float], TickScheduler]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        opener: Callable[..., DecodeSession] = open_decode_session,
        encoder_opener: Callable[..., EncoderSession] = open_encoder_session,
    ):
        self.target_fps = target_fps or settings.COMPOSE_TARGET_FPS
        realtime = settings.COMPOSE_REALTIME if realtime is None else realtime
        self._schedulers = schedulers or scheduler_factory(realtime)
        self._http_client = http_client
        self._opener = opener
        self._encoder_opener = encoder_opener

    async def compose(
        self,
        source: VideoAsset,
        cover: CoverSource,
        cover_hold_seconds: Optional[float] = None,
        transition_seconds: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ComposedVideo:
        job = CompositionJob(
            source=source,
            cover=cover,
            cover_hold_seconds=settings.COMPOSE_COVER_HOLD_SECONDS if cover_hold_seconds is None else cover_hold_seconds,
            transition_seconds=settings.COMPOSE_TRANSITION_SECONDS if transition_seconds is None else transition_seconds,
            target_fps=self.target_fps,
        )
        return await self.run(job, on_progress)

    async def run(self, job: CompositionJob, on_progress: Optional[ProgressCallback] = None) -> ComposedVideo:
        progress = ProgressReporter(on_progress, label="composition")
        phase = CompositionPhase.SETUP
        encoder: Optional[EncoderSession] = None

        try:
            await progress.report(0)
            cover_image = await self._load_cover(job.cover)
            await progress.report(10)

            with job.source.temporary_file() as source_path:
                session = await self._open_source(job.source, source_path)
                # Released before the temp file is removed
                try:
                    width, height = session.width, session.height
                    await progress.report(20)

                    try:
                        encoder = await asyncio.to_thread(self._encoder_opener, (width, height), job.target_fps)
                    except LivePhotoError:
                        raise
                    except Exception as e:
                        raise EncodingError(f"Encoder could not be opened: {e}")
                    await progress.report(30)

                    cover_surface = fit_surface(cover_image, width, height)
                    phase = CompositionPhase.COVER_HOLD
                    await self._hold_cover(job, cover_surface, encoder, progress)
                    phase = CompositionPhase.TRANSITION
                    await self._transition(job, cover_surface, session, encoder, progress)
                    phase = CompositionPhase.PLAYBACK
                    await self._playback(session, encoder, progress)
                finally:
                    session.release()

            phase = CompositionPhase.FINALIZE
            await progress.report(95)
            data = await asyncio.to_thread(encoder.finalize)
            result = ComposedVideo(
                data=data,
                container_extension=encoder.profile.extension,
                mime_type=encoder.profile.mime_type,
                codec=encoder.profile.fourcc,
                frame_count=encoder.frames_written,
                duration_seconds=encoder.timeline_seconds,
            )
            encoder = None
            await progress.complete()
        except LivePhotoError:
            raise
        except cv2.error as e:
            raise EncodingError(f"OpenCV failed during {phase.value}: {e}")
        except Exception as e:
            raise CompositionError(f"Composition failed during {phase.value}: {e}")
        finally:
            if encoder is not None:
                encoder.abort()

        logger.info(
            "Composition finished",
            file_name=job.source.file_name,
            codec=result.codec,
            frames=result.frame_count,
            duration=format_duration(result.duration_seconds),
            size=format_file_size(result.size),
        )
        return result

    async def _load_cover(self, cover: CoverSource) -> np.ndarray:
        try:
            if isinstance(cover, (bytes, bytearray)):
                data = bytes(cover)
            elif cover.startswith("data:"):
                data = base64.b64decode(cover.split(",", 1)[1])
            elif cover.startswith(("http://", "https://")):
                data = await self._fetch(cover)
            else:
                data = await asyncio.to_thread(Path(cover).read_bytes)
            return await asyncio.to_thread(decode_image, data)
        except CoverLoadError:
            raise
        except Exception as e:
            raise CoverLoadError(f"Cover image could not be loaded: {e}")

    async def _fetch(self, url: str) -> bytes:
        if self._http_client is not None:
            response = await self._http_client.get(url)
        else:
            async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
                response = await client.get(url)
        if not response.is_success:
            raise CoverLoadError(f"Cover download returned HTTP {response.status_code}")
        return response.content

    async def _open_source(self, source: VideoAsset, path) -> DecodeSession:
        try:
            check_supported(source)
            return await asyncio.to_thread(self._opener, path)
        except Exception as e:
            raise SourceLoadError(f"Source video could not be opened: {e}")

    async def _hold_cover(self, job: CompositionJob, cover: np.ndarray,
                          encoder: EncoderSession, progress: ProgressReporter) -> None:
        start, end = PHASE_PROGRESS[CompositionPhase.COVER_HOLD]
        ticks = job.hold_ticks
        fade_ticks = int(ticks * FADE_IN_SHARE)
        pacer = self._schedulers(1.0 / job.target_fps)

        try:
            for tick in range(ticks):
                surface = cover.copy()
                if tick < fade_ticks:
                    surface = blend(cover, surface, tick / fade_ticks)
                await pacer.next_tick()
                encoder.capture(surface)
                await progress.report(start + (tick + 1) / ticks * (end - start))
        finally:
            pacer.cancel()
        await progress.report(end)

    async def _transition(self, job: CompositionJob, cover: np.ndarray, session: DecodeSession,
                          encoder: EncoderSession, progress: ProgressReporter) -> None:
        start, end = PHASE_PROGRESS[CompositionPhase.TRANSITION]
        ticks = job.transition_ticks
        first = await asyncio.to_thread(session.read_first_frame)
        # Reading consumed frame 0; playback starts from it again
        await asyncio.to_thread(session.seek_start)
        pacer = self._schedulers(1.0 / job.target_fps)

        try:
            for tick in range(ticks):
                surface = cover.copy()
                if first is not None:
                    surface = blend(fit_surface(first, *encoder.frame_size), surface, (tick + 1) / ticks)
                await pacer.next_tick()
                encoder.capture(surface)
                await progress.report(start + (tick + 1) / ticks * (end - start))
        finally:
            pacer.cancel()
        await progress.report(end)

    async def _playback(self, session: DecodeSession, encoder: EncoderSession,
                        progress: ProgressReporter) -> None:
        start, end = PHASE_PROGRESS[CompositionPhase.PLAYBACK]
        source_fps = session.fps if session.fps > 0 else encoder.fps
        duration = session.duration
        timeline_start = encoder.timeline_seconds
        scheduler = self._schedulers(1.0 / source_fps)

        try:
            while await scheduler.next_tick():
                frame = await asyncio.to_thread(session.read)
                if frame is None:
                    break
                surface = fit_surface(frame, *encoder.frame_size)
                # Hold each source frame until its presentation end time
                presented_until = session.frames_read / source_fps
                encoder.capture_until(surface, timeline_start + presented_until)
                if duration > 0:
                    await progress.report(start + min(1.0, presented_until / duration) * (end - start))
        finally:
            scheduler.cancel()

        logger.debug("Playback finished", frames=session.frames_read, duration=round(duration, 3))
        await progress.report(end)


class CompositionSession:
    """
    Runs compositions one at a time and tracks the latest output.

    Composing again while the previous output still holds its bytes is a
    caller error; it is logged so the leak is visible.
    """

    def __init__(self, compositor: Optional[VideoCompositor] = None):
        self.compositor = compositor or VideoCompositor()
        self.output: Optional[ComposedVideo] = None
        self._lock = asyncio.Lock()

    async def compose(self, source: VideoAsset, cover: CoverSource, **kwargs) -> ComposedVideo:
        async with self._lock:
            if self.output is not None and not self.output.released:
                logger.warning("Previous composed video was not released", size=self.output.size)
            self.output = await self.compositor.compose(source, cover, **kwargs)
            return self.output

    def release(self) -> None:
        if self.output is not None:
            self.output.release()
            self.output = None
