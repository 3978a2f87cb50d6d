"""
Tests for the end-to-end video processing task
"""
import base64
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from api.models.video import Video
from api.services.storage import StorageService
from api.services.stylization import StylizationTask, TaskState
from api.utils.error_handlers import ProviderError, UnsupportedFormatError
from storage.base import LocalStorageBackend
from tests.utils import create_tables
from worker.base import ProcessingError, parse_video_id
from worker.processors.compositor import VideoCompositor
from worker.processors.frames import FrameExtractor
from worker.tasks import VideoProcessingTask, run_video_pipeline


def _storage(tmp_path):
    return StorageService(LocalStorageBackend({"base_path": str(tmp_path / "blobs"),
                                               "public_url": "http://testserver"}))


def _stylization(task):
    client = MagicMock()
    client.stylize = AsyncMock(return_value=task)
    return client


async def _uploaded_video(storage, session_factory, data, file_name="clip.mp4", mime_type="video/mp4"):
    blob = await storage.put(file_name, data, mime_type, prefix="uploads")
    async with session_factory() as session:
        video = Video(
            original_url=blob.url,
            video_metadata={"storageKey": blob.key, "fileName": file_name, "mimeType": mime_type},
        )
        session.add(video)
        await session.commit()
        return str(video.id), blob


def _make_task(storage, stylization, session_factory, **kwargs):
    return VideoProcessingTask(
        storage=storage,
        stylization=stylization,
        extractor=FrameExtractor(load_timeout=10),
        compositor=VideoCompositor(target_fps=30, realtime=False),
        session_factory=session_factory,
        **kwargs,
    )


class TestVideoProcessingTask:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_pipeline(self, tmp_path, sample_video, cover_png, db_engine, session_factory):
        await create_tables(db_engine)
        storage = _storage(tmp_path)
        video_id, blob = await _uploaded_video(storage, session_factory, sample_video.read_bytes())
        cover_url = "data:image/png;base64," + base64.b64encode(cover_png).decode()
        stylization = _stylization(StylizationTask("req-1", TaskState.COMPLETED, result_url=cover_url))
        task = _make_task(storage, stylization, session_factory)

        result = await task.execute_with_error_handling(video_id, task.process_video_async, blob.url)

        frame_url = stylization.stylize.await_args.args[0]
        assert frame_url.startswith("http://testserver/api/files/frames/clip-")
        assert result["coverUrl"] == cover_url
        assert result["aspectRatio"] == "4:3"
        assert result["processedVideoUrl"].startswith("http://testserver/api/files/processed/clip-")
        assert result["metadata"]["width"] == 160
        assert result["metadata"]["stylizationRequestId"] == "req-1"
        assert result["metadata"]["storageKey"] == blob.key

        output_key = result["metadata"]["outputKey"]
        assert (await storage.read_bytes(output_key))

        async with session_factory() as session:
            record = await session.get(Video, parse_video_id(video_id))
        assert record.status == "completed"
        assert record.processed_url == result["processedVideoUrl"]
        assert record.aspect_ratio == "4:3"
        await db_engine.dispose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_stylization_fails_the_record(self, tmp_path, sample_video, db_engine, session_factory):
        await create_tables(db_engine)
        storage = _storage(tmp_path)
        video_id, blob = await _uploaded_video(storage, session_factory, sample_video.read_bytes())
        stylization = _stylization(StylizationTask("req-1", TaskState.FAILED, error_detail="content policy"))
        task = _make_task(storage, stylization, session_factory)

        with pytest.raises(ProviderError):
            await task.execute_with_error_handling(video_id, task.process_video_async, blob.url)

        async with session_factory() as session:
            record = await session.get(Video, parse_video_id(video_id))
        assert record.status == "failed"
        await db_engine.dispose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_completed_without_output(self, tmp_path, sample_video, db_engine, session_factory):
        await create_tables(db_engine)
        storage = _storage(tmp_path)
        video_id, blob = await _uploaded_video(storage, session_factory, sample_video.read_bytes())
        task = _make_task(storage, _stylization(StylizationTask("req-1", TaskState.COMPLETED)), session_factory)

        with pytest.raises(ProviderError):
            await task.execute_with_error_handling(video_id, task.process_video_async, blob.url)
        await db_engine.dispose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_heic_upload_is_unsupported(self, tmp_path, db_engine, session_factory):
        await create_tables(db_engine)
        storage = _storage(tmp_path)
        video_id, blob = await _uploaded_video(storage, session_factory, b"heic", "IMG_0001.HEIC", "image/heic")
        stylization = _stylization(None)
        task = _make_task(storage, stylization, session_factory)

        with pytest.raises(UnsupportedFormatError):
            await task.execute_with_error_handling(video_id, task.process_video_async, blob.url)

        stylization.stylize.assert_not_awaited()
        await db_engine.dispose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_source_downloaded_when_not_stored_locally(self, sample_video):
        payload = sample_video.read_bytes()

        def handler(request):
            return httpx.Response(200, content=payload)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        task = VideoProcessingTask(storage=MagicMock(), http_client=client)
        video = Video(original_url="https://cdn/clip.mov", video_metadata=None)

        asset = await task.load_source(video, "https://cdn/clip.mov?sig=abc")

        assert asset.data == payload
        assert asset.file_name == "clip.mov"
        assert asset.mime_type == "video/quicktime"
        await client.aclose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_download_failure(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        task = VideoProcessingTask(storage=MagicMock(), http_client=client)
        video = Video(original_url="https://cdn/clip.mp4")

        with pytest.raises(ProcessingError):
            await task.load_source(video, "https://cdn/clip.mp4")
        await client.aclose()


class TestRunVideoPipeline:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_each_run_gets_its_own_task(self):
        import asyncio

        created = []

        def make_task():
            task = MagicMock()
            task.execute_with_error_handling = AsyncMock(return_value={"coverUrl": f"c{len(created)}"})
            created.append(task)
            return task

        with patch("worker.tasks.VideoProcessingTask", side_effect=make_task):
            results = await asyncio.gather(
                run_video_pipeline("v1", "/a.mp4"),
                run_video_pipeline("v2", "/b.mp4"),
            )

        assert len(created) == 2
        assert created[0] is not created[1]
        assert {r["coverUrl"] for r in results} == {"c0", "c1"}
        created[0].execute_with_error_handling.assert_awaited_once_with(
            "v1", created[0].process_video_async, "/a.mp4"
        )
