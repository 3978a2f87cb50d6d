"""
Tests for the server-sent status stream
"""
import asyncio

import pytest

from api.models.video import StatusEvent
from api.services.status_notifier import StatusNotifier, format_sse
from tests.utils import parse_sse


def _event(status, **kwargs):
    progress = {"uploaded": 10, "processing": 50, "completed": 100}.get(status, 0)
    return StatusEvent(id="vid-1", status=status, progress=progress, **kwargs)


class SequenceFetcher:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self, video_id):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


async def _collect(notifier, video_id="vid-1", stop=None):
    return "".join([chunk async for chunk in notifier.stream(video_id, stop)])


class TestStatusNotifier:

    @pytest.mark.unit
    def test_format_sse(self):
        assert format_sse({"a": 1}) == 'data: {"a": 1}\n\n'

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stream_ends_on_completion(self):
        fetcher = SequenceFetcher(
            _event("processing"),
            _event("processing"),
            _event("completed", coverUrl="/c.png", processedVideoUrl="/v.mp4"),
        )
        notifier = StatusNotifier(fetcher, interval=0.01)

        events = parse_sse(await _collect(notifier))

        assert [event["status"] for event in events] == ["processing", "processing", "completed"]
        assert events[-1]["progress"] == 100
        assert events[-1]["coverUrl"] == "/c.png"
        assert fetcher.calls == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_status_is_terminal(self):
        notifier = StatusNotifier(SequenceFetcher(_event("failed")), interval=0.01)
        events = parse_sse(await _collect(notifier))
        assert events == [{"id": "vid-1", "status": "failed", "progress": 0,
                           "coverUrl": None, "processedVideoUrl": None}]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_record(self):
        notifier = StatusNotifier(SequenceFetcher(None), interval=0.01)
        assert parse_sse(await _collect(notifier)) == [{"error": "Video not found"}]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_read_failure(self):
        notifier = StatusNotifier(SequenceFetcher(RuntimeError("db down")), interval=0.01)
        assert parse_sse(await _collect(notifier)) == [{"error": "Failed to check status"}]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_ends_stream_between_samples(self):
        fetcher = SequenceFetcher(_event("processing"))
        notifier = StatusNotifier(fetcher, interval=10)
        stop = asyncio.Event()

        chunks = []

        async def consume():
            async for chunk in notifier.stream("vid-1", stop):
                chunks.append(chunk)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert len(chunks) == 1
        assert fetcher.calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stopped_before_start_emits_nothing(self):
        fetcher = SequenceFetcher(_event("processing"))
        stop = asyncio.Event()
        stop.set()

        assert await _collect(StatusNotifier(fetcher, interval=0.01), stop=stop) == ""
        assert fetcher.calls == 0
