"""
Tests for job dispatch
"""
import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest

from api.services.queue import PROCESS_TASK, QueueService


class TestQueueService:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_queue_mode_sends_celery_task(self):
        celery_app = MagicMock()
        celery_app.send_task.return_value.id = "celery-1"
        queue = QueueService(celery_app=celery_app, public_url="http://api")

        task_id = await queue.enqueue_video("vid-1", "/api/files/uploads/a.mp4")

        assert queue.mode == "queue"
        assert task_id == "celery-1"
        celery_app.send_task.assert_called_once_with(PROCESS_TASK, args=["vid-1", "/api/files/uploads/a.mp4"])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initialize_without_broker_is_direct(self):
        queue = QueueService(queue_url="", public_url="http://api")
        await queue.initialize()
        assert queue.mode == "direct"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initialize_with_broker_creates_celery(self):
        queue = QueueService(queue_url="redis://localhost:6379/1", public_url="http://api")
        await queue.initialize()
        assert queue.mode == "queue"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_direct_mode_posts_to_process(self):
        received = []

        def handler(request):
            received.append(request)
            return httpx.Response(200, json={"status": "success"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        queue = QueueService(queue_url="", public_url="http://api/", http_client=client)

        assert await queue.enqueue_video("vid-1", "/api/files/uploads/a.mp4") == "direct"
        for _ in range(50):
            if queue.in_flight == 0:
                break
            await asyncio.sleep(0.01)

        assert queue.in_flight == 0
        assert str(received[0].url) == "http://api/api/process"
        assert json.loads(received[0].content) == {"videoId": "vid-1", "videoUrl": "/api/files/uploads/a.mp4"}
        await client.aclose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_direct_failure_does_not_raise(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        queue = QueueService(queue_url="", public_url="http://api", http_client=client)

        await queue.enqueue_video("vid-1", "/x.mp4")
        await asyncio.gather(*list(queue._background))
        assert queue.in_flight == 0
        await client.aclose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cleanup_cancels_in_flight(self):
        started = asyncio.Event()

        async def slow_handler(request):
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(slow_handler))
        queue = QueueService(queue_url="", public_url="http://api", http_client=client)

        await queue.enqueue_video("vid-1", "/x.mp4")
        await asyncio.wait_for(started.wait(), timeout=1)
        await queue.cleanup()

        assert queue.in_flight == 0
        await client.aclose()
