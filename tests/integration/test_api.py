"""
Tests for the HTTP API
"""
import base64
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api.dependencies import (
    get_limit_service,
    get_queue_service,
    get_status_notifier,
    get_stylization_client,
)
from api.config import settings
from api.main import app
from api.models.video import StatusEvent
from api.services.status_notifier import StatusNotifier
from api.services.stylization import StylizationTask, TaskState
from api.utils.error_handlers import ProviderError
from tests.utils import assert_error_response, parse_sse

FRAME_DATA_URL = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8\xff\xe0frame").decode()


@pytest.fixture(scope="module")
def client():
    """One client for the module, so the lifespan and database run on a single loop."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def queue(mock_queue_service):
    app.dependency_overrides[get_queue_service] = lambda: mock_queue_service
    return mock_queue_service


@pytest.fixture
def limits(mock_limit_service):
    app.dependency_overrides[get_limit_service] = lambda: mock_limit_service
    return mock_limit_service


@pytest.fixture
def stylization():
    stylization_client = MagicMock()
    stylization_client.submit = AsyncMock(return_value=StylizationTask("req-1", TaskState.PENDING))
    stylization_client.poll = AsyncMock()
    app.dependency_overrides[get_stylization_client] = lambda: stylization_client
    return stylization_client


def _upload(client, sample_video):
    with open(sample_video, "rb") as f:
        response = client.post("/api/upload", files={"video": ("clip.mp4", f, "video/mp4")})
    assert response.status_code == 200, response.text
    return response.json()


class TestRoot:

    @pytest.mark.integration
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["health"] == "/api/health"

    @pytest.mark.integration
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"]["status"] == "healthy"
        assert data["components"]["storage"]["backend"] == "local"
        assert data["components"]["dispatch"]["mode"] == "direct"
        assert data["components"]["stylization"]["configured"] is False

    @pytest.mark.integration
    def test_metrics(self, client):
        response = client.get("/metrics/")
        assert response.status_code == 200
        assert "livephoto_uploads" in response.text


class TestUpload:

    @pytest.mark.integration
    def test_upload_and_serve(self, client, sample_video):
        data = _upload(client, sample_video)

        assert data["videoId"]
        assert "/api/files/clip-" in data["url"]
        assert data["downloadUrl"] == data["url"] + "?download=1"

        path = data["url"].split("/api/files/", 1)[1]
        served = client.get(f"/api/files/{path}")
        assert served.status_code == 200
        assert served.content == sample_video.read_bytes()
        assert served.headers["content-disposition"].startswith("inline")

        download = client.get(f"/api/files/{path}", params={"download": "1"})
        assert download.headers["content-disposition"].startswith("attachment")

    @pytest.mark.integration
    def test_rejects_unsupported_type(self, client):
        response = client.post("/api/upload", files={"video": ("notes.txt", b"hello", "text/plain")})
        assert response.status_code == 400
        assert_error_response(response.json(), "VALIDATION_ERROR")

    @pytest.mark.integration
    def test_missing_file_field(self, client):
        response = client.post("/api/upload")
        assert response.status_code == 400
        assert_error_response(response.json(), "VALIDATION_ERROR")

    @pytest.mark.integration
    def test_rejects_oversized_file(self, client, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE", 16)
        response = client.post("/api/upload", files={"video": ("clip.mp4", b"x" * 64, "video/mp4")})
        assert response.status_code == 400
        assert "too large" in response.json()["error"]["message"]

    @pytest.mark.integration
    @pytest.mark.parametrize("path", ["missing.mp4", "../../etc/passwd"])
    def test_unknown_file(self, client, path):
        response = client.get(f"/api/files/{path}")
        assert response.status_code == 404


class TestGenerate:

    @pytest.mark.integration
    def test_dispatches_and_marks_processing(self, client, sample_video, queue):
        uploaded = _upload(client, sample_video)

        response = client.post("/api/generate", json={"videoId": uploaded["videoId"]})

        assert response.status_code == 200
        assert response.json() == {"status": "queued", "videoId": uploaded["videoId"]}
        queue.enqueue_video.assert_awaited_once_with(uploaded["videoId"], uploaded["url"])

    @pytest.mark.integration
    @pytest.mark.parametrize("video_id", [str(uuid4()), "not-a-uuid"])
    def test_unknown_video(self, client, queue, video_id):
        response = client.post("/api/generate", json={"videoId": video_id})
        assert response.status_code == 404
        assert_error_response(response.json(), "HTTP_404")
        queue.enqueue_video.assert_not_awaited()


class TestProcess:

    @pytest.mark.integration
    def test_runs_pipeline(self, client):
        result = {
            "coverUrl": "https://cdn/cover.png",
            "processedVideoUrl": "http://localhost:8000/api/files/processed/a.mp4",
            "processingTimeMs": 4200,
        }
        with patch("api.routers.videos.run_video_pipeline", AsyncMock(return_value=result)) as pipeline:
            response = client.post("/api/process", json={"videoId": "v1", "videoUrl": "/a.mp4"})

        assert response.status_code == 200
        assert response.json() == {"status": "success", **result}
        pipeline.assert_awaited_once_with("v1", "/a.mp4")

    @pytest.mark.integration
    def test_pipeline_error_uses_error_envelope(self, client):
        failure = AsyncMock(side_effect=ProviderError("provider down", status=503))
        with patch("api.routers.videos.run_video_pipeline", failure):
            response = client.post("/api/process", json={"videoId": "v1", "videoUrl": "/a.mp4"})

        assert response.status_code == 502
        assert_error_response(response.json(), "PROVIDER_ERROR")

    @pytest.mark.integration
    def test_invalid_body_fails_the_record(self, client, sample_video):
        uploaded = _upload(client, sample_video)

        response = client.post("/api/process", json={"videoId": uploaded["videoId"]})
        assert response.status_code == 400

        events = parse_sse(client.get(f"/api/status/{uploaded['videoId']}").text)
        assert [event["status"] for event in events] == ["failed"]

    @pytest.mark.integration
    def test_non_json_body(self, client):
        response = client.post("/api/process", content=b"not json",
                               headers={"Content-Type": "application/json"})
        assert response.status_code == 400


class TestStatusStream:

    @pytest.mark.integration
    def test_streams_until_completed(self, client):
        events = iter([
            StatusEvent(id="v1", status="processing", progress=50),
            StatusEvent(id="v1", status="completed", progress=100,
                        coverUrl="https://cdn/c.png", processedVideoUrl="/api/files/p.mp4"),
        ])

        async def fetch(video_id):
            return next(events)

        app.dependency_overrides[get_status_notifier] = lambda: StatusNotifier(fetch, interval=0.01)
        response = client.get("/api/status/v1")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        payloads = parse_sse(response.text)
        assert [event["status"] for event in payloads] == ["processing", "completed"]
        assert payloads[-1]["processedVideoUrl"] == "/api/files/p.mp4"

    @pytest.mark.integration
    def test_uploaded_record_reports_progress(self, client, sample_video):
        uploaded = _upload(client, sample_video)
        app.dependency_overrides[get_status_notifier] = lambda: StatusNotifier(
            AsyncMock(side_effect=[
                StatusEvent(id=uploaded["videoId"], status="uploaded", progress=10),
                None,
            ]),
            interval=0.01,
        )

        payloads = parse_sse(client.get(f"/api/status/{uploaded['videoId']}").text)
        assert payloads == [
            {"id": uploaded["videoId"], "status": "uploaded", "progress": 10,
             "coverUrl": None, "processedVideoUrl": None},
            {"error": "Video not found"},
        ]

    @pytest.mark.integration
    def test_unknown_video(self, client):
        payloads = parse_sse(client.get(f"/api/status/{uuid4()}").text)
        assert payloads == [{"error": "Video not found"}]


class TestStylize:

    @pytest.mark.integration
    def test_submit(self, client, stylization, limits):
        response = client.post("/api/stylize", json={"frameDataUrl": FRAME_DATA_URL, "fileName": "frame.jpg"})

        assert response.status_code == 200
        data = response.json()
        assert data["requestId"] == "req-1"
        assert data["status"] == "pending"
        assert "/api/files/frames/frame-" in data["frameUrl"]
        assert "resultUrl" not in data
        stylization.submit.assert_awaited_once_with(data["frameUrl"])
        limits.increment.assert_awaited_once()

    @pytest.mark.integration
    def test_submit_completed_synchronously(self, client, stylization, limits):
        stylization.submit.return_value = StylizationTask("req-2", TaskState.COMPLETED,
                                                          result_url="https://cdn/c.png")
        response = client.post("/api/stylize", json={"frameDataUrl": FRAME_DATA_URL})

        assert response.status_code == 200
        assert response.json()["resultUrl"] == "https://cdn/c.png"

    @pytest.mark.integration
    def test_limit_reached(self, client, stylization, limits):
        limits.can_make_call.return_value = False

        response = client.post("/api/stylize", json={"frameDataUrl": FRAME_DATA_URL})

        assert response.status_code == 429
        assert_error_response(response.json(), "RATE_LIMIT_ERROR")
        stylization.submit.assert_not_awaited()
        limits.increment.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.parametrize("frame_data_url", ["garbage", ""])
    def test_bad_data_url(self, client, stylization, limits, frame_data_url):
        response = client.post("/api/stylize", json={"frameDataUrl": frame_data_url})

        assert response.status_code == 400
        assert_error_response(response.json(), "VALIDATION_ERROR")
        stylization.submit.assert_not_awaited()

    @pytest.mark.integration
    def test_provider_failure(self, client, stylization, limits):
        stylization.submit.side_effect = ProviderError("bad key", status=401)

        response = client.post("/api/stylize", json={"frameDataUrl": FRAME_DATA_URL})

        assert response.status_code == 502
        assert_error_response(response.json(), "PROVIDER_ERROR")
        limits.increment.assert_not_awaited()

    @pytest.mark.integration
    def test_failed_on_submit(self, client, stylization, limits):
        stylization.submit.return_value = StylizationTask("req-3", TaskState.FAILED, error_detail="nsfw")

        response = client.post("/api/stylize", json={"frameDataUrl": FRAME_DATA_URL})

        assert response.status_code == 502
        assert response.json()["error"]["message"] == "nsfw"

    @pytest.mark.integration
    def test_poll_result(self, client, stylization):
        stylization.poll.return_value = StylizationTask("req-1", TaskState.PROCESSING, progress=40.0)

        response = client.get("/api/stylize/req-1")

        assert response.status_code == 200
        assert response.json() == {"status": "processing", "progress": 40.0}
        stylization.poll.assert_awaited_once_with("req-1")

    @pytest.mark.integration
    def test_limit_status(self, client, limits):
        response = client.get("/api/limit-status")
        assert response.status_code == 200
        assert response.json() == {"remaining": 99, "limit": 100, "used": 1}
