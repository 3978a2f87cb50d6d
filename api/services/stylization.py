"""
Client for the Wavespeed image-edit API that turns a frame into a doodle

Tasks are asynchronous on the provider side: `submit` creates one and
`poll` reads its current state. Provider responses come in a few shapes
(enveloped under "data" or flat, with several spellings for ids, outputs
and status), so every response goes through `parse_task_response`, which
either yields a normalized `StylizationTask` or fails loudly.
"""
import asyncio
import base64
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import httpx
import structlog

from api.config import settings
from api.services.metrics import business_metrics
from api.utils.error_handlers import PollTimeoutError, ProviderError, UnknownShapeError, ValidationError

logger = structlog.get_logger()

DOODLE_PROMPT = (
    "Hand-drawn anime doodle–style colored pencil illustration with expressive sketchy line art "
    "and playful uneven pencil outlines, combined with light watercolor and marker-like wash "
    "textures. Bright pastel colors, high-contrast and lively tones with natural saturation. "
    "Visible pencil strokes layered with loose graffiti-like color fills. Warm and friendly tone, "
    "anime-inspired semi-chibi proportions. Simple facial features with stylized anime dot eyes, "
    "small exaggerated smiles. Flat yet detailed coloring, minimal shadows, bold highlights and "
    "outline accents. Anime doodle storyboard feel, energetic and whimsical atmosphere, casual "
    "sketchbook / graffiti anime style, high clarity, no realism, no photo texture."
)

EDIT_MODEL_PATH = "/google/nano-banana-pro/edit"


class TaskState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)


STATE_SYNONYMS: Dict[str, TaskState] = {
    "succeeded": TaskState.COMPLETED,
    "success": TaskState.COMPLETED,
    "completed": TaskState.COMPLETED,
    "error": TaskState.FAILED,
    "failed": TaskState.FAILED,
    "created": TaskState.PENDING,
    "queued": TaskState.PENDING,
    "pending": TaskState.PENDING,
    "running": TaskState.PROCESSING,
    "processing": TaskState.PROCESSING,
}

ID_FIELDS: Tuple[str, ...] = ("id", "request_id", "requestId")
OUTPUT_FIELDS: Tuple[str, ...] = ("outputs", "output", "result_url")
STATUS_FIELDS: Tuple[str, ...] = ("status", "state")


@dataclass(frozen=True)
class StylizationTask:
    request_id: str
    state: TaskState
    result_url: Optional[str] = None
    error_detail: Optional[str] = None
    progress: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


def _enveloped(payload: Any) -> Optional[Dict[str, Any]]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return None


def _flat(payload: Any) -> Optional[Dict[str, Any]]:
    if isinstance(payload, dict) and any(
        key in payload for key in ID_FIELDS + OUTPUT_FIELDS + STATUS_FIELDS
    ):
        return payload
    return None


# Known response shapes, tried in order
RESPONSE_SHAPES: Tuple[Callable[[Any], Optional[Dict[str, Any]]], ...] = (_enveloped, _flat)


def _first(body: Dict[str, Any], fields: Tuple[str, ...]) -> Any:
    for name in fields:
        value = body.get(name)
        if value not in (None, "", []):
            return value
    return None


def _result_url(body: Dict[str, Any]) -> Optional[str]:
    output = _first(body, OUTPUT_FIELDS)
    if isinstance(output, list):
        output = output[0] if output else None
    if isinstance(output, dict):
        output = output.get("url")
    return output if isinstance(output, str) and output else None


def _state(body: Dict[str, Any], result_url: Optional[str], default: TaskState) -> TaskState:
    token = _first(body, STATUS_FIELDS)
    if token is None:
        return TaskState.COMPLETED if result_url else default
    try:
        return STATE_SYNONYMS[str(token).strip().lower()]
    except KeyError:
        raise UnknownShapeError(f"Unrecognized task status '{token}'", body=body)


def parse_task_response(
    payload: Any,
    request_id: Optional[str] = None,
    default_state: TaskState = TaskState.PROCESSING,
) -> StylizationTask:
    """
    Normalize a provider response into a StylizationTask.

    `request_id` is the id the caller already knows (when polling); a
    submit response must carry its own id.
    """
    if isinstance(payload, dict) and isinstance(payload.get("code"), int) and payload["code"] >= 400:
        raise ProviderError(
            f"Provider reported error {payload['code']}: {payload.get('message', '')}",
            status=payload["code"],
            body=payload,
        )

    for shape in RESPONSE_SHAPES:
        body = shape(payload)
        if body is not None:
            break
    else:
        raise UnknownShapeError("Provider response matched no known shape", body=payload)

    task_id = _first(body, ID_FIELDS) or request_id
    if not task_id:
        raise ProviderError("Provider response carried no request id", body=payload)

    result_url = _result_url(body)
    state = _state(body, result_url, default_state)
    error = body.get("error")
    progress = body.get("progress")

    return StylizationTask(
        request_id=str(task_id),
        state=state,
        result_url=result_url,
        error_detail=str(error) if error else None,
        progress=float(progress) if isinstance(progress, (int, float)) else None,
    )


def image_reference(image: Union[bytes, str]) -> str:
    """The provider takes image URLs; raw bytes go inline as a JPEG data URL."""
    if isinstance(image, (bytes, bytearray)):
        if not image:
            raise ValidationError("Image bytes are empty", field="image")
        return "data:image/jpeg;base64," + base64.b64encode(bytes(image)).decode("ascii")
    return image


class StylizationClient:
    """
    Async client for the stylization provider.

    Submission is never retried. Callers own the poll budget through
    `await_result`.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        resolution: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.WAVESPEED_API_KEY
        self.base_url = (base_url or settings.WAVESPEED_API_BASE).rstrip("/")
        self.resolution = resolution or settings.STYLIZE_RESOLUTION
        self.timeout = timeout or settings.WAVESPEED_TIMEOUT_SECONDS
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        if not self.api_key:
            raise ProviderError("WAVESPEED_API_KEY is not configured")

        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = await self._http().request(method, url, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(f"Request to stylization provider failed: {e}")

        if not response.is_success:
            raise ProviderError(
                f"Stylization provider returned {response.status_code}: {response.text[:500]}",
                status=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError:
            raise ProviderError(
                "Stylization provider returned malformed JSON",
                status=response.status_code,
                body=response.text,
            )

    async def submit(self, image: Union[bytes, str]) -> StylizationTask:
        """
        Create a stylization task.

        `image` is an image URL, or raw JPEG bytes sent inline as a data URL.
        """
        payload = {
            "enable_base64_output": False,
            "enable_sync_mode": False,
            "images": [image_reference(image)],
            "output_format": "png",
            "prompt": DOODLE_PROMPT,
            "resolution": self.resolution,
        }
        try:
            data = await self._request("POST", EDIT_MODEL_PATH, json=payload)
            task = parse_task_response(data, default_state=TaskState.PENDING)
        except ProviderError:
            business_metrics.record_stylization("submit", "error")
            raise

        business_metrics.record_stylization("submit", task.state.value)
        logger.info("Stylization submitted", request_id=task.request_id, state=task.state.value)
        return task

    async def poll(self, request_id: str) -> StylizationTask:
        """Read the current state of a task once."""
        try:
            data = await self._request("GET", f"/predictions/{request_id}/result")
            task = parse_task_response(data, request_id=request_id)
        except ProviderError:
            business_metrics.record_stylization("poll", "error")
            raise

        business_metrics.record_stylization("poll", task.state.value)
        logger.debug("Stylization polled", request_id=request_id, state=task.state.value,
                     progress=task.progress)
        return task

    async def await_result(
        self,
        request_id: str,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
    ) -> StylizationTask:
        """
        Poll until the task is terminal.

        At most `max_attempts` polls are made with `interval_ms` between
        them, so the wait is bounded by roughly max_attempts * interval.
        """
        max_attempts = max_attempts or settings.STYLIZE_POLL_MAX_ATTEMPTS
        interval_ms = settings.STYLIZE_POLL_INTERVAL_MS if interval_ms is None else interval_ms
        started = time.monotonic()

        for attempt in range(1, max_attempts + 1):
            task = await self.poll(request_id)
            if task.is_terminal:
                business_metrics.record_stylization_wait(time.monotonic() - started)
                return task
            if attempt < max_attempts:
                await self._sleep(interval_ms / 1000)

        logger.warning("Stylization did not finish", request_id=request_id, attempts=max_attempts)
        raise PollTimeoutError(
            f"Stylization {request_id} still running after {max_attempts} polls",
            request_id=request_id,
            attempts=max_attempts,
        )

    async def stylize(self, image: Union[bytes, str]) -> StylizationTask:
        """Submit, then wait for a terminal result unless the submit already is one."""
        task = await self.submit(image)
        if task.is_terminal:
            return task
        return await self.await_result(task.request_id)
