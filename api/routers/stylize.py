"""
Doodle stylization endpoints
"""
from pathlib import Path

from fastapi import APIRouter, Depends
import structlog

from api.dependencies import get_limit_service, get_storage_service, get_stylization_client
from api.models.video import (
    LimitStatusResponse,
    StylizeRequest,
    StylizeResultResponse,
    StylizeSubmitResponse,
)
from api.services.limits import DailyLimitService
from api.services.metrics import business_metrics
from api.services.storage import StorageService
from api.services.stylization import StylizationClient, TaskState
from api.utils.error_handlers import ProviderError, RateLimitError
from api.utils.validators import decode_data_url

logger = structlog.get_logger()
router = APIRouter()


@router.post("/stylize", response_model=StylizeSubmitResponse, response_model_exclude_none=True)
async def submit_stylization(
    request: StylizeRequest,
    storage: StorageService = Depends(get_storage_service),
    client: StylizationClient = Depends(get_stylization_client),
    limits: DailyLimitService = Depends(get_limit_service),
) -> StylizeSubmitResponse:
    """
    Upload a frame and submit it for doodle stylization.

    When the provider finishes synchronously the result URL is returned
    right away; otherwise poll GET /stylize/{requestId}.
    """
    if not await limits.can_make_call():
        business_metrics.record_limit_rejection()
        raise RateLimitError(f"Daily stylization limit of {limits.limit} reached")

    mime_type, image = decode_data_url(request.frameDataUrl)
    file_name = Path(request.fileName or "frame.jpg").name
    frame = await storage.put(file_name, image, content_type=mime_type, prefix="frames")

    task = await client.submit(frame.url)
    await limits.increment()

    if task.state is TaskState.FAILED:
        raise ProviderError(
            task.error_detail or "Stylization task failed",
            body={"requestId": task.request_id},
        )

    logger.info("Frame submitted for stylization", request_id=task.request_id,
                state=task.state.value, frame_key=frame.key)
    return StylizeSubmitResponse(
        requestId=task.request_id,
        status=task.state.value,
        frameUrl=frame.url,
        resultUrl=task.result_url if task.state is TaskState.COMPLETED else None,
    )


@router.get("/stylize/{request_id}", response_model=StylizeResultResponse, response_model_exclude_none=True)
async def stylization_result(
    request_id: str,
    client: StylizationClient = Depends(get_stylization_client),
) -> StylizeResultResponse:
    """Current state of a stylization task."""
    task = await client.poll(request_id)
    return StylizeResultResponse(
        status=task.state.value,
        resultUrl=task.result_url,
        error=task.error_detail,
        progress=task.progress,
    )


@router.get("/limit-status", response_model=LimitStatusResponse)
async def limit_status(limits: DailyLimitService = Depends(get_limit_service)) -> LimitStatusResponse:
    """Remaining stylization calls for today. Reports the full quota if the counter is unreachable."""
    return LimitStatusResponse(**await limits.status())
