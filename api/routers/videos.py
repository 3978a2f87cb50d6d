"""
Upload, job dispatch, processing and status stream endpoints
"""
import asyncio
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse, StreamingResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.dependencies import get_db, get_queue_service, get_status_notifier, get_storage_service
from api.models.video import (
    GenerateRequest,
    GenerateResponse,
    ProcessRequest,
    ProcessResponse,
    UploadResponse,
    Video,
    VideoStatus,
)
from api.services.metrics import business_metrics
from api.services.queue import QueueService
from api.services.status_notifier import StatusNotifier
from api.services.storage import StorageService
from api.utils.error_handlers import LivePhotoError, ValidationError
from api.utils.validators import validate_upload
from worker.base import BaseWorkerTask
from worker.tasks import run_video_pipeline
from worker.utils.media import format_file_size

logger = structlog.get_logger()
router = APIRouter()


async def _get_video_or_404(db: AsyncSession, video_id: str) -> Video:
    try:
        uid = UUID(video_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Video not found")
    video = await db.get(Video, uid)
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")
    return video


@router.post("/upload", response_model=UploadResponse)
async def upload_video(
    video: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
) -> UploadResponse:
    """
    Store an uploaded video and create its record.

    The aspect ratio is detected later, during processing.
    """
    try:
        if video is None:
            raise ValidationError("No file provided", field="video")
        # Size and type are checked before the body is read into memory
        file_name, content_type = validate_upload(video.filename, video.content_type, video.size)
        data = await video.read()
        if video.size is None:
            validate_upload(file_name, content_type, len(data))
    except ValidationError:
        business_metrics.record_upload("rejected")
        raise

    blob = await storage.put(file_name, data, content_type=content_type)
    record = Video(
        original_url=blob.url,
        aspect_ratio="auto",
        status=VideoStatus.UPLOADED.value,
        video_metadata={
            "storageKey": blob.key,
            "fileName": file_name,
            "mimeType": content_type,
            "size": blob.size,
        },
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)

    business_metrics.record_upload("accepted", blob.size)
    logger.info("Video uploaded", video_id=str(record.id), file_name=file_name,
                size=format_file_size(blob.size), content_type=content_type)
    return UploadResponse(url=blob.url, downloadUrl=blob.download_url, videoId=str(record.id))


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    request: GenerateRequest,
    db: AsyncSession = Depends(get_db),
    queue: QueueService = Depends(get_queue_service),
) -> GenerateResponse:
    """
    Mark a video as processing and dispatch it.

    Two concurrent calls for the same video may both dispatch; the record
    is not locked.
    """
    video = await _get_video_or_404(db, request.videoId)
    video.status = VideoStatus.PROCESSING.value
    await db.commit()

    await queue.enqueue_video(str(video.id), video.original_url)
    return GenerateResponse(status="queued", videoId=str(video.id))


@router.post("/process", response_model=ProcessResponse)
async def process(request: Request) -> ProcessResponse:
    """Run the processing pipeline for one video (direct dispatch target)."""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")

    try:
        body = ProcessRequest.model_validate(payload)
    except PydanticValidationError as e:
        video_id = payload.get("videoId") if isinstance(payload, dict) else None
        if video_id:
            await BaseWorkerTask().update_video_status(str(video_id), VideoStatus.FAILED)
        raise ValidationError(f"Invalid process request: {e.errors()[0]['msg']}")

    try:
        result = await run_video_pipeline(body.videoId, body.videoUrl)
    except LivePhotoError:
        raise
    except Exception as e:
        logger.exception("Processing crashed", video_id=body.videoId)
        raise LivePhotoError(f"Processing failed: {e}", code="PROCESSING_ERROR")

    return ProcessResponse(
        status="success",
        coverUrl=result["coverUrl"],
        processedVideoUrl=result["processedVideoUrl"],
        processingTimeMs=result["processingTimeMs"],
    )


@router.get("/status/{video_id}")
async def video_status(
    video_id: str,
    notifier: StatusNotifier = Depends(get_status_notifier),
) -> StreamingResponse:
    """Stream status updates as server-sent events until a terminal state."""
    stop = asyncio.Event()

    async def event_generator() -> AsyncIterator[str]:
        try:
            async for frame in notifier.stream(video_id, stop):
                yield frame
        finally:
            # Disconnects cancel the generator; the stop signal ends sampling
            stop.set()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.get("/files/{path:path}")
async def get_file(
    path: str,
    download: bool = Query(False),
    storage: StorageService = Depends(get_storage_service),
) -> FileResponse:
    """Serve a blob from local storage."""
    try:
        full_path = storage.local_path(path)
    except ValueError:
        raise HTTPException(status_code=404, detail="File not found")
    if full_path is None or not full_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(
        full_path,
        filename=full_path.name,
        content_disposition_type="attachment" if download else "inline",
    )
