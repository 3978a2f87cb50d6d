"""
Error taxonomy and FastAPI exception handlers
"""
import traceback
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
import structlog

logger = structlog.get_logger()


class LivePhotoError(Exception):
    """Base exception for all pipeline and API errors."""

    code = "LIVEPHOTO_ERROR"
    status_code = 500
    user_message = "Something went wrong. Please try again."
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(LivePhotoError):
    """Bad request shape, size or type."""

    code = "VALIDATION_ERROR"
    status_code = 400
    user_message = "The request was invalid. Check the file and try again."

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class StorageError(LivePhotoError):
    """Blob storage failures."""

    code = "STORAGE_ERROR"
    user_message = "The file could not be stored. Please try again."
    retryable = True

    def __init__(self, message: str, backend: Optional[str] = None):
        self.backend = backend
        super().__init__(message)


class RateLimitError(LivePhotoError):
    """Daily stylization quota exhausted."""

    code = "RATE_LIMIT_ERROR"
    status_code = 429
    user_message = "Today's stylization limit has been reached. Come back tomorrow."


# Frame extraction

class UnsupportedFormatError(LivePhotoError):
    """Input needs decoding this runtime cannot do (e.g. HEIC)."""

    code = "UNSUPPORTED_FORMAT"
    status_code = 415
    user_message = "This format is not supported. Please convert it to MP4 or MOV first."


class LoadTimeoutError(LivePhotoError):
    """The decoder did not produce metadata within the load timeout."""

    code = "LOAD_TIMEOUT"
    status_code = 504
    user_message = "Loading the video took too long. Retrying may help."
    retryable = True


class DecodeError(LivePhotoError):
    """The decoder rejected the input or the first frame could not be read."""

    code = "DECODE_ERROR"
    status_code = 422
    user_message = "The video could not be read. It may be damaged."


# Stylization provider

class ProviderError(LivePhotoError):
    """Non-2xx, malformed or incomplete response from the stylization provider."""

    code = "PROVIDER_ERROR"
    status_code = 502
    user_message = "The stylization service returned an error."

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        self.provider_status = status
        self.body = body
        super().__init__(message)


class UnknownShapeError(ProviderError):
    """Provider response matched none of the known shapes."""

    code = "PROVIDER_UNKNOWN_SHAPE"


class PollTimeoutError(LivePhotoError):
    """Stylization task stayed non-terminal for every allowed poll."""

    code = "POLL_TIMEOUT"
    status_code = 504
    user_message = "Stylization is taking longer than expected. Retrying may help."
    retryable = True

    def __init__(self, message: str, request_id: Optional[str] = None, attempts: int = 0):
        self.request_id = request_id
        self.attempts = attempts
        super().__init__(message)


# Composition

class CompositionError(LivePhotoError):
    """Any stage failure while composing the output video."""

    code = "COMPOSITION_ERROR"
    user_message = "The video could not be composed."


class CoverLoadError(CompositionError):
    code = "COVER_LOAD_ERROR"
    user_message = "The cover image could not be loaded."


class SourceLoadError(CompositionError):
    code = "SOURCE_LOAD_ERROR"
    user_message = "The source video could not be opened for composition."


class EncodingError(CompositionError):
    code = "ENCODING_ERROR"
    user_message = "The composed video could not be encoded on this system."


def _error_body(exc: LivePhotoError, path: str) -> Dict[str, Any]:
    return {
        "error": {
            "code": exc.code,
            "message": exc.message,
            "userMessage": exc.user_message,
            "retryable": exc.retryable,
            "type": type(exc).__name__,
            "path": path,
        }
    }


async def livephoto_exception_handler(request: Request, exc: LivePhotoError):
    """Render pipeline errors."""
    logger.error(
        "Request failed",
        error_code=exc.code,
        error_message=exc.message,
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc, str(request.url.path)))


async def validation_exception_handler(request: Request, exc: Exception):
    """Handle request body validation failures."""
    logger.warning(
        "Validation error",
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Input validation failed",
                "details": str(exc),
                "path": str(request.url.path),
            }
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTP exceptions keep the `error` envelope the pipeline errors use."""
    logger.warning(
        "HTTP error",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": f"HTTP_{exc.status_code}",
                "message": exc.detail,
                "status_code": exc.status_code,
                "path": str(request.url.path),
            }
        },
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    from api.config import settings

    tb = traceback.format_exc()
    logger.error(
        "Unhandled exception",
        exc_type=type(exc).__name__,
        exc_message=str(exc),
        traceback=tb,
        path=request.url.path,
        method=request.method,
    )

    message = str(exc) if settings.DEBUG else "An internal error occurred"
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": message,
                "type": type(exc).__name__,
                "path": str(request.url.path),
                "details": tb if settings.DEBUG else None,
            }
        },
    )
