"""
Input validation utilities
"""
import base64
import binascii
from pathlib import Path
from typing import Optional, Tuple

from api.config import settings
from api.utils.error_handlers import ValidationError
from worker.utils.media import HEIC_EXTENSIONS

# iOS Live Photos arrive as HEIC stills or MOV clips; the rest are plain videos
ALLOWED_UPLOAD_TYPES = {
    "video/mp4",
    "video/quicktime",
    "video/webm",
    "image/heic",
    "image/heif",
    # Some browsers send HEIC as a generic binary
    "application/octet-stream",
}


def validate_upload(file_name: Optional[str], content_type: Optional[str],
                    size: Optional[int]) -> Tuple[str, str]:
    """
    Check an uploaded file's size and declared type.

    An unknown size (None) skips the size checks; callers check again once
    the body has been read.

    Returns:
        (file_name, content_type) with defaults filled in
    """
    if not file_name:
        raise ValidationError("No file provided", field="video")

    if size is not None and size <= 0:
        raise ValidationError("Uploaded file is empty", field="video")

    if size is not None and size > settings.MAX_UPLOAD_SIZE:
        max_mb = settings.MAX_UPLOAD_SIZE // (1024 * 1024)
        raise ValidationError(f"File too large. Maximum size is {max_mb}MB", field="video")

    content_type = (content_type or "application/octet-stream").split(";", 1)[0].strip().lower()
    is_heic = Path(file_name).suffix.lower() in HEIC_EXTENSIONS
    if content_type not in ALLOWED_UPLOAD_TYPES and not is_heic:
        raise ValidationError(
            "Invalid file type. Supported: MP4, MOV, WebM, HEIC (iOS Live Photos)",
            field="video",
        )

    return file_name, content_type


def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Split a `data:<mime>;base64,<payload>` URL.

    Returns:
        (mime_type, decoded bytes)
    """
    header, sep, payload = data_url.partition(",")
    if not sep or not payload:
        raise ValidationError("Invalid frameDataUrl format", field="frameDataUrl")

    mime_type = "image/jpeg"
    if header.startswith("data:"):
        declared = header[5:].split(";", 1)[0]
        mime_type = declared or mime_type

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("frameDataUrl is not valid base64", field="frameDataUrl")

    if not data:
        raise ValidationError("frameDataUrl is empty", field="frameDataUrl")
    return mime_type, data
