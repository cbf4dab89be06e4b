"""Local blob storage for profile and event images."""

from __future__ import annotations

import logging
import secrets
from pathlib import Path, PurePath

from .config import settings
from .errors import ValidationError
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

AVATARS = "avatars"
EVENT_IMAGES = "event-images"


def _size_label(limit: int) -> str:
    if limit < 1024 * 1024:
        return f"{limit // 1024}KB"
    return f"{limit // (1024 * 1024)}MB"


def validate_image(*, content_type: str | None, size: int, max_bytes: int) -> None:
    """Reject non-image uploads and anything over ``max_bytes``."""
    if not (content_type or "").lower().startswith("image/"):
        raise ValidationError("File must be an image")
    if size <= 0:
        raise ValidationError("No file provided")
    if size > max_bytes:
        raise ValidationError(f"File size must be less than {_size_label(max_bytes)}")


def _extension(filename: str | None, content_type: str) -> str:
    suffix = PurePath(filename or "").suffix.lstrip(".").lower()
    if suffix and suffix.isalnum():
        return suffix
    return content_type.split("/", 1)[1].split(";", 1)[0].strip() or "bin"


def _timestamp_ms() -> int:
    return int(utcnow().timestamp() * 1000)


def save_image(
    *,
    bucket: str,
    data: bytes,
    content_type: str | None,
    filename: str | None,
    max_bytes: int,
    prefix: str | None = None,
    uploads_dir: Path | None = None,
) -> str:
    """Store an image and return its public URL."""
    validate_image(content_type=content_type, size=len(data), max_bytes=max_bytes)
    ext = _extension(filename, content_type or "")
    stem = prefix or secrets.token_hex(4)
    generated = f"{stem}-{_timestamp_ms()}.{ext}"

    target_dir = (uploads_dir or settings.uploads_dir) / bucket
    target_dir.mkdir(parents=True, exist_ok=True)
    (target_dir / generated).write_bytes(data)
    logger.info("Stored %s upload %s (%d bytes)", bucket, generated, len(data))
    return f"{settings.media_url_prefix.rstrip('/')}/{bucket}/{generated}"


def save_avatar(
    *, user_id: str, data: bytes, content_type: str | None, filename: str | None
) -> str:
    return save_image(
        bucket=AVATARS,
        data=data,
        content_type=content_type,
        filename=filename,
        max_bytes=settings.max_avatar_bytes,
        prefix=user_id,
    )


def save_event_image(
    *, data: bytes, content_type: str | None, filename: str | None
) -> str:
    return save_image(
        bucket=EVENT_IMAGES,
        data=data,
        content_type=content_type,
        filename=filename,
        max_bytes=settings.max_event_image_bytes,
    )
