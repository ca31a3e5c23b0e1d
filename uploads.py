"""Product image uploads stored on local disk under UPLOADS_DIR."""

import re
import uuid
from pathlib import Path
from typing import Optional

import anyio
from fastapi import UploadFile

from errors import NotFoundError, ValidationError
from logging_config import get_logger
from settings import Settings

logger = get_logger(__name__)

ALLOWED_IMAGE_TYPES = re.compile(r"^image/(jpe?g|png|webp|gif)$", re.IGNORECASE)

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

_LOCAL_URL = re.compile(r"^(?:https?://[^/]+)?/?uploads/([^/?#]+)$")
_SAFE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")

CHUNK_SIZE = 64 * 1024


def _extension(content_type: str, filename: Optional[str]) -> str:
    ext = EXTENSIONS.get(content_type.lower())
    if ext:
        return ext
    suffix = Path(filename or "").suffix.lstrip(".").lower()
    return suffix if _SAFE_NAME.match(suffix or "") else "bin"


async def store_image(upload: UploadFile, settings: Settings) -> str:
    """Validate and persist an uploaded image, returning its stored filename.

    Rejects anything that is not jpg/png/webp/gif or that exceeds the size
    limit, before the caller touches the database.
    """
    content_type = (upload.content_type or "").strip()
    if not ALLOWED_IMAGE_TYPES.match(content_type):
        raise ValidationError("Only images are allowed (jpg, png, webp, gif)")

    data = bytearray()
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        data.extend(chunk)
        if len(data) > settings.max_upload_bytes:
            raise ValidationError("Image is too large")
    if not data:
        raise ValidationError("Empty image upload")

    filename = f"{uuid.uuid4().hex}.{_extension(content_type, upload.filename)}"
    directory = anyio.Path(settings.uploads_dir)
    await directory.mkdir(parents=True, exist_ok=True)
    await (directory / filename).write_bytes(bytes(data))
    logger.info("image_stored", filename=filename, size=len(data))
    return filename


def public_image_url(base_url: str, filename: str) -> str:
    return f"{str(base_url).rstrip('/')}/uploads/{filename}"


def resolve_upload(filename: str, settings: Settings) -> Path:
    """Map a stored filename to its path, refusing anything outside UPLOADS_DIR."""
    if not _SAFE_NAME.match(filename or "") or filename.startswith("."):
        raise NotFoundError("File not found")
    root = Path(settings.uploads_dir).resolve()
    path = (root / filename).resolve()
    if path.parent != root or not path.is_file():
        raise NotFoundError("File not found")
    return path


async def delete_local_image(url: str, settings: Settings) -> bool:
    """Remove the file behind a /uploads/ URL. Foreign URLs are left alone."""
    match = _LOCAL_URL.match(url or "")
    if not match:
        return False
    try:
        path = resolve_upload(match.group(1), settings)
    except NotFoundError:
        return False
    await anyio.Path(path).unlink(missing_ok=True)
    logger.info("image_deleted", filename=path.name)
    return True
