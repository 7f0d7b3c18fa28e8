import os
import uuid
import asyncio
import logging
from io import BytesIO

import aiofiles
from PIL import Image, UnidentifiedImageError
from fastapi import UploadFile

from app.config import settings
from app.exceptions import LimitExceeded, ValidationError

logger = logging.getLogger(__name__)

# ------------------------------
# Constants
# ------------------------------
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
ALLOWED_EXTENSIONS = IMAGE_EXTENSIONS | {"pdf", "doc", "docx", "txt", "zip", "mp4", "mp3", "mov", "svg", "ai", "psd"}
CHUNK_SIZE = 1024 * 1024


# ------------------------------
# Helper Functions
# ------------------------------
def _get_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def _image_size(content: bytes) -> tuple[int | None, int | None]:
    try:
        with Image.open(BytesIO(content)) as img:
            return img.width, img.height
    except (UnidentifiedImageError, OSError):
        return None, None


def _get_folder_path(folder: str) -> str:
    folder_path = os.path.join(settings.MEDIA_DIR, folder)
    os.makedirs(folder_path, exist_ok=True)
    return folder_path


def _get_file_url(public_id: str) -> str:
    base = settings.BASE_URL.rstrip("/")
    media_root = settings.MEDIA_ROOT.strip("/")
    return f"{base}/{media_root}/{public_id}"


def public_id_from_url(file_url: str) -> str | None:
    base = f"{settings.BASE_URL.rstrip('/')}/{settings.MEDIA_ROOT.strip('/')}/"
    if not file_url or not file_url.startswith(base):
        return None
    return file_url[len(base):]


def _safe_path(public_id: str) -> str | None:
    media_dir = os.path.abspath(settings.MEDIA_DIR)
    abs_path = os.path.abspath(os.path.join(media_dir, public_id))
    if os.path.commonpath([media_dir, abs_path]) != media_dir:
        return None
    return abs_path


# ------------------------------
# Object storage
# ------------------------------
async def save_upload(file: UploadFile, folder: str = "uploads", *, max_size_mb: int | None = None) -> dict:
    """
    Store an uploaded file under ``MEDIA_DIR/<folder>``.

    Returns ``{url, public_id, width, height, bytes}``; width and height are
    ``None`` for non-image files.
    """
    ext = _get_extension(file.filename or "")
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"Invalid file type: {ext or 'unknown'}",
            errors=[{"field": "file", "message": "unsupported file type"}],
        )

    limit = (max_size_mb or settings.MAX_UPLOAD_MB) * 1024 * 1024
    content = bytearray()
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        content.extend(chunk)
        if len(content) > limit:
            raise LimitExceeded("File size exceeds the allowed limit")

    width = height = None
    if ext in IMAGE_EXTENSIONS:
        loop = asyncio.get_running_loop()
        width, height = await loop.run_in_executor(None, _image_size, bytes(content))

    public_id = f"{folder.strip('/')}/{uuid.uuid4().hex}.{ext}"
    async with aiofiles.open(os.path.join(_get_folder_path(folder), os.path.basename(public_id)), "wb") as f:
        await f.write(content)

    logger.info("Stored %s (%d bytes)", public_id, len(content))
    return {
        "url": _get_file_url(public_id),
        "public_id": public_id,
        "width": width,
        "height": height,
        "bytes": len(content),
    }


async def delete_upload(public_id: str) -> bool:
    if not public_id:
        return False
    abs_path = _safe_path(public_id)
    if abs_path is None or not os.path.isfile(abs_path):
        return False
    try:
        os.remove(abs_path)
    except OSError as e:
        logger.warning("Failed to delete %s: %s", abs_path, e)
        return False
    return True
