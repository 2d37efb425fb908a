"""Object storage for uploaded photos, served back under ``settings.public_base_url``."""
import asyncio
import logging
import os
from urllib.parse import quote

from fieldphoto.config import settings

logger = logging.getLogger(__name__)


def ext_from_mime(mime: str | None) -> str:
    m = (mime or "").lower()
    if "png" in m:
        return "png"
    if "webp" in m:
        return "webp"
    if "gif" in m:
        return "gif"
    if "bmp" in m:
        return "bmp"
    return "jpg"


def _segment(value: str) -> str:
    s = quote(str(value), safe="")
    return s.replace(".", "%2E") if s in (".", "..") else s


def object_key(job_id: str, category_id: str, stamp: str, kind: str, ext: str) -> str:
    base = f"{_segment(job_id)}/{_segment(category_id)}/{stamp}"
    return f"{base}-thumb.{ext}" if kind == "thumb" else f"{base}.{ext}"


def public_url(key: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/{settings.storage_bucket}/{quote(key)}"


def _write(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


async def put_bytes(key: str, data: bytes) -> str:
    path = os.path.join(settings.storage_dir, settings.storage_bucket, key)
    await asyncio.to_thread(_write, path, data)
    logger.debug("Stored %d bytes at %s", len(data), path)
    return public_url(key)
