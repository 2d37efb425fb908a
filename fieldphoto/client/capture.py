"""Turns a captured photo into the upload job the server expects."""
import io
import json
import logging
import time

from PIL import Image, ImageOps

from fieldphoto.client.queue import QueuedUpload, form_parts
from fieldphoto.services.sharpness import sharpness_score
from fieldphoto.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

UPLOAD_ENDPOINT = "/api/job-photos/upload"
META_ENDPOINT = "/api/job-photos/meta"
THUMB_MAX_WIDTH = 640
THUMB_QUALITY = 80


def make_thumbnail(data: bytes, max_width: int = THUMB_MAX_WIDTH, quality: int = THUMB_QUALITY) -> bytes:
    """Downscale to ``max_width`` keeping aspect ratio; always returns JPEG bytes."""
    image = ImageOps.exif_transpose(Image.open(io.BytesIO(data))).convert("RGB")
    if image.width > max_width:
        height = max(1, round(image.height * max_width / image.width))
        image = image.resize((max_width, height), Image.LANCZOS)
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=quality)
    return out.getvalue()


def build_photo_upload(
    job_id: str,
    category_id: str,
    photo: bytes,
    *,
    mime: str = "image/jpeg",
    serial_number: str | None = None,
    meter: float | None = None,
    token: str | None = None,
) -> QueuedUpload:
    job_id, category_id = (job_id or "").strip(), str(category_id or "").strip()
    if not job_id or not category_id:
        raise ValidationError("jobId and categoryId are required")
    if not photo:
        raise ValidationError("photo is empty")

    thumb = make_thumbnail(photo)
    sharpness = sharpness_score(thumb)
    stamp = int(time.time() * 1000)

    fields = {
        "jobId": job_id,
        "categoryId": category_id,
        "serialNumber": serial_number,
        "meter": meter,
        "token": token,
        "sharpness": sharpness,
    }
    files = {
        "photo": (f"{category_id}-{stamp}.jpg", photo, mime),
        "thumb": (f"{category_id}-{stamp}-thumb.jpg", thumb, "image/jpeg"),
    }
    logger.debug("Built upload for %s/%s (sharpness=%s)", job_id, category_id, sharpness)
    return QueuedUpload(
        endpoint=UPLOAD_ENDPOINT,
        parts=form_parts(fields, files),
        meta={"jobId": job_id, "categoryId": category_id, "token": token},
    )


def build_meta_update(job_id: str, category_id: str, **changes) -> QueuedUpload:
    """JSON metadata update; only the keyword arguments given are sent."""
    if not (job_id or "").strip() or not str(category_id or "").strip():
        raise ValidationError("jobId and categoryId are required")
    aliases = {
        "serial_number": "serialNumber",
        "meter": "meter",
        "ocr_status": "ocrStatus",
        "selected_photo_id": "selectedPhotoId",
    }
    unknown = set(changes) - set(aliases)
    if unknown:
        raise ValidationError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")

    payload = {"jobId": job_id.strip(), "categoryId": str(category_id).strip()}
    payload.update({aliases[k]: v for k, v in changes.items()})
    return QueuedUpload(
        endpoint=META_ENDPOINT,
        headers={"Content-Type": "application/json"},
        body_encoding="raw",
        body=json.dumps(payload).encode("utf-8"),
        meta={"jobId": payload["jobId"], "categoryId": payload["categoryId"], "kind": "meta"},
    )
