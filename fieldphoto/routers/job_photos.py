import asyncio
import logging
import time
import uuid
from collections import defaultdict
from datetime import datetime

import pytesseract
from fastapi import APIRouter, Depends, Request
from PIL import UnidentifiedImageError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from fieldphoto.config import settings
from fieldphoto.database import get_db
from fieldphoto.models.project import Project
from fieldphoto.schemas.photo import (
    CategoryView,
    DataUrlUpload,
    ImagePayload,
    MetaRequest,
    MultipartUpload,
    PhotoSubmission,
    PhotoView,
    UploadRequest,
    UploadResponse,
)
from fieldphoto.services import entry_store, reconciler, storage
from fieldphoto.services.photo_template import ordered_template
from fieldphoto.services.serial_ocr import recognize_serial_number
from fieldphoto.services.sharpness import sharpness_score
from fieldphoto.utils.exceptions import (
    AppException,
    PayloadTooLarge,
    UnsupportedMediaType,
    ValidationError,
)
from fieldphoto.utils.response import ok_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/job-photos", tags=["job-photos"])

UNSUPPORTED_MESSAGE = (
    "Unsupported Content-Type. Send multipart/form-data (photo, thumb, jobId, categoryId"
    "[, meter, serialNumber, token, sharpness]) or JSON {jobId, categoryId, dataUrl, "
    "thumbDataUrl[, meter, serialNumber, token, sharpness]}"
)


def _check_size(data: bytes) -> None:
    if len(data) > settings.max_photo_size_bytes:
        raise PayloadTooLarge(f"File exceeds {settings.max_photo_size_bytes} bytes")


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("JSON body must be an object")
    return body


async def _file_field(form, name: str) -> ImagePayload | None:
    value = form.get(name)
    if not isinstance(value, UploadFile):
        return None
    data = await value.read()
    _check_size(data)
    return ImagePayload(data=data, mime=value.content_type or "image/jpeg")


async def _read_upload(request: Request) -> UploadRequest:
    ctype = request.headers.get("content-type", "").lower()

    if "multipart/form-data" in ctype:
        form = await request.form()
        photo = await _file_field(form, "photo")
        thumb = await _file_field(form, "thumb")
        try:
            return MultipartUpload(
                job_id=form.get("jobId"),
                category_id=form.get("categoryId"),
                photo=photo,
                thumb=thumb,
                serial_number=form.get("serialNumber"),
                meter=form.get("meter"),
                token=form.get("token"),
                sharpness=form.get("sharpness"),
            )
        except PydanticValidationError:
            raise ValidationError("photo, thumb, jobId, categoryId required")

    if "application/json" in ctype:
        body = await _json_body(request)
        try:
            return DataUrlUpload.model_validate(body)
        except PydanticValidationError:
            raise ValidationError("jobId, categoryId, dataUrl, thumbDataUrl required")

    peek = (await request.body())[:80].decode("utf-8", errors="replace")
    raise UnsupportedMediaType(UNSUPPORTED_MESSAGE, peek=peek)


async def _store_images(submission: PhotoSubmission) -> tuple[str, str]:
    stamp = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    photo_key = storage.object_key(
        submission.job_id, submission.category_id, stamp, "full",
        storage.ext_from_mime(submission.photo.mime),
    )
    thumb_key = storage.object_key(
        submission.job_id, submission.category_id, stamp, "thumb",
        storage.ext_from_mime(submission.thumb.mime),
    )
    photo_url = await storage.put_bytes(photo_key, submission.photo.data)
    thumb_url = await storage.put_bytes(thumb_key, submission.thumb.data)
    return photo_url, thumb_url


@router.post("/upload")
async def upload_photo(request: Request, db: AsyncSession = Depends(get_db)):
    upload = await _read_upload(request)
    submission = upload.to_submission()
    _check_size(submission.photo.data)
    _check_size(submission.thumb.data)

    photo_url, thumb_url = await _store_images(submission)

    sharpness = submission.sharpness
    if sharpness is None:
        sharpness = await asyncio.to_thread(sharpness_score, submission.thumb.data)

    entry = await entry_store.append(
        db,
        job_id=submission.job_id,
        category_id=submission.category_id,
        url=photo_url,
        thumb_url=thumb_url,
        sharpness=sharpness,
        token=submission.token,
    )
    await reconciler.upsert_from_entry(
        db, entry, serial_number=submission.serial_number, meter=submission.meter
    )

    return UploadResponse(
        entryId=entry.id,
        photoUrl=photo_url,
        thumbUrl=thumb_url,
        categoryId=submission.category_id,
        serialNumber=submission.serial_number,
        meter=submission.meter,
    ).model_dump()


@router.post("/meta")
async def update_meta(request: Request, db: AsyncSession = Depends(get_db)):
    body = await _json_body(request)
    try:
        meta = MetaRequest.model_validate(body)
    except PydanticValidationError:
        raise ValidationError("jobId & categoryId required")

    job_id, category_id = meta.slot()
    await reconciler.apply_meta(db, job_id, category_id, meta.to_update())
    return ok_response()


@router.post("/init")
async def init_job(request: Request):
    body = await _json_body(request)
    if not body.get("jobId"):
        raise ValidationError("jobId required")
    return ok_response()


@router.post("/ocr")
async def recognize_serial(request: Request):
    form = await request.form()
    image = await _file_field(form, "image")
    if image is None:
        raise ValidationError("image required")

    try:
        result = await recognize_serial_number(
            image.data, enable_barcode=form.get("barcode", "1") != "0"
        )
    except UnidentifiedImageError:
        raise ValidationError("image could not be decoded")
    except pytesseract.TesseractNotFoundError:
        logger.error("Tesseract binary not found; serial recognition unavailable")
        raise AppException("OCR engine not available", status_code=503)

    return {"best": result.best, "candidates": result.candidates}


def _epoch_ms(iso: str) -> int:
    return int(datetime.fromisoformat(iso).timestamp() * 1000)


@router.get("/{job_id}")
async def get_job_photos(job_id: str, db: AsyncSession = Depends(get_db)):
    job_id = job_id.strip()
    if not job_id:
        raise ValidationError("jobId required")

    project = await db.get(Project, job_id)
    is_pending = project is not None and (
        project.status == "pending"
        or project.pending_since is not None
        or project.pending_reason is not None
    )

    snapshots = {s.category_id: s for s in await reconciler.list_snapshots(db, job_id)}
    entries_by_cat = defaultdict(list)
    for entry in await entry_store.list_entries(db, job_id):
        entries_by_cat[entry.category_id].append(entry)

    template = ordered_template()
    now_ms = int(time.time() * 1000)
    items: list[CategoryView] = []
    complete = 0

    for tpl in template:
        snap = snapshots.get(tpl.id)
        entries = entries_by_cat.get(tpl.id, [])
        photos = [
            PhotoView(
                id=e.id,
                createdAt=_epoch_ms(e.created_at),
                thumb=e.thumb_url,
                remoteUrl=e.url or None,
                sharpness=e.sharpness or 0,
            )
            for e in entries
        ]

        # legacy rows: a snapshot URL without any history
        if not photos and snap is not None and (snap.thumb_url or snap.url):
            photos.append(PhotoView(
                id=f"remote-{tpl.id}",
                createdAt=now_ms,
                thumb=snap.thumb_url or snap.url or "",
                remoteUrl=snap.url or None,
            ))

        if snap is not None and snap.selected_photo_id:
            selected = snap.selected_photo_id
        elif entries:
            selected = reconciler.select_best(entries)
        else:
            selected = photos[0].id if photos else None

        # legacy fields follow the selected entry when it is in history
        selected_entry = next((e for e in entries if e.id == selected), None)
        if selected_entry is not None:
            photo_url, thumb_url = selected_entry.url or None, selected_entry.thumb_url or None
        else:
            photo_url = snap.url if snap else None
            thumb_url = snap.thumb_url if snap else None

        item = CategoryView(
            id=tpl.id,
            name=tpl.name,
            type=tpl.type,
            requiresSerialNumber=tpl.requires_serial_number,
            requiresCable=tpl.requires_cable,
            photoThumb=thumb_url,
            photo=photo_url,
            photos=photos,
            selectedPhotoId=selected,
            serialNumber=snap.serial_number if snap else None,
            meter=snap.cable_meter if (snap and tpl.requires_cable) else None,
        )
        has_image = bool(item.photos) or bool(item.photoThumb or item.photo)
        if reconciler.is_complete(tpl, has_image, item.serialNumber):
            complete += 1
        items.append(item)

    progress = reconciler.compute_progress(len(template), complete)
    return {
        "items": [i.model_dump() for i in items],
        "status": "pending" if is_pending else "active",
        "uploaded": progress["uploaded"],
        "total": progress["total"],
        "progress": progress,
    }
