import base64
import binascii
import json
import math
import re
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, Field

from fieldphoto.services.reconciler import MetaUpdate
from fieldphoto.utils.exceptions import ValidationError

DATA_URL_RE = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)

Scalar = str | int | float | None


def parse_number(value: Any, decimal_comma: bool = False) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = str(value).strip()
    if decimal_comma:
        text = text.replace(",", ".", 1)
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _text(value: Scalar) -> str:
    return "" if value is None else str(value).strip()


def _optional_text(value: Scalar) -> str | None:
    return None if value is None else str(value)


class ImagePayload(BaseModel):
    data: bytes
    mime: str = "image/jpeg"


class PhotoSubmission(BaseModel):
    """Normalized upload, whichever wire format it arrived in."""

    job_id: str
    category_id: str
    photo: ImagePayload
    thumb: ImagePayload
    serial_number: str | None = None
    meter: float | None = None
    token: str | None = None
    sharpness: float | None = None


def data_url_to_payload(data_url: str) -> ImagePayload:
    m = DATA_URL_RE.match(data_url or "")
    if not m:
        raise ValidationError("Invalid dataUrl")
    try:
        data = base64.b64decode(m.group(2), validate=False)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid dataUrl")
    return ImagePayload(data=data, mime=m.group(1))


class MultipartUpload(BaseModel):
    kind: Literal["multipart"] = "multipart"
    job_id: Scalar = None
    category_id: Scalar = None
    photo: ImagePayload | None = None
    thumb: ImagePayload | None = None
    serial_number: Scalar = None
    meter: Scalar = None
    token: Scalar = None
    sharpness: Scalar = None

    def to_submission(self) -> PhotoSubmission:
        job_id, category_id = _text(self.job_id), _text(self.category_id)
        if not job_id or not category_id or self.photo is None or self.thumb is None:
            raise ValidationError("photo, thumb, jobId, categoryId required")
        return PhotoSubmission(
            job_id=job_id,
            category_id=category_id,
            photo=self.photo,
            thumb=self.thumb,
            serial_number=_optional_text(self.serial_number),
            meter=parse_number(self.meter),
            token=_optional_text(self.token) or None,
            sharpness=parse_number(self.sharpness),
        )


class DataUrlUpload(BaseModel):
    kind: Literal["json"] = "json"
    job_id: Scalar = Field(None, validation_alias=AliasChoices("jobId", "j"))
    category_id: Scalar = Field(None, validation_alias=AliasChoices("categoryId", "c"))
    data_url: str | None = Field(None, validation_alias="dataUrl")
    thumb_data_url: str | None = Field(None, validation_alias="thumbDataUrl")
    serial_number: Scalar = Field(None, validation_alias="serialNumber")
    meter: Scalar = None
    token: Scalar = None
    sharpness: Scalar = None

    def to_submission(self) -> PhotoSubmission:
        job_id, category_id = _text(self.job_id), _text(self.category_id)
        if not job_id or not category_id or not self.data_url or not self.thumb_data_url:
            raise ValidationError("jobId, categoryId, dataUrl, thumbDataUrl required")
        return PhotoSubmission(
            job_id=job_id,
            category_id=category_id,
            photo=data_url_to_payload(self.data_url),
            thumb=data_url_to_payload(self.thumb_data_url),
            serial_number=_optional_text(self.serial_number),
            meter=parse_number(self.meter),
            token=_optional_text(self.token) or None,
            sharpness=parse_number(self.sharpness),
        )


UploadRequest = Annotated[Union[MultipartUpload, DataUrlUpload], Field(discriminator="kind")]


class UploadResponse(BaseModel):
    ok: bool = True
    entryId: str
    photoUrl: str
    thumbUrl: str
    categoryId: str
    serialNumber: str | None = None
    meter: float | None = None


class MetaRequest(BaseModel):
    job_id: Scalar = Field(None, alias="jobId")
    category_id: Scalar = Field(None, alias="categoryId")
    serial_number: Any = Field(None, alias="serialNumber")
    meter: Any = None
    ocr_status: Any = Field(None, alias="ocrStatus")
    selected_photo_id: Any = Field(None, alias="selectedPhotoId")

    def slot(self) -> tuple[str, str]:
        job_id, category_id = _text(self.job_id), _text(self.category_id)
        if not job_id or self.category_id is None:
            raise ValidationError("jobId & categoryId required")
        return job_id, category_id

    def to_update(self) -> MetaUpdate:
        present = self.model_fields_set
        update = MetaUpdate()

        if "serial_number" in present:
            v = self.serial_number
            update.serial_number = None if v is None or not str(v).strip() else str(v).strip()

        if "meter" in present:
            update.meter = parse_number(self.meter, decimal_comma=True)

        if "ocr_status" in present:
            s = self.ocr_status
            if isinstance(s, str) or s is None:
                update.ocr_status = s
            elif isinstance(s, dict):
                update.ocr_status = json.dumps(s)

        if "selected_photo_id" in present:
            v = self.selected_photo_id
            update.selected_photo_id = None if v is None else (str(v).strip() or None)
        elif isinstance(self.ocr_status, dict) and self.ocr_status.get("selectedPhotoId"):
            update.selected_photo_id = str(self.ocr_status["selectedPhotoId"]).strip() or None

        return update


class PhotoView(BaseModel):
    id: str
    createdAt: int
    thumb: str
    remoteUrl: str | None = None
    sharpness: float = 0
    uploadState: Literal["uploaded"] = "uploaded"


class CategoryView(BaseModel):
    id: str
    name: str
    type: str
    requiresSerialNumber: bool
    requiresCable: bool
    photoThumb: str | None = None
    photo: str | None = None
    photos: list[PhotoView]
    selectedPhotoId: str | None = None
    serialNumber: str | None = None
    meter: float | None = None
