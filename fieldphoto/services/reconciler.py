"""Keeps one canonical snapshot per (job, category) slot.

Selection rules:
  - while a slot is unpinned, the most recently arrived entry becomes canonical
  - a technician pin is sticky; later uploads never demote it
  - serial number / cable meter are last-write-wins, independent of selection
  - ``select_best`` (sharpness) only fills in slots that have no selection at all
"""
import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fieldphoto.models.photo_entry import PhotoEntry
from fieldphoto.models.photo_snapshot import PhotoSnapshot
from fieldphoto.services import entry_store
from fieldphoto.services.entry_store import now_iso
from fieldphoto.services.photo_template import CategoryTemplate
from fieldphoto.utils.exceptions import SelectionMismatch

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class MetaUpdate:
    """Fields of a metadata request; ``_UNSET`` means the key was absent."""

    serial_number: Any = _UNSET
    meter: Any = _UNSET
    ocr_status: Any = _UNSET
    selected_photo_id: Any = _UNSET

    @staticmethod
    def is_set(value: Any) -> bool:
        return value is not _UNSET


async def get_snapshot(db: AsyncSession, job_id: str, category_id: str) -> PhotoSnapshot | None:
    result = await db.execute(
        select(PhotoSnapshot)
        .where(PhotoSnapshot.job_id == job_id, PhotoSnapshot.category_id == str(category_id))
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def list_snapshots(db: AsyncSession, job_id: str) -> list[PhotoSnapshot]:
    result = await db.execute(select(PhotoSnapshot).where(PhotoSnapshot.job_id == job_id))
    return list(result.scalars().all())


async def _get_or_create(db: AsyncSession, job_id: str, category_id: str) -> tuple[PhotoSnapshot, bool]:
    snapshot = await get_snapshot(db, job_id, category_id)
    if snapshot is not None:
        return snapshot, False

    snapshot = PhotoSnapshot(
        id=str(uuid.uuid4()),
        job_id=job_id,
        category_id=str(category_id),
        selection_pinned=False,
        updated_at=now_iso(),
    )
    db.add(snapshot)
    try:
        await db.flush()
    except IntegrityError:
        # another request created the slot first
        await db.rollback()
        snapshot = await get_snapshot(db, job_id, category_id)
        if snapshot is None:
            raise
        return snapshot, False
    return snapshot, True


def _merge_metadata(snapshot: PhotoSnapshot, serial_number: str | None, meter: float | None) -> None:
    if serial_number:
        snapshot.serial_number = serial_number
    if meter is not None:
        snapshot.cable_meter = meter


async def upsert_from_entry(
    db: AsyncSession,
    entry: PhotoEntry,
    serial_number: str | None = None,
    meter: float | None = None,
) -> PhotoSnapshot:
    now = now_iso()
    result = await db.execute(
        update(PhotoSnapshot)
        .where(
            PhotoSnapshot.job_id == entry.job_id,
            PhotoSnapshot.category_id == entry.category_id,
            PhotoSnapshot.selection_pinned == False,  # noqa: E712
        )
        .values(
            url=entry.url,
            thumb_url=entry.thumb_url,
            selected_photo_id=entry.id,
            updated_at=now,
        )
    )

    snapshot, _ = await _get_or_create(db, entry.job_id, entry.category_id)
    if result.rowcount == 0 and not snapshot.selection_pinned:
        snapshot.url = entry.url
        snapshot.thumb_url = entry.thumb_url
        snapshot.selected_photo_id = entry.id
    elif snapshot.selection_pinned:
        logger.info(
            "Slot %s/%s pinned to %s; entry %s kept as history only",
            entry.job_id, entry.category_id, snapshot.selected_photo_id, entry.id,
        )

    _merge_metadata(snapshot, serial_number, meter)
    snapshot.updated_at = now
    await db.commit()
    return snapshot


async def _require_entry(db: AsyncSession, job_id: str, category_id: str, entry_id: str) -> PhotoEntry:
    entry = await entry_store.get_entry(db, job_id, category_id, entry_id)
    if entry is None:
        raise SelectionMismatch("selectedPhotoId does not match job/category")
    return entry


def _pin(snapshot: PhotoSnapshot, entry: PhotoEntry) -> None:
    snapshot.selected_photo_id = entry.id
    snapshot.selection_pinned = True
    if entry.url:
        snapshot.url = entry.url
    if entry.thumb_url:
        snapshot.thumb_url = entry.thumb_url


async def pin_selection(db: AsyncSession, job_id: str, category_id: str, entry_id: str) -> PhotoSnapshot:
    entry = await _require_entry(db, job_id, category_id, entry_id)
    snapshot, _ = await _get_or_create(db, job_id, category_id)
    _pin(snapshot, entry)
    snapshot.updated_at = now_iso()
    await db.commit()
    logger.info("Pinned slot %s/%s to entry %s", job_id, category_id, entry_id)
    return snapshot


async def clear_selection(db: AsyncSession, job_id: str, category_id: str) -> PhotoSnapshot | None:
    snapshot = await get_snapshot(db, job_id, category_id)
    if snapshot is None:
        return None
    snapshot.selected_photo_id = None
    snapshot.selection_pinned = False
    snapshot.updated_at = now_iso()
    await db.commit()
    logger.info("Cleared selection for slot %s/%s", job_id, category_id)
    return snapshot


async def apply_meta(db: AsyncSession, job_id: str, category_id: str, meta: MetaUpdate) -> PhotoSnapshot:
    """Validate, then write every supplied field at once.

    A selection that fails validation raises before anything is written.
    """
    pinned_entry = None
    if MetaUpdate.is_set(meta.selected_photo_id) and meta.selected_photo_id:
        pinned_entry = await _require_entry(db, job_id, category_id, meta.selected_photo_id)

    snapshot, _ = await _get_or_create(db, job_id, category_id)

    if MetaUpdate.is_set(meta.serial_number):
        snapshot.serial_number = meta.serial_number
    if MetaUpdate.is_set(meta.meter):
        snapshot.cable_meter = meta.meter
    if MetaUpdate.is_set(meta.ocr_status):
        snapshot.ocr_status = meta.ocr_status

    if pinned_entry is not None:
        _pin(snapshot, pinned_entry)
    elif MetaUpdate.is_set(meta.selected_photo_id):
        snapshot.selected_photo_id = None
        snapshot.selection_pinned = False

    snapshot.updated_at = now_iso()
    await db.commit()
    return snapshot


def _sharpness(entry: Any) -> float:
    value = getattr(entry, "sharpness", None)
    return float(value) if value is not None else 0.0


def select_best(entries: Iterable[Any]) -> str | None:
    """Id of the sharpest entry; ties go to the earliest created."""
    best = None
    for entry in entries:
        if best is None:
            best = entry
            continue
        score, best_score = _sharpness(entry), _sharpness(best)
        if score > best_score or (score == best_score and entry.created_at < best.created_at):
            best = entry
    return best.id if best is not None else None


def is_complete(template: CategoryTemplate, has_image: bool, serial_number: str | None) -> bool:
    if not has_image:
        return False
    if template.requires_serial_number and not (serial_number or "").strip():
        return False
    return True


def compute_progress(total: int, complete: int) -> dict:
    # half-up rounding
    percent = math.floor(complete * 100 / total + 0.5) if total else 0
    return {"total": total, "complete": complete, "uploaded": complete, "percent": percent}
