"""Append-only history of uploaded photo variants per (job, category) slot.

Entries are never updated or deduplicated: a client retry after a lost
acknowledgment simply produces one more history row.
"""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldphoto.models.photo_entry import PhotoEntry

logger = logging.getLogger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


async def append(
    db: AsyncSession,
    *,
    job_id: str,
    category_id: str,
    url: str,
    thumb_url: str,
    sharpness: float | None = None,
    token: str | None = None,
) -> PhotoEntry:
    entry = PhotoEntry(
        id=str(uuid.uuid4()),
        job_id=job_id,
        category_id=str(category_id),
        url=url,
        thumb_url=thumb_url,
        created_at=now_iso(),
        sharpness=sharpness,
        token=token,
    )
    db.add(entry)
    await db.commit()
    logger.info("Appended entry %s for slot %s/%s", entry.id, job_id, category_id)
    return entry


async def list_entries(
    db: AsyncSession, job_id: str, category_id: str | None = None
) -> list[PhotoEntry]:
    query = select(PhotoEntry).where(PhotoEntry.job_id == job_id)
    if category_id is not None:
        query = query.where(PhotoEntry.category_id == str(category_id))
    query = query.order_by(PhotoEntry.created_at.asc(), PhotoEntry.id.asc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_entry(
    db: AsyncSession, job_id: str, category_id: str, entry_id: str
) -> PhotoEntry | None:
    result = await db.execute(
        select(PhotoEntry).where(
            PhotoEntry.id == entry_id,
            PhotoEntry.job_id == job_id,
            PhotoEntry.category_id == str(category_id),
        )
    )
    return result.scalars().first()
