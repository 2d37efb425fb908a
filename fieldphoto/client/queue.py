"""Device-local durable queue of pending uploads.

Jobs are written to a SQLite file before ``enqueue`` returns, survive process
restarts, and are only ever removed after the server acknowledged them.
Request bodies are kept as raw bytes (BLOB), never re-encoded as text.
"""
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Literal

from sqlalchemy import Column, ForeignKey, Integer, JSON, LargeBinary, String, delete, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from fieldphoto.config import settings
from fieldphoto.utils.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

BodyEncoding = Literal["multipart", "raw"]


class QueueBase(DeclarativeBase):
    pass


class PendingUploadRow(QueueBase):
    __tablename__ = "pending_uploads"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False)
    created_at = Column(Integer, nullable=False)
    endpoint = Column(String, nullable=False)
    method = Column(String, nullable=False, default="POST")
    headers = Column(JSON, nullable=True)
    body_encoding = Column(String, nullable=False)
    body = Column(LargeBinary, nullable=True)
    meta = Column(JSON, nullable=True)


class PendingUploadPartRow(QueueBase):
    __tablename__ = "pending_upload_parts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    upload_id = Column(String, ForeignKey("pending_uploads.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    field_name = Column(String, nullable=False)
    file_name = Column(String, nullable=True)
    mime_type = Column(String, nullable=False)
    data = Column(LargeBinary, nullable=False)


@dataclass
class EncodedPart:
    """One multipart field; without ``file_name`` it is sent as a plain form value."""

    field_name: str
    data: bytes
    mime_type: str = "text/plain"
    file_name: str | None = None


@dataclass
class QueuedUpload:
    endpoint: str
    body_encoding: BodyEncoding = "multipart"
    parts: list[EncodedPart] = field(default_factory=list)
    body: bytes | None = None
    method: str = "POST"
    headers: dict[str, str] | None = None
    meta: dict[str, Any] | None = None
    id: str | None = None
    created_at: int | None = None


def new_job_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def form_parts(
    fields: dict[str, Any] | None = None,
    files: dict[str, tuple[str, bytes, str]] | None = None,
) -> list[EncodedPart]:
    """Serialize form values and ``{name: (file_name, data, mime)}`` files into parts."""
    parts = []
    for name, value in (fields or {}).items():
        if value is None:
            continue
        parts.append(EncodedPart(field_name=name, data=str(value).encode("utf-8")))
    for name, (file_name, data, mime) in (files or {}).items():
        parts.append(EncodedPart(
            field_name=name,
            data=bytes(data),
            mime_type=mime or "application/octet-stream",
            file_name=file_name,
        ))
    return parts


class LocalDurableQueue:
    """FIFO of pending uploads in a SQLite file.

    The parent directory of the database file must exist; an unreachable
    location raises ``StorageUnavailable`` instead of being created.
    """

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or settings.queue_database_url
        self._engine = None
        self._sessionmaker = None

    async def open(self) -> None:
        if self._engine is not None:
            return
        engine = create_async_engine(self.database_url, poolclass=NullPool)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(QueueBase.metadata.create_all)
        except (OperationalError, OSError) as e:
            await engine.dispose()
            raise StorageUnavailable(f"Cannot open upload queue at {self.database_url}: {e}") from e
        self._engine = engine
        self._sessionmaker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        logger.debug("Upload queue opened at %s", self.database_url)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def _session(self):
        await self.open()
        try:
            async with self._sessionmaker() as db:
                yield db
        except (OperationalError, OSError) as e:
            raise StorageUnavailable(f"Upload queue unavailable: {e}") from e

    async def enqueue(self, job: QueuedUpload) -> str:
        if job.body_encoding == "raw" and job.body is None:
            raise ValueError("raw jobs need a body")
        job.id = job.id or new_job_id()
        job.created_at = job.created_at or int(time.time() * 1000)

        async with self._session() as db:
            db.add(PendingUploadRow(
                id=job.id,
                created_at=job.created_at,
                endpoint=job.endpoint,
                method=job.method,
                headers=job.headers,
                body_encoding=job.body_encoding,
                body=job.body,
                meta=job.meta,
            ))
            for position, part in enumerate(job.parts):
                db.add(PendingUploadPartRow(
                    upload_id=job.id,
                    position=position,
                    field_name=part.field_name,
                    file_name=part.file_name,
                    mime_type=part.mime_type,
                    data=part.data,
                ))
            await db.commit()

        logger.info("Queued %s %s as %s (%d parts)", job.method, job.endpoint, job.id, len(job.parts))
        return job.id

    async def enqueue_form(
        self,
        endpoint: str,
        fields: dict[str, Any] | None = None,
        files: dict[str, tuple[str, bytes, str]] | None = None,
        *,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> str:
        return await self.enqueue(QueuedUpload(
            endpoint=endpoint,
            method=method,
            headers=headers,
            body_encoding="multipart",
            parts=form_parts(fields, files),
            meta=meta,
        ))

    async def enqueue_json(
        self,
        endpoint: str,
        payload: Any,
        *,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> str:
        return await self.enqueue(QueuedUpload(
            endpoint=endpoint,
            method=method,
            headers={**(headers or {}), "Content-Type": "application/json"},
            body_encoding="raw",
            body=json.dumps(payload).encode("utf-8"),
            meta=meta,
        ))

    async def _load(self, db: AsyncSession, rows: list[PendingUploadRow]) -> list[QueuedUpload]:
        if not rows:
            return []
        result = await db.execute(
            select(PendingUploadPartRow)
            .where(PendingUploadPartRow.upload_id.in_([r.id for r in rows]))
            .order_by(PendingUploadPartRow.upload_id, PendingUploadPartRow.position)
        )
        parts: dict[str, list[EncodedPart]] = {}
        for p in result.scalars().all():
            parts.setdefault(p.upload_id, []).append(EncodedPart(
                field_name=p.field_name,
                data=p.data,
                mime_type=p.mime_type,
                file_name=p.file_name,
            ))
        return [
            QueuedUpload(
                id=r.id,
                created_at=r.created_at,
                endpoint=r.endpoint,
                method=r.method,
                headers=r.headers,
                body_encoding=r.body_encoding,
                body=r.body,
                parts=parts.get(r.id, []),
                meta=r.meta,
            )
            for r in rows
        ]

    async def list_pending(self) -> list[QueuedUpload]:
        async with self._session() as db:
            result = await db.execute(select(PendingUploadRow).order_by(PendingUploadRow.seq))
            return await self._load(db, list(result.scalars().all()))

    async def get(self, job_id: str) -> QueuedUpload | None:
        async with self._session() as db:
            result = await db.execute(select(PendingUploadRow).where(PendingUploadRow.id == job_id))
            jobs = await self._load(db, list(result.scalars().all()))
            return jobs[0] if jobs else None

    async def remove(self, job_id: str) -> None:
        async with self._session() as db:
            await db.execute(delete(PendingUploadPartRow).where(PendingUploadPartRow.upload_id == job_id))
            await db.execute(delete(PendingUploadRow).where(PendingUploadRow.id == job_id))
            await db.commit()
        logger.debug("Removed %s from upload queue", job_id)

    async def count(self) -> int:
        async with self._session() as db:
            result = await db.execute(select(func.count()).select_from(PendingUploadRow))
            return int(result.scalar_one())
