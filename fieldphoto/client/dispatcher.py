"""Delivers queued uploads to the server, oldest first, one at a time.

A job leaves the queue after a 2xx response, or after a 4xx rejection that a
retry cannot fix. Network errors and 5xx responses leave it in place for the
next drain; there is no backoff, retries happen on triggers (reconnect, app
visible, periodic timer).
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Union

import httpx

from fieldphoto.client.connectivity import ConnectivityMonitor
from fieldphoto.client.queue import LocalDurableQueue, QueuedUpload
from fieldphoto.config import settings
from fieldphoto.utils.exceptions import NetworkFailure, StorageUnavailable

logger = logging.getLogger(__name__)

DeliveryListener = Callable[[QueuedUpload, Any], Union[None, Awaitable[None]]]

# rejections that may succeed later and so stay queued
RETRYABLE_CLIENT_STATUSES = {408, 425, 429}


@dataclass
class SubmitResult:
    status: Literal["uploaded", "queued", "error"]
    queue_id: str | None = None
    response: Any = None
    http_status: int | None = None
    message: str | None = None


def _response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_result(response: httpx.Response, payload: Any, queue_id: str | None = None) -> SubmitResult:
    message = payload.get("error") if isinstance(payload, dict) else None
    return SubmitResult(
        status="error",
        queue_id=queue_id,
        http_status=response.status_code,
        message=message or response.reason_phrase,
    )


def is_rejected(response: httpx.Response) -> bool:
    """A 4xx the server will keep answering the same way."""
    return response.is_client_error and response.status_code not in RETRYABLE_CLIENT_STATUSES


def build_request_kwargs(job: QueuedUpload) -> dict:
    headers = dict(job.headers or {})
    if job.body_encoding == "raw":
        if not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/octet-stream"
        return {"headers": headers, "content": job.body or b""}

    # httpx sets the multipart boundary itself
    headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
    data: dict[str, list[str]] = {}
    files = []
    for part in job.parts:
        if part.file_name is None:
            data.setdefault(part.field_name, []).append(part.data.decode("utf-8"))
        else:
            files.append((part.field_name, (part.file_name, part.data, part.mime_type)))
    return {"headers": headers, "data": data, "files": files}


class UploadDispatcher:
    def __init__(
        self,
        queue: LocalDurableQueue,
        client: httpx.AsyncClient,
        monitor: ConnectivityMonitor | None = None,
        drain_interval: float | None = None,
    ):
        self.queue = queue
        self._client = client
        self.monitor = monitor
        self.drain_interval = settings.drain_interval_seconds if drain_interval is None else drain_interval
        self._draining = False
        self._rerun = False
        self._listeners: list[DeliveryListener] = []
        # queue id -> outcome, for submit() calls waiting on a drain
        self._awaiting: dict[str, SubmitResult | None] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._timer: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

        if monitor is not None:
            monitor.add_listener(self._on_connectivity)

    def add_listener(self, listener: DeliveryListener) -> None:
        self._listeners.append(listener)

    async def _notify(self, job: QueuedUpload, payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(job, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Delivery listener failed for %s", job.id)

    async def send(self, job: QueuedUpload) -> httpx.Response:
        try:
            return await self._client.request(job.method, job.endpoint, **build_request_kwargs(job))
        except httpx.HTTPError as e:
            raise NetworkFailure(f"{job.method} {job.endpoint} failed: {e}") from e

    def _offline(self) -> bool:
        return self.monitor is not None and not self.monitor.online

    def _record(self, job_id: str, result: SubmitResult) -> None:
        if job_id in self._awaiting:
            self._awaiting[job_id] = result

    async def _remove(self, job: QueuedUpload) -> bool:
        try:
            await self.queue.remove(job.id)
        except StorageUnavailable:
            logger.exception("Could not remove %s from the queue; it will be sent again", job.id)
            return False
        return True

    async def _drain_once(self) -> list[str]:
        delivered: list[str] = []
        try:
            jobs = await self.queue.list_pending()
        except StorageUnavailable:
            logger.exception("Cannot read upload queue")
            return delivered

        for job in jobs:
            if self._offline():
                logger.info("Went offline during drain; %d job(s) left", len(jobs) - len(delivered))
                break
            try:
                response = await self.send(job)
            except NetworkFailure as e:
                logger.warning("Delivery of %s failed, kept queued: %s", job.id, e)
                continue

            payload = _response_payload(response)
            if is_rejected(response):
                result = _error_result(response, payload, job.id)
                logger.warning(
                    "Server rejected %s with HTTP %s (%s), dropped from queue",
                    job.id, response.status_code, result.message,
                )
                if await self._remove(job):
                    self._record(job.id, result)
                continue
            if not response.is_success:
                logger.warning("Delivery of %s got HTTP %s, kept queued", job.id, response.status_code)
                continue

            if not await self._remove(job):
                continue
            delivered.append(job.id)
            self._record(job.id, SubmitResult(
                status="uploaded", queue_id=job.id, response=payload, http_status=response.status_code,
            ))
            logger.info("Delivered %s to %s", job.id, job.endpoint)
            await self._notify(job, payload)
        return delivered

    async def drain_queue(self) -> list[str]:
        """Deliver every pending job; returns the ids delivered by this call.

        Calls made while a drain is running only request one more pass.
        """
        if self._draining:
            self._rerun = True
            return []
        if self._offline():
            logger.debug("Offline, drain skipped")
            return []

        self._draining = True
        self._idle.clear()
        delivered: list[str] = []
        try:
            while True:
                self._rerun = False
                delivered.extend(await self._drain_once())
                if not self._rerun or self._offline():
                    break
        finally:
            self._draining = False
            self._idle.set()
        return delivered

    async def _safe_drain(self) -> list[str]:
        try:
            return await self.drain_queue()
        except Exception:
            logger.exception("Drain failed; pending jobs stay queued")
            return []

    def trigger(self) -> None:
        task = asyncio.create_task(self._safe_drain())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _on_connectivity(self, online: bool) -> None:
        if online:
            self.trigger()

    def notify_visible(self) -> None:
        self.trigger()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.drain_interval)
            await self._safe_drain()

    def start(self) -> None:
        if self._timer is None or self._timer.done():
            self._timer = asyncio.create_task(self._tick())

    async def stop(self) -> None:
        tasks = [t for t in (self._timer, *self._background) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timer = None

    async def _send_now(self, job: QueuedUpload) -> SubmitResult:
        try:
            response = await self.send(job)
        except NetworkFailure as e:
            return SubmitResult(status="error", message=str(e))
        payload = _response_payload(response)
        if not response.is_success:
            return _error_result(response, payload)
        await self._notify(job, payload)
        return SubmitResult(status="uploaded", response=payload, http_status=response.status_code)

    async def submit(self, job: QueuedUpload) -> SubmitResult:
        """Queue ``job`` and try to deliver it right away.

        Returns ``uploaded`` or ``error`` when the server answered this job
        during the attempt, ``queued`` when it is left for a later drain.
        """
        try:
            queue_id = await self.queue.enqueue(job)
        except StorageUnavailable:
            logger.warning("Upload queue unavailable, sending %s %s directly", job.method, job.endpoint)
            return await self._send_now(job)

        self._awaiting[queue_id] = None
        try:
            await self._safe_drain()
            # a drain already in flight picks the job up in its follow-up pass
            await self._idle.wait()
        finally:
            result = self._awaiting.pop(queue_id, None)
        return result or SubmitResult(status="queued", queue_id=queue_id)
