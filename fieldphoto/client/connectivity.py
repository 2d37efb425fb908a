import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Union

import httpx

from fieldphoto.config import settings

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Union[None, Awaitable[None]]]


class ConnectivityMonitor:
    """Tracks whether the server is actually reachable.

    The platform's own network signal is trusted only when it says offline;
    an "online" signal is confirmed by a HEAD probe. Any probe failure counts
    as offline.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        probe_url: str | None = None,
        interval: float | None = None,
        initial: bool = False,
    ):
        self._client = client
        self.probe_url = probe_url or settings.server_base_url.rstrip("/") + settings.probe_path
        self.interval = settings.probe_interval_seconds if interval is None else interval
        self._online = initial
        self._native_online = True
        self._listeners: list[Listener] = []
        self._task: asyncio.Task | None = None

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def _set(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                result = listener(online)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Connectivity listener failed")

    async def probe(self) -> bool:
        try:
            response = await self._client.head(
                self.probe_url,
                params={"cb": str(int(time.time() * 1000))},
                headers={"Cache-Control": "no-cache"},
            )
        except httpx.HTTPError as e:
            logger.debug("Probe to %s failed: %s", self.probe_url, e)
            return False
        return response.is_success

    async def check_now(self) -> bool:
        if not self._native_online:
            await self._set(False)
            return False
        await self._set(await self.probe())
        return self._online

    async def set_native_status(self, online: bool) -> None:
        self._native_online = online
        if not online:
            await self._set(False)
        else:
            await self.check_now()

    async def _run(self) -> None:
        while True:
            await self.check_now()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
