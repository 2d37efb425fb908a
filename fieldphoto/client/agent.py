"""Device agent wiring queue, connectivity monitor and dispatcher together.

Command line entry point: ``python -m fieldphoto.client``.
"""
import asyncio
import logging
import os
from pathlib import Path

import click
import httpx

from fieldphoto.client.capture import build_meta_update, build_photo_upload
from fieldphoto.client.connectivity import ConnectivityMonitor
from fieldphoto.client.dispatcher import SubmitResult, UploadDispatcher
from fieldphoto.client.queue import LocalDurableQueue
from fieldphoto.config import settings
from fieldphoto.database import sqlite_file_path
from fieldphoto.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


class DeliveryAgent:
    def __init__(
        self,
        base_url: str | None = None,
        queue_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.server_base_url).rstrip("/")
        self._owns_client = client is None
        headers = {"X-API-Key": settings.api_key} if settings.api_key else None
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.request_timeout_seconds,
            headers=headers,
        )
        self.queue = LocalDurableQueue(queue_url)
        self.monitor = ConnectivityMonitor(self.client, probe_url=self.base_url + settings.probe_path)
        self.dispatcher = UploadDispatcher(self.queue, self.client, self.monitor)

    async def __aenter__(self):
        path = sqlite_file_path(self.queue.database_url)
        if path:
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        await self.monitor.check_now()
        return self

    async def __aexit__(self, *exc):
        await self.dispatcher.stop()
        await self.monitor.stop()
        await self.queue.close()
        if self._owns_client:
            await self.client.aclose()

    async def run(self, stop: asyncio.Event) -> None:
        self.monitor.start()
        self.dispatcher.start()
        self.dispatcher.notify_visible()
        logger.info("Delivery agent running against %s", self.base_url)
        await stop.wait()


def _echo_result(result: SubmitResult) -> None:
    if result.status == "uploaded":
        click.echo(f"uploaded {result.response or ''}")
    elif result.status == "queued":
        click.echo(f"queued {result.queue_id}")
    else:
        click.echo(f"error {result.http_status or ''} {result.message or ''}".strip(), err=True)


@click.group()
@click.option("--server", default=None, help="Server base URL")
@click.option("--queue", "queue_url", default=None, help="Queue database URL")
@click.option("--log-level", default=None, help="Logging level")
@click.pass_context
def cli(ctx, server, queue_url, log_level):
    """FieldPhoto device agent"""
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"server": server, "queue_url": queue_url}


@cli.command()
@click.argument("job_id")
@click.argument("category_id")
@click.argument("photo", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--serial", "serial_number", default=None, help="Serial number")
@click.option("--meter", type=float, default=None, help="Cable length in meters")
@click.option("--token", default=None, help="Capture token")
@click.pass_obj
def submit(obj, job_id, category_id, photo, serial_number, meter, token):
    """Queue a photo for a job slot and try to deliver it now"""

    async def _run():
        job = build_photo_upload(
            job_id, category_id, photo.read_bytes(),
            serial_number=serial_number, meter=meter, token=token,
        )
        async with DeliveryAgent(obj["server"], obj["queue_url"]) as agent:
            return await agent.dispatcher.submit(job)

    try:
        _echo_result(asyncio.run(_run()))
    except ValidationError as e:
        raise click.BadParameter(e.message)


@cli.command()
@click.argument("job_id")
@click.argument("category_id")
@click.option("--serial", "serial_number", default=None, help="Serial number")
@click.option("--meter", default=None, help="Cable length in meters")
@click.option("--select", "selected_photo_id", default=None, help="Entry id to pin as canonical")
@click.pass_obj
def meta(obj, job_id, category_id, serial_number, meter, selected_photo_id):
    """Queue a metadata update for a job slot"""
    changes = {
        k: v for k, v in {
            "serial_number": serial_number,
            "meter": meter,
            "selected_photo_id": selected_photo_id,
        }.items() if v is not None
    }

    async def _run():
        async with DeliveryAgent(obj["server"], obj["queue_url"]) as agent:
            return await agent.dispatcher.submit(build_meta_update(job_id, category_id, **changes))

    _echo_result(asyncio.run(_run()))


@cli.command()
@click.pass_obj
def drain(obj):
    """Deliver everything pending in the queue"""

    async def _run():
        async with DeliveryAgent(obj["server"], obj["queue_url"]) as agent:
            delivered = await agent.dispatcher.drain_queue()
            return delivered, await agent.queue.count(), agent.monitor.online

    delivered, left, online = asyncio.run(_run())
    click.echo(f"online={online} delivered={len(delivered)} pending={left}")


@cli.command()
@click.pass_obj
def status(obj):
    """Show pending uploads"""

    async def _run():
        async with DeliveryAgent(obj["server"], obj["queue_url"]) as agent:
            return await agent.queue.list_pending()

    for job in asyncio.run(_run()):
        click.echo(f"{job.id}\t{job.method} {job.endpoint}\t{job.meta or {}}")


@cli.command()
@click.pass_obj
def run(obj):
    """Keep delivering in the background until interrupted"""

    async def _run():
        stop = asyncio.Event()
        async with DeliveryAgent(obj["server"], obj["queue_url"]) as agent:
            try:
                await agent.run(stop)
            except asyncio.CancelledError:
                logger.info("Delivery agent stopped")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
