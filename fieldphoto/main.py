import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from fieldphoto.config import settings
from fieldphoto.database import create_tables
from fieldphoto.dependencies import verify_api_key
from fieldphoto.routers.job_photos import router as job_photos_router
from fieldphoto.utils.exceptions import register_exception_handlers

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "fieldphoto-api"
VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    logger.info("%s %s ready (storage at %s)", SERVICE_NAME, VERSION, settings.storage_dir)
    yield


app = FastAPI(
    title="FieldPhoto API",
    description="Durable job-site photo uploads, history and canonical slot snapshots",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

_api_key_dep = [Depends(verify_api_key)]

app.include_router(job_photos_router, prefix="/api", dependencies=_api_key_dep)

os.makedirs(settings.storage_dir, exist_ok=True)
app.mount("/storage", StaticFiles(directory=settings.storage_dir), name="storage")


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    return {"status": "ok", "service": SERVICE_NAME, "version": VERSION}
