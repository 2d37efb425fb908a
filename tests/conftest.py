import io
import os
import tempfile
import uuid

import pytest
import pytest_asyncio

_TMP = tempfile.mkdtemp(prefix="fieldphoto-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/server.sqlite3"
os.environ["STORAGE_DIR"] = os.path.join(_TMP, "storage")
os.environ["QUEUE_DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/queue.sqlite3"
os.environ["API_KEY"] = ""


@pytest.fixture(autouse=True, scope="session")
def setup_test_db():
    import asyncio

    # Disable API key auth for tests
    from fieldphoto.config import settings
    settings.api_key = ""

    from fieldphoto.database import create_tables

    asyncio.run(create_tables())


@pytest_asyncio.fixture
async def db_session():
    from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
    from fieldphoto.database import Base
    from fieldphoto.models import PhotoEntry, PhotoSnapshot, Project  # noqa: F401

    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def job_id():
    return f"job-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def tmp_queue_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path}/queue.sqlite3"


def make_jpeg(width: int = 320, height: int = 240, sharp: bool = True) -> bytes:
    """Checkerboard (sharp) or flat grey (blurry) JPEG."""
    from PIL import Image

    image = Image.new("L", (width, height), 128)
    if sharp:
        pixels = image.load()
        for x in range(width):
            for y in range(height):
                pixels[x, y] = 255 if (x // 8 + y // 8) % 2 else 0
    out = io.BytesIO()
    image.convert("RGB").save(out, format="JPEG", quality=90)
    return out.getvalue()


@pytest.fixture
def jpeg():
    return make_jpeg
