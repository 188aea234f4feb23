import asyncio
import os
import shutil
import tempfile
from pathlib import Path

import pytest

# Settings are read at import time, so the environment comes first.
_TMP = Path(tempfile.mkdtemp(prefix="archive-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'archive.db'}"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["FILE_STORAGE_PATH"] = str(_TMP / "uploads")
os.environ["STORAGE_CONNECT_ATTEMPTS"] = "1"
os.environ["CLEANUP_SWEEP_ON_STARTUP"] = "false"
os.environ["CLEANUP_SWEEP_INTERVAL"] = "0"

from archive.database import async_session, engine
from archive.models import Base
from archive.services.classification import Classification
from archive.services.seed_defaults import seed_semesters
from archive.services.storage.local import LocalStorageBackend


async def _reset_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        await seed_semesters(session)
    await engine.dispose()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def fresh_database():
    asyncio.run(_reset_database())
    yield


@pytest.fixture
def upload_dir():
    path = _TMP / "uploads"
    shutil.rmtree(path, ignore_errors=True)
    path.mkdir(parents=True)
    return path


@pytest.fixture
def local_storage(tmp_path):
    root = tmp_path / "blobs"
    root.mkdir()
    backend = LocalStorageBackend(str(root))
    backend.available = True
    return backend


@pytest.fixture
def classification():
    return Classification(semester="S1", type="cours", subject="Algèbre", year="2024")
