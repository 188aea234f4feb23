"""Filesystem storage backend. Blobs are flat files inside one root directory."""
import logging
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Optional

import aiofiles
import aiofiles.os

from archive.services.errors import ArchiveError, NotFoundError, StorageUnavailableError, StorageWriteError
from archive.services.storage.base import (
    READ_CHUNK_SIZE,
    BlobStream,
    ByteRange,
    PutResult,
    StorageBackend,
    StorageProvider,
    check_range,
    generate_blob_name,
)

logger = logging.getLogger(__name__)


class LocalStorageBackend(StorageBackend):
    """Handles blob read/write on local disk.

    Storage keys are generated names (never derived from the uploaded
    filename); any key that would resolve outside the root is refused.
    """

    provider = StorageProvider.LOCAL

    def __init__(self, base_path: str):
        super().__init__()
        self.base_path = Path(base_path).resolve()

    async def connect(self) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)
        if not await aiofiles.os.path.isdir(self.base_path):
            raise OSError(f"Storage root is not a directory: {self.base_path}")
        self.available = True

    def _path_for(self, storage_key: str) -> Optional[Path]:
        if not storage_key or "/" in storage_key or "\\" in storage_key or storage_key in (".", ".."):
            return None
        path = (self.base_path / storage_key).resolve()
        if path.parent != self.base_path:
            return None
        return path

    async def put(
        self,
        stream: AsyncIterable[bytes],
        suggested_name: str,
        content_type: str,
        expected_size: Optional[int] = None,
    ) -> PutResult:
        storage_key = generate_blob_name(".pdf")
        file_path = self._path_for(storage_key)
        written = 0
        try:
            async with aiofiles.open(file_path, "wb") as f:
                async for chunk in stream:
                    await f.write(chunk)
                    written += len(chunk)
            stat = await aiofiles.os.stat(file_path)
            if stat.st_size != written:
                raise StorageWriteError("Stored size does not match the received size")
            if expected_size is not None and written != expected_size:
                raise StorageWriteError("Received size does not match the declared size")
        except BaseException as e:
            await self._discard(file_path)
            if isinstance(e, Exception) and not isinstance(e, ArchiveError):
                raise StorageWriteError("Failed to write file to disk") from e
            raise
        logger.debug("Stored %d bytes as %s", written, storage_key)
        return PutResult(storage_key=storage_key, bytes_written=written)

    async def get(self, storage_key: str, byte_range: Optional[ByteRange] = None) -> BlobStream:
        file_path = self._path_for(storage_key)
        if file_path is None:
            raise NotFoundError("File not found in storage")
        try:
            stat = await aiofiles.os.stat(file_path)
        except FileNotFoundError:
            raise NotFoundError("File not found in storage")
        except OSError as e:
            raise StorageUnavailableError("Failed to read file from storage") from e

        check_range(byte_range, stat.st_size)
        if byte_range:
            start, length = byte_range.start, byte_range.length
        else:
            start, length = 0, stat.st_size
        return BlobStream(
            stream=self._read(file_path, start, length),
            total_length=stat.st_size,
            byte_range=byte_range,
        )

    async def _read(self, file_path: Path, start: int, length: int) -> AsyncIterator[bytes]:
        remaining = length
        async with aiofiles.open(file_path, "rb") as f:
            await f.seek(start)
            while remaining > 0:
                chunk = await f.read(min(READ_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk

    async def delete(self, storage_key: str) -> bool:
        file_path = self._path_for(storage_key)
        if file_path is None:
            logger.warning("Refusing to delete invalid storage key %r", storage_key)
            return False
        try:
            await aiofiles.os.remove(file_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("Failed to delete %s: %s", storage_key, e)
            return False
        return True

    async def exists(self, storage_key: str) -> bool:
        file_path = self._path_for(storage_key)
        if file_path is None:
            return False
        return await aiofiles.os.path.isfile(file_path)

    async def _discard(self, file_path: Path) -> None:
        try:
            await aiofiles.os.remove(file_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("Failed to remove partial file %s: %s", file_path.name, e)
