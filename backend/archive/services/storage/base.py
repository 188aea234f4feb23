"""Storage backend interface shared by the filesystem, object-storage and
database-chunk variants.

Every variant consumes the whole input stream on ``put`` and discards any
partial artifact before an error leaves it, serves full or ranged reads as an
async byte stream, and treats deleting an absent blob as success.
"""
import asyncio
import enum
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Optional

from archive.services.errors import RangeNotSatisfiableError, StorageUnavailableError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class StorageProvider(str, enum.Enum):
    LOCAL = "local"
    OBJECT_STORAGE = "object-storage"
    BLOB_CHUNKED = "blob-chunked"


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte window ``[start, end]``."""
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, total_length: int) -> str:
        return f"bytes {self.start}-{self.end}/{total_length}"


@dataclass
class PutResult:
    storage_key: str
    bytes_written: int


@dataclass
class BlobStream:
    stream: AsyncIterator[bytes]
    total_length: int
    byte_range: Optional[ByteRange] = None

    @property
    def content_length(self) -> int:
        return self.byte_range.length if self.byte_range else self.total_length

    @property
    def content_range(self) -> Optional[str]:
        if self.byte_range is None:
            return None
        return self.byte_range.content_range(self.total_length)


def check_range(byte_range: Optional[ByteRange], total_length: int) -> None:
    """Raise RangeNotSatisfiableError unless the range lies inside the blob."""
    if byte_range is None:
        return
    if (
        byte_range.start < 0
        or byte_range.start > byte_range.end
        or byte_range.end >= total_length
    ):
        raise RangeNotSatisfiableError(total_length)


def generate_blob_name(suffix: str = "") -> str:
    """Collision-resistant name: epoch milliseconds plus 64 random bits."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{suffix}"


class CountingStream:
    """Pass chunks through while counting bytes."""

    def __init__(self, source: AsyncIterable[bytes]):
        self.source = source
        self.count = 0

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        async for chunk in self.source:
            self.count += len(chunk)
            yield chunk


class StorageBackend(ABC):
    """Abstract storage backend."""

    provider: StorageProvider

    def __init__(self):
        self.available = False

    async def connect(self) -> None:
        """Prepare the backend; raise on failure."""
        self.available = True

    async def close(self) -> None:
        self.available = False

    def ensure_available(self) -> None:
        if not self.available:
            raise StorageUnavailableError()

    def direct_url(self, storage_key: str, download: bool = False) -> Optional[str]:
        """Provider URL clients may be redirected to, or None to proxy bytes."""
        return None

    @abstractmethod
    async def put(
        self,
        stream: AsyncIterable[bytes],
        suggested_name: str,
        content_type: str,
        expected_size: Optional[int] = None,
    ) -> PutResult:
        """Persist the whole stream. Raises StorageWriteError."""

    @abstractmethod
    async def get(self, storage_key: str, byte_range: Optional[ByteRange] = None) -> BlobStream:
        """Open a read stream. Raises NotFoundError or RangeNotSatisfiableError."""

    @abstractmethod
    async def delete(self, storage_key: str) -> bool:
        """Best-effort delete. True when the blob is gone afterwards."""

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Whether a complete blob is stored under the key."""


async def connect_with_retry(backend: StorageBackend, attempts: int, delay: float) -> bool:
    """Connect with a bounded number of attempts.

    Returns False and leaves the backend unavailable (requests get 503)
    when every attempt fails.
    """
    for attempt in range(1, attempts + 1):
        try:
            await backend.connect()
            logger.info("Storage backend '%s' connected", backend.provider.value)
            return True
        except Exception as e:
            logger.warning(
                "Storage backend '%s' connect failed (attempt %d/%d): %s",
                backend.provider.value, attempt, attempts, e,
            )
            if attempt < attempts:
                await asyncio.sleep(delay)
    logger.error("Storage backend '%s' unavailable after %d attempts", backend.provider.value, attempts)
    return False
