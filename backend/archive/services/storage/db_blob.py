"""Database blob backend: PDF bytes split into fixed-size chunk rows.

Chunks of one upload share a per-upload blob id, so concurrent uploads never
interleave. The manifest row (StoredBlob) is committed after the last chunk
and after the stored size has been verified; reads and ``exists`` only see
blobs with a manifest.
"""
import logging
import uuid
from typing import AsyncIterable, AsyncIterator, Optional

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from archive.models.blob import BlobChunk, StoredBlob
from archive.services.errors import ArchiveError, NotFoundError, StorageUnavailableError, StorageWriteError
from archive.services.storage.base import (
    BlobStream,
    ByteRange,
    PutResult,
    StorageBackend,
    StorageProvider,
    check_range,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


class DatabaseBlobBackend(StorageBackend):
    provider = StorageProvider.BLOB_CHUNKED

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        super().__init__()
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.session_factory = session_factory
        self.chunk_size = chunk_size

    async def connect(self) -> None:
        async with self.session_factory() as db:
            await db.execute(text("SELECT 1"))
        self.available = True

    async def put(
        self,
        stream: AsyncIterable[bytes],
        suggested_name: str,
        content_type: str,
        expected_size: Optional[int] = None,
    ) -> PutResult:
        blob_id = uuid.uuid4().hex
        written = 0
        seq = 0
        buffer = bytearray()
        try:
            async with self.session_factory() as db:
                async for piece in stream:
                    buffer.extend(piece)
                    written += len(piece)
                    while len(buffer) >= self.chunk_size:
                        await self._write_chunk(db, blob_id, seq, bytes(buffer[:self.chunk_size]))
                        del buffer[:self.chunk_size]
                        seq += 1
                if buffer:
                    await self._write_chunk(db, blob_id, seq, bytes(buffer))

                stored = await db.scalar(
                    select(func.coalesce(func.sum(func.length(BlobChunk.data)), 0))
                    .where(BlobChunk.blob_id == blob_id)
                )
                if stored != written:
                    raise StorageWriteError("Stored size does not match the received size")
                if expected_size is not None and written != expected_size:
                    raise StorageWriteError("Received size does not match the declared size")

                db.add(StoredBlob(
                    id=blob_id,
                    length=written,
                    chunk_size=self.chunk_size,
                    content_type=content_type,
                    filename=suggested_name[:500],
                ))
                await db.commit()
        except BaseException as e:
            await self._discard(blob_id)
            if isinstance(e, Exception) and not isinstance(e, ArchiveError):
                raise StorageWriteError("Failed to write file to database storage") from e
            raise
        logger.debug("Stored %d bytes as blob %s (%d chunks)", written, blob_id, seq + (1 if buffer else 0))
        return PutResult(storage_key=blob_id, bytes_written=written)

    async def _write_chunk(self, db: AsyncSession, blob_id: str, seq: int, data: bytes) -> None:
        db.add(BlobChunk(blob_id=blob_id, seq=seq, data=data))
        await db.commit()

    async def get(self, storage_key: str, byte_range: Optional[ByteRange] = None) -> BlobStream:
        try:
            async with self.session_factory() as db:
                blob = await db.get(StoredBlob, storage_key)
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Failed to read file from database storage") from e
        if blob is None:
            raise NotFoundError("File not found in storage")

        check_range(byte_range, blob.length)
        if byte_range:
            start, end = byte_range.start, byte_range.end
        else:
            start, end = 0, blob.length - 1
        return BlobStream(
            stream=self._read(blob.id, blob.chunk_size, start, end),
            total_length=blob.length,
            byte_range=byte_range,
        )

    async def _read(self, blob_id: str, chunk_size: int, start: int, end: int) -> AsyncIterator[bytes]:
        if end < start:
            return
        first_seq = start // chunk_size
        last_seq = end // chunk_size
        # One short session per chunk: none is held while the consumer has the bytes
        for seq in range(first_seq, last_seq + 1):
            async with self.session_factory() as db:
                data = await db.scalar(
                    select(BlobChunk.data).where(BlobChunk.blob_id == blob_id, BlobChunk.seq == seq)
                )
            if data is None:
                raise StorageUnavailableError(f"Blob {blob_id} is missing chunk {seq}")
            chunk_start = seq * chunk_size
            lo = max(start - chunk_start, 0)
            hi = min(end - chunk_start + 1, len(data))
            yield data[lo:hi]

    async def delete(self, storage_key: str) -> bool:
        try:
            async with self.session_factory() as db:
                await db.execute(delete(StoredBlob).where(StoredBlob.id == storage_key))
                await db.execute(delete(BlobChunk).where(BlobChunk.blob_id == storage_key))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to delete blob %s: %s", storage_key, e)
            return False
        return True

    async def exists(self, storage_key: str) -> bool:
        try:
            async with self.session_factory() as db:
                blob_id = await db.scalar(select(StoredBlob.id).where(StoredBlob.id == storage_key))
        except SQLAlchemyError as e:
            raise StorageUnavailableError("Failed to query database storage") from e
        return blob_id is not None

    async def _discard(self, blob_id: str) -> None:
        if not await self.delete(blob_id):
            logger.error("Partial blob %s could not be removed", blob_id)
