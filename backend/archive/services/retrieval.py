"""Retrieval pipeline: FileRecord lookup, then a (ranged) read from storage."""
import logging
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from archive.models.file_record import FileRecord
from archive.services.errors import (
    InvalidFileId,
    NotFoundError,
    RangeNotSatisfiableError,
    StorageUnavailableError,
)
from archive.services.filenames import sanitize_filename
from archive.services.ranges import parse_range_header
from archive.services.storage.base import StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class RetrievedFile:
    stream: AsyncIterator[bytes]
    content_type: str
    content_length: int
    total_length: int
    content_range: Optional[str]
    suggested_filename: str

    @property
    def status_code(self) -> int:
        return 206 if self.content_range else 200


def parse_file_id(file_id: str | uuid.UUID) -> uuid.UUID:
    if isinstance(file_id, uuid.UUID):
        return file_id
    try:
        return uuid.UUID(str(file_id))
    except ValueError:
        raise InvalidFileId()


async def find_file_record(db: AsyncSession, file_id: str | uuid.UUID) -> FileRecord:
    """Load a FileRecord or raise InvalidFileId / NotFoundError."""
    record = await db.get(FileRecord, parse_file_id(file_id))
    if record is None:
        raise NotFoundError("File not found")
    return record


class RetrievalPipeline:
    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def check_owner(self, record: FileRecord) -> None:
        """Records written by another backend cannot be served by this deployment."""
        if record.storage_provider != self.storage.provider.value:
            raise StorageUnavailableError(
                f"Storage provider '{record.storage_provider}' is not configured"
            )

    async def retrieve(
        self,
        db: AsyncSession,
        file_id: str | uuid.UUID,
        range_header: Optional[str] = None,
    ) -> RetrievedFile:
        record = await find_file_record(db, file_id)
        self.storage.ensure_available()
        self.check_owner(record)

        # file_size equals the bytes verified at upload time
        try:
            byte_range = parse_range_header(range_header, record.file_size)
        except RangeNotSatisfiableError:
            # A missing blob is a 404 whatever range was asked for
            if not await self.storage.exists(record.storage_key):
                await self.prune_dangling(db, record)
                raise NotFoundError("File not found in storage")
            raise
        try:
            blob = await self.storage.get(record.storage_key, byte_range)
        except NotFoundError:
            await self.prune_dangling(db, record)
            raise NotFoundError("File not found in storage")

        return RetrievedFile(
            stream=blob.stream,
            content_type=record.mime_type,
            content_length=blob.content_length,
            total_length=blob.total_length,
            content_range=blob.content_range,
            suggested_filename=sanitize_filename(record.original_name),
        )

    async def prune_dangling(self, db: AsyncSession, record: FileRecord) -> None:
        """Remove a record whose blob is gone (the sweep would do it later)."""
        record_id, storage_key = record.id, record.storage_key
        await db.delete(record)
        await db.commit()
        logger.warning("Pruned file record %s: blob %s is missing", record_id, storage_key)
