"""Upload pipeline: validate, persist the blob, then record it.

States run RECEIVING -> VALIDATING -> PERSISTING -> RECORDING -> COMMITTED,
or end in FAILED from any of them. A FileRecord is inserted only after the
backend has confirmed a size-verified write. Once a blob has been stored,
every failure (including cancellation on client disconnect or timeout)
triggers exactly one awaited cleanup delete whose own failure is logged but
never replaces the original error.
"""
import asyncio
import enum
import logging
from typing import AsyncIterable, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from archive.models.file_record import FileRecord
from archive.services.classification import Classification, ClassificationResolver
from archive.services.errors import (
    ArchiveError,
    PayloadTooLarge,
    StorageWriteError,
    UnsupportedMediaType,
)
from archive.services.filenames import sanitize_filename
from archive.services.storage.base import StorageBackend

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
DEFAULT_MAX_BYTES = 50 * 1024 * 1024


class UploadState(str, enum.Enum):
    RECEIVING = "receiving"
    VALIDATING = "validating"
    PERSISTING = "persisting"
    RECORDING = "recording"
    COMMITTED = "committed"
    FAILED = "failed"


class SizeLimitedStream:
    """Raise PayloadTooLarge as soon as more than ``max_bytes`` have passed."""

    def __init__(self, source: AsyncIterable[bytes], max_bytes: int):
        self.source = source
        self.max_bytes = max_bytes
        self.count = 0
        self.exceeded = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        async for chunk in self.source:
            self.count += len(chunk)
            if self.count > self.max_bytes:
                self.exceeded = True
                raise PayloadTooLarge(_too_large_message(self.max_bytes))
            yield chunk


def _too_large_message(max_bytes: int) -> str:
    return f"File exceeds the maximum upload size of {max_bytes // (1024 * 1024)} MB"


class UploadPipeline:
    def __init__(
        self,
        storage: StorageBackend,
        resolver: Optional[ClassificationResolver] = None,
        max_bytes: int = DEFAULT_MAX_BYTES,
        allowed_mime_types: Optional[set[str]] = None,
        timeout: Optional[float] = None,
    ):
        self.storage = storage
        self.resolver = resolver or ClassificationResolver()
        self.max_bytes = max_bytes
        self.allowed_mime_types = allowed_mime_types or {PDF_MIME_TYPE}
        self.timeout = timeout
        self.state = UploadState.RECEIVING

    async def upload(
        self,
        db: AsyncSession,
        stream: AsyncIterable[bytes],
        declared_mime_type: Optional[str],
        classification: Classification,
        original_name: Optional[str],
        expected_size: Optional[int] = None,
    ) -> FileRecord:
        """Store one PDF and return its committed FileRecord."""
        self.state = UploadState.RECEIVING
        try:
            self.state = UploadState.VALIDATING
            if declared_mime_type not in self.allowed_mime_types:
                raise UnsupportedMediaType()
            classification = classification.cleaned()
            if expected_size is not None and expected_size > self.max_bytes:
                raise PayloadTooLarge(_too_large_message(self.max_bytes))
            await self.resolver.find_semester_id(db, classification.semester)
            display_name = sanitize_filename(original_name)
            self.storage.ensure_available()

            self.state = UploadState.PERSISTING
            stored = await self._persist(stream, display_name, declared_mime_type, expected_size)

            self.state = UploadState.RECORDING
            try:
                resolved = await self.resolver.resolve(db, classification)
                record = FileRecord(
                    original_name=display_name,
                    storage_key=stored.storage_key,
                    storage_provider=self.storage.provider.value,
                    file_size=stored.bytes_written,
                    mime_type=declared_mime_type,
                    semester_id=resolved.semester_id,
                    type_id=resolved.type_id,
                    subject_id=resolved.subject_id,
                    year_id=resolved.year_id,
                )
                db.add(record)
                await db.commit()
                await db.refresh(record)
            except BaseException:
                await db.rollback()
                await self._cleanup(stored.storage_key)
                raise

            self.state = UploadState.COMMITTED
            logger.info(
                "Uploaded %s (%d bytes) as %s via %s",
                record.id, record.file_size, stored.storage_key, self.storage.provider.value,
            )
            return record
        except BaseException as e:
            failed_in = self.state
            self.state = UploadState.FAILED
            logger.warning("Upload failed during %s: %s", failed_in.value, str(e) or type(e).__name__)
            raise

    async def _persist(self, stream, display_name, content_type, expected_size):
        limited = SizeLimitedStream(stream, self.max_bytes)
        try:
            return await asyncio.wait_for(
                self.storage.put(limited, display_name, content_type, expected_size),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise StorageWriteError("Upload timed out") from e
        except Exception as e:
            # Backends may wrap the size error raised inside their write loop
            if limited.exceeded and not isinstance(e, PayloadTooLarge):
                raise PayloadTooLarge(_too_large_message(self.max_bytes)) from e
            if not isinstance(e, ArchiveError):
                raise StorageWriteError() from e
            raise

    async def _cleanup(self, storage_key: str) -> None:
        try:
            deleted = await self.storage.delete(storage_key)
        except Exception as e:
            logger.error("Cleanup of blob %s raised: %s", storage_key, e)
            return
        if deleted:
            logger.info("Rolled back blob %s after failed upload", storage_key)
        else:
            logger.error("Cleanup of blob %s failed, blob left orphaned", storage_key)
