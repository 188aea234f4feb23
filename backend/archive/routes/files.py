"""Files API routes: streaming view/download, info, metadata update, delete."""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from archive.database import get_db
from archive.dependencies import get_storage
from archive.models.file_record import FileRecord
from archive.models.hierarchy import DocumentType, Semester, Subject, Year
from archive.schemas.file import FileDeleteResponse, FileInfoResponse, FileResponse, FileUpdate
from archive.services.classification import Classification, ClassificationResolver
from archive.services.errors import ArchiveError, ValidationError
from archive.services.filenames import content_disposition, sanitize_filename
from archive.services.retrieval import RetrievalPipeline, find_file_record
from archive.services.storage.base import StorageBackend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])

CLASSIFICATION_FIELDS = ("semester", "type", "subject", "year")


@router.get("/{file_id}/view")
async def view_file(
    file_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
):
    """Stream a file for inline display. Supports Range requests."""
    return await _serve(file_id, request, "inline", db, storage)


@router.get("/{file_id}/stream")
async def stream_file(
    file_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
):
    """Alias of /view kept for mobile clients."""
    return await _serve(file_id, request, "inline", db, storage)


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
):
    """Stream a file as an attachment. Supports Range requests."""
    return await _serve(file_id, request, "attachment", db, storage)


async def _serve(
    file_id: str,
    request: Request,
    disposition: str,
    db: AsyncSession,
    storage: StorageBackend,
):
    record = await find_file_record(db, file_id)
    if record.storage_provider == storage.provider.value:
        url = storage.direct_url(record.storage_key, download=disposition == "attachment")
        if url:
            return RedirectResponse(url, status_code=307)

    retrieved = await RetrievalPipeline(storage).retrieve(db, record.id, request.headers.get("range"))
    headers = {
        "Accept-Ranges": "bytes",
        "Content-Length": str(retrieved.content_length),
        "Content-Disposition": content_disposition(disposition, retrieved.suggested_filename),
        "Cache-Control": "no-cache",
        "X-Content-Type-Options": "nosniff",
    }
    if retrieved.content_range:
        headers["Content-Range"] = retrieved.content_range
    return StreamingResponse(
        retrieved.stream,
        status_code=retrieved.status_code,
        media_type=retrieved.content_type,
        headers=headers,
    )


@router.get("/{file_id}/info", response_model=FileInfoResponse)
async def get_file_info(
    file_id: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
):
    """File record with classification names and whether its blob exists."""
    record = await find_file_record(db, file_id)
    exists = False
    if record.storage_provider == storage.provider.value and storage.available:
        try:
            exists = await storage.exists(record.storage_key)
        except ArchiveError as e:
            logger.warning("Could not check blob of %s: %s", record.id, e)

    return {
        **file_to_response(record),
        **await _classification_names(db, record),
        "exists": exists,
        "stream_url": f"/api/files/{record.id}/stream",
    }


@router.put("/{file_id}", response_model=FileResponse)
async def update_file(
    file_id: str,
    body: FileUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update display name and/or re-point the classification.

    The stored bytes and storage key never change.
    """
    record = await find_file_record(db, file_id)
    update_data = body.model_dump(exclude_unset=True)

    if any(field in update_data for field in CLASSIFICATION_FIELDS):
        current = await _classification_names(db, record)
        for field in CLASSIFICATION_FIELDS:
            if field in update_data:
                current[field] = update_data[field]
        resolved = await ClassificationResolver().resolve(db, Classification(**current))
        # The resolver may have rolled back, expiring the record
        await db.refresh(record)
        record.semester_id = resolved.semester_id
        record.type_id = resolved.type_id
        record.subject_id = resolved.subject_id
        record.year_id = resolved.year_id

    if "original_name" in update_data:
        if not update_data["original_name"]:
            raise ValidationError("originalName cannot be empty")
        record.original_name = sanitize_filename(update_data["original_name"])

    await db.commit()
    await db.refresh(record)
    return file_to_response(record)


@router.delete("/{file_id}", response_model=FileDeleteResponse)
async def delete_file(
    file_id: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
):
    """Delete a file record and, best-effort, its blob.

    The record is removed even when the blob delete fails; an orphan blob is
    acceptable, a record pointing at nothing is not.
    """
    record = await find_file_record(db, file_id)

    blob_deleted = False
    if record.storage_provider != storage.provider.value or not storage.available:
        logger.warning("Blob %s not deleted: its storage backend is not active", record.storage_key)
    else:
        try:
            blob_deleted = await storage.delete(record.storage_key)
        except Exception as e:
            logger.error("Blob delete for %s raised: %s", record.id, e)

    record_id = str(record.id)
    await db.delete(record)
    await db.commit()
    logger.info("Deleted file %s (blob deleted: %s)", record_id, blob_deleted)

    return {"id": record_id, "database_deleted": True, "blob_deleted": blob_deleted}


async def _classification_names(db: AsyncSession, record: FileRecord) -> dict:
    semester = await db.get(Semester, record.semester_id)
    doc_type = await db.get(DocumentType, record.type_id)
    subject = await db.get(Subject, record.subject_id)
    year = await db.get(Year, record.year_id)
    return {
        "semester": semester.name if semester else None,
        "type": doc_type.name if doc_type else None,
        "subject": subject.name if subject else None,
        "year": year.year if year else None,
    }


def file_to_response(record: FileRecord) -> dict:
    """Convert SQLAlchemy model to response dict."""
    return {
        "id": str(record.id),
        "original_name": record.original_name,
        "storage_provider": record.storage_provider,
        "file_size": record.file_size,
        "mime_type": record.mime_type,
        "semester_id": str(record.semester_id),
        "type_id": str(record.type_id),
        "subject_id": str(record.subject_id),
        "year_id": str(record.year_id),
        "uploaded_at": record.uploaded_at,
        "updated_at": record.updated_at,
        "view_url": f"/api/files/{record.id}/view",
        "download_url": f"/api/files/{record.id}/download",
    }
