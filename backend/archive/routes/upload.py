"""Upload API route."""
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from archive.config import settings
from archive.database import get_db
from archive.dependencies import get_storage
from archive.routes.files import file_to_response
from archive.schemas.file import FileResponse
from archive.services.classification import Classification
from archive.services.errors import ValidationError
from archive.services.storage.base import READ_CHUNK_SIZE, StorageBackend
from archive.services.upload import UploadPipeline

router = APIRouter(prefix="/api/upload", tags=["upload"])


async def iter_upload(upload: UploadFile, chunk_size: int = READ_CHUNK_SIZE) -> AsyncIterator[bytes]:
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            break
        yield chunk


@router.post("", response_model=FileResponse, status_code=201)
async def upload_file(
    pdf: Optional[UploadFile] = File(None),
    semester: Optional[str] = Form(None),
    doc_type: Optional[str] = Form(None, alias="type"),
    subject: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    display_name: Optional[str] = Form(None, alias="displayName"),
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
):
    """Upload a PDF under semester/type/subject/year and create its file record."""
    if pdf is None:
        raise ValidationError("No PDF file uploaded")

    pipeline = UploadPipeline(
        storage,
        max_bytes=settings.MAX_UPLOAD_BYTES,
        allowed_mime_types=settings.allowed_mime_types,
        timeout=settings.UPLOAD_TIMEOUT_SECONDS,
    )
    try:
        record = await pipeline.upload(
            db,
            iter_upload(pdf),
            declared_mime_type=pdf.content_type,
            classification=Classification(
                semester=semester, type=doc_type, subject=subject, year=year,
            ),
            original_name=display_name or pdf.filename,
            expected_size=pdf.size,
        )
    finally:
        await pdf.close()
    return file_to_response(record)
