"""File request/response schemas."""
from datetime import datetime
from typing import Optional

from archive.schemas.base import CamelModel, CamelORMModel


class FileResponse(CamelORMModel):
    id: str
    original_name: str
    storage_provider: str
    file_size: int
    mime_type: str
    semester_id: str
    type_id: str
    subject_id: str
    year_id: str
    uploaded_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    view_url: str
    download_url: str


class FileInfoResponse(FileResponse):
    """File record with its classification names and blob presence."""
    semester: Optional[str] = None
    type: Optional[str] = None
    subject: Optional[str] = None
    year: Optional[str] = None
    exists: bool
    stream_url: str


class FileUpdate(CamelModel):
    """Metadata-only update. Classification fields re-point the record."""
    original_name: Optional[str] = None
    semester: Optional[str] = None
    type: Optional[str] = None
    subject: Optional[str] = None
    year: Optional[str] = None


class FileDeleteResponse(CamelModel):
    id: str
    database_deleted: bool
    blob_deleted: bool
