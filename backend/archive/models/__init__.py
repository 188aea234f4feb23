"""Import all models so SQLAlchemy metadata knows about them."""
from archive.models.base import Base
from archive.models.hierarchy import Semester, DocumentType, Subject, Year
from archive.models.file_record import FileRecord
from archive.models.blob import StoredBlob, BlobChunk

__all__ = [
    "Base",
    "Semester", "DocumentType", "Subject", "Year",
    "FileRecord", "StoredBlob", "BlobChunk",
]
