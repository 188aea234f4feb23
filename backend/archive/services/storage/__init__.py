"""Storage backends and the factory that picks one from settings."""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from archive.config import Settings
from archive.services.storage.base import (
    BlobStream,
    ByteRange,
    PutResult,
    StorageBackend,
    StorageProvider,
    connect_with_retry,
)
from archive.services.storage.db_blob import DatabaseBlobBackend
from archive.services.storage.local import LocalStorageBackend
from archive.services.storage.object_store import ObjectStorageBackend


def create_storage_backend(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> StorageBackend:
    """Build the single active backend named by STORAGE_BACKEND."""
    provider = StorageProvider(settings.STORAGE_BACKEND)
    if provider is StorageProvider.LOCAL:
        return LocalStorageBackend(settings.FILE_STORAGE_PATH)
    if provider is StorageProvider.OBJECT_STORAGE:
        return ObjectStorageBackend(
            cloud_name=settings.OBJECT_STORAGE_CLOUD_NAME,
            api_key=settings.OBJECT_STORAGE_API_KEY,
            api_secret=settings.OBJECT_STORAGE_API_SECRET,
            api_url=settings.OBJECT_STORAGE_API_URL,
            delivery_url=settings.OBJECT_STORAGE_DELIVERY_URL,
            folder=settings.OBJECT_STORAGE_FOLDER,
            delivery_mode=settings.OBJECT_STORAGE_DELIVERY,
            use_https=settings.OBJECT_STORAGE_FORCE_HTTPS,
        )
    return DatabaseBlobBackend(session_factory, chunk_size=settings.BLOB_CHUNK_SIZE)


__all__ = [
    "BlobStream", "ByteRange", "PutResult", "StorageBackend", "StorageProvider",
    "LocalStorageBackend", "ObjectStorageBackend", "DatabaseBlobBackend",
    "connect_with_retry", "create_storage_backend",
]
