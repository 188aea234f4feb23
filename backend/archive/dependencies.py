"""FastAPI dependencies for objects owned by the application lifespan.

The storage backend and the cleanup sweep are built once at startup and kept
on ``app.state``; routes receive them through these dependencies.
"""
from fastapi import Request

from archive.services.cleanup_sweep import CleanupSweep
from archive.services.storage.base import StorageBackend


def get_storage(request: Request) -> StorageBackend:
    return request.app.state.storage


def get_sweep(request: Request) -> CleanupSweep:
    return request.app.state.sweep
