"""Maintenance routes."""
from fastapi import APIRouter, Depends

from archive.dependencies import get_storage, get_sweep
from archive.schemas.common import SweepResponse
from archive.services.cleanup_sweep import CleanupSweep
from archive.services.errors import SweepInProgressError
from archive.services.storage.base import StorageBackend

router = APIRouter(prefix="/api/maintenance", tags=["maintenance"])


@router.post("/sweep", response_model=SweepResponse)
async def run_cleanup_sweep(
    sweep: CleanupSweep = Depends(get_sweep),
    storage: StorageBackend = Depends(get_storage),
):
    """Remove file records whose blob is missing, now."""
    storage.ensure_available()
    report = await sweep.run()
    if report is None:
        raise SweepInProgressError()
    return {"checked": report.checked, "removed": report.removed, "errors": report.errors}
