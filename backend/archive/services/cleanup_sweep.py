"""Consistency sweep: remove FileRecords whose blob no longer exists.

Runs on startup and, when CLEANUP_SWEEP_INTERVAL is set, periodically as an
asyncio task within the FastAPI process. Only one sweep runs at a time; it
may overlap with ordinary uploads and downloads. Blobs without a record are
left alone, since listing a whole bucket is not something every backend can
do cheaply.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from archive.models.file_record import FileRecord
from archive.services.storage.base import StorageBackend

logger = logging.getLogger(__name__)

BATCH_SIZE = 200


@dataclass
class SweepReport:
    checked: int = 0
    removed: int = 0
    errors: int = 0


class CleanupSweep:
    def __init__(
        self,
        storage: StorageBackend,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int = BATCH_SIZE,
    ):
        self.storage = storage
        self.session_factory = session_factory
        self.batch_size = batch_size
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> Optional[SweepReport]:
        """Check every record owned by the active backend.

        Returns None without doing anything if a sweep is already in flight.
        """
        if self._lock.locked():
            logger.info("Cleanup sweep already running, skipping")
            return None
        async with self._lock:
            report = SweepReport()
            provider = self.storage.provider.value
            last_id = None
            while True:
                async with self.session_factory() as db:
                    query = (
                        select(FileRecord.id, FileRecord.storage_key)
                        .where(FileRecord.storage_provider == provider)
                        .order_by(FileRecord.id)
                        .limit(self.batch_size)
                    )
                    if last_id is not None:
                        query = query.where(FileRecord.id > last_id)
                    rows = (await db.execute(query)).all()
                if not rows:
                    break
                last_id = rows[-1].id

                missing = []
                for row in rows:
                    report.checked += 1
                    try:
                        if not await self.storage.exists(row.storage_key):
                            missing.append(row.id)
                    except Exception as e:
                        # Unknown is not absent: keep the record
                        report.errors += 1
                        logger.warning("Sweep could not check blob %s: %s", row.storage_key, e)

                if missing:
                    async with self.session_factory() as db:
                        await db.execute(delete(FileRecord).where(FileRecord.id.in_(missing)))
                        await db.commit()
                    for record_id in missing:
                        logger.warning("Sweep removed file record %s: blob missing", record_id)
                    report.removed += len(missing)

            logger.info(
                "Cleanup sweep finished: %d checked, %d removed, %d errors",
                report.checked, report.removed, report.errors,
            )
            return report


async def sweep_loop(sweep: CleanupSweep, interval: float):
    """Run the sweep every ``interval`` seconds until cancelled."""
    logger.info("Cleanup sweep loop started (every %.0fs)", interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Cleanup sweep failed: {e}")
