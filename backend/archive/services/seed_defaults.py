"""Seed the fixed semesters on startup.

Idempotent: only semesters missing from the table are inserted.
"""
import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from archive.models.hierarchy import Semester

logger = logging.getLogger(__name__)

DEFAULT_SEMESTERS = [
    {"name": "S1", "display_name": "Semestre 1", "order": 1},
    {"name": "S2", "display_name": "Semestre 2", "order": 2},
    {"name": "S3", "display_name": "Semestre 3", "order": 3},
    {"name": "S4", "display_name": "Semestre 4", "order": 4},
    {"name": "S5", "display_name": "Semestre 5", "order": 5},
]


async def seed_semesters(session: AsyncSession) -> None:
    """Insert any missing default semester."""
    result = await session.execute(select(Semester.name))
    existing = set(result.scalars().all())
    missing = [s for s in DEFAULT_SEMESTERS if s["name"] not in existing]
    if not missing:
        logger.info("Found %d existing semesters, skipping initialization", len(existing))
        return
    for s in missing:
        session.add(Semester(**s))
    await session.commit()
    logger.info("Seeded %d semesters", len(missing))
