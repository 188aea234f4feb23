"""Find-or-create resolution of the semester -> type -> subject -> year chain.

Semesters are seeded and must already exist. Each missing lower level is
inserted and committed on its own; when a concurrent request wins the race
for the same node the unique constraint rejects our insert, and we roll back
and re-read the winner's row. Created nodes are kept even if the upload that
created them later fails; they are reusable by future uploads.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from archive.models.hierarchy import DocumentType, Semester, Subject, Year
from archive.services.errors import ConflictError, MissingClassification, ValidationError

logger = logging.getLogger(__name__)

YEAR_PATTERN = re.compile(r"^\d{4}(-\d{4})?$")

TYPE_DISPLAY_NAMES = {
    "cours": "Cours",
    "tp": "Travaux Pratiques",
    "td": "Travaux Dirigés",
    "devoirs": "Devoirs",
    "compositions": "Compositions",
    "ratrapages": "Rattrapages",
}

MAX_RESOLVE_ATTEMPTS = 3

# Longest accepted value per field, taken from the column sizes
MAX_LENGTHS = {
    "semester": Semester.__table__.c.name.type.length,
    "type": DocumentType.__table__.c.name.type.length,
    "subject": Subject.__table__.c.name.type.length,
    "year": Year.__table__.c.year.type.length,
}


@dataclass
class Classification:
    semester: Optional[str] = None
    type: Optional[str] = None
    subject: Optional[str] = None
    year: Optional[str] = None

    def cleaned(self) -> "Classification":
        """Strip whitespace and check that every level is present and well-formed."""
        values = {
            field: (getattr(self, field) or "").strip()
            for field in ("semester", "type", "subject", "year")
        }
        missing = [field for field, value in values.items() if not value]
        if missing:
            raise MissingClassification(f"Missing classification fields: {', '.join(missing)}")
        for field, value in values.items():
            if len(value) > MAX_LENGTHS[field]:
                raise ValidationError(f"{field.capitalize()} must be at most {MAX_LENGTHS[field]} characters")
        if not YEAR_PATTERN.match(values["year"]):
            raise ValidationError("Year must look like 2024 or 2023-2024")
        return Classification(**values)


@dataclass
class ResolvedClassification:
    """Ids of the four hierarchy nodes a FileRecord points to."""
    semester_id: uuid.UUID
    type_id: uuid.UUID
    subject_id: uuid.UUID
    year_id: uuid.UUID


class ClassificationResolver:
    """Resolves a Classification into persisted hierarchy nodes.

    Only ids leave this class: a rollback after a lost race expires every
    instance loaded in the session.
    """

    def __init__(self, max_attempts: int = MAX_RESOLVE_ATTEMPTS):
        self.max_attempts = max_attempts

    async def find_semester_id(self, db: AsyncSession, name: str) -> uuid.UUID:
        semester_id = await db.scalar(select(Semester.id).where(Semester.name == name))
        if semester_id is None:
            raise ValidationError("Invalid semester")
        return semester_id

    async def resolve(self, db: AsyncSession, classification: Classification) -> ResolvedClassification:
        c = classification.cleaned()
        semester_id = await self.find_semester_id(db, c.semester)

        type_id = await self._find_or_create(
            db,
            select(DocumentType.id).where(
                DocumentType.name == c.type,
                DocumentType.semester_id == semester_id,
            ),
            lambda: DocumentType(
                name=c.type,
                display_name=TYPE_DISPLAY_NAMES.get(c.type, c.type),
                semester_id=semester_id,
            ),
        )
        subject_id = await self._find_or_create(
            db,
            select(Subject.id).where(
                Subject.name == c.subject,
                Subject.semester_id == semester_id,
                Subject.type_id == type_id,
            ),
            lambda: Subject(
                name=c.subject,
                display_name=c.subject,
                semester_id=semester_id,
                type_id=type_id,
            ),
        )
        year_id = await self._find_or_create(
            db,
            select(Year.id).where(
                Year.year == c.year,
                Year.semester_id == semester_id,
                Year.type_id == type_id,
                Year.subject_id == subject_id,
            ),
            lambda: Year(
                year=c.year,
                semester_id=semester_id,
                type_id=type_id,
                subject_id=subject_id,
            ),
        )
        return ResolvedClassification(
            semester_id=semester_id, type_id=type_id, subject_id=subject_id, year_id=year_id,
        )

    async def _find_or_create(self, db: AsyncSession, id_query, factory) -> uuid.UUID:
        for attempt in range(1, self.max_attempts + 1):
            node_id = await db.scalar(id_query)
            if node_id is not None:
                return node_id
            node = factory()
            node.id = uuid.uuid4()
            node_id = node.id
            db.add(node)
            try:
                await db.commit()
                return node_id
            except IntegrityError:
                # Another request inserted the same node first; re-read it
                await db.rollback()
                logger.info(
                    "Concurrent insert of %s, re-reading (attempt %d/%d)",
                    type(node).__name__, attempt, self.max_attempts,
                )
        raise ConflictError()
