"""Classification hierarchy browsing routes (semesters, types, subjects, years)."""
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from archive.database import get_db
from archive.models.file_record import FileRecord
from archive.models.hierarchy import DocumentType, Semester, Subject, Year
from archive.routes.files import file_to_response
from archive.schemas.file import FileResponse
from archive.schemas.hierarchy import SemesterResponse, SubjectResponse, TypeResponse, YearResponse

router = APIRouter(prefix="/api", tags=["hierarchy"])


@router.get("/semesters", response_model=list[SemesterResponse])
async def list_semesters(db: AsyncSession = Depends(get_db)):
    """List all semesters in order."""
    result = await db.execute(select(Semester).order_by(Semester.order))
    return [
        {"id": str(s.id), "name": s.name, "display_name": s.display_name, "order": s.order}
        for s in result.scalars().all()
    ]


@router.get("/semesters/{semester_id}/types", response_model=list[TypeResponse])
async def list_types(semester_id: UUID, db: AsyncSession = Depends(get_db)):
    """List the document types of a semester."""
    result = await db.execute(
        select(DocumentType)
        .where(DocumentType.semester_id == semester_id, DocumentType.is_active.is_(True))
        .order_by(DocumentType.order, DocumentType.name)
    )
    return [
        {
            "id": str(t.id),
            "name": t.name,
            "display_name": t.display_name,
            "semester_id": str(t.semester_id),
            "order": t.order,
        }
        for t in result.scalars().all()
    ]


@router.get("/semesters/{semester_id}/types/{type_id}/subjects", response_model=list[SubjectResponse])
async def list_subjects(semester_id: UUID, type_id: UUID, db: AsyncSession = Depends(get_db)):
    """List the subjects under a semester and type."""
    result = await db.execute(
        select(Subject)
        .where(
            Subject.semester_id == semester_id,
            Subject.type_id == type_id,
            Subject.is_active.is_(True),
        )
        .order_by(Subject.name)
    )
    return [
        {
            "id": str(s.id),
            "name": s.name,
            "display_name": s.display_name,
            "semester_id": str(s.semester_id),
            "type_id": str(s.type_id),
            "code": s.code,
            "description": s.description,
        }
        for s in result.scalars().all()
    ]


@router.get(
    "/semesters/{semester_id}/types/{type_id}/subjects/{subject_id}/years",
    response_model=list[YearResponse],
)
async def list_years(
    semester_id: UUID,
    type_id: UUID,
    subject_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """List the years of a subject, newest first."""
    result = await db.execute(
        select(Year)
        .where(
            Year.semester_id == semester_id,
            Year.type_id == type_id,
            Year.subject_id == subject_id,
        )
        .order_by(desc(Year.year))
    )
    return [
        {
            "id": str(y.id),
            "year": y.year,
            "semester_id": str(y.semester_id),
            "type_id": str(y.type_id),
            "subject_id": str(y.subject_id),
        }
        for y in result.scalars().all()
    ]


@router.get("/years/{year_id}/files", response_model=list[FileResponse])
async def list_year_files(year_id: UUID, db: AsyncSession = Depends(get_db)):
    """List the files filed under a year."""
    result = await db.execute(
        select(FileRecord)
        .where(FileRecord.year_id == year_id)
        .order_by(desc(FileRecord.uploaded_at))
    )
    return [file_to_response(f) for f in result.scalars().all()]
