"""Classification hierarchy response schemas."""
from typing import Optional

from archive.schemas.base import CamelORMModel


class SemesterResponse(CamelORMModel):
    id: str
    name: str
    display_name: str
    order: int


class TypeResponse(CamelORMModel):
    id: str
    name: str
    display_name: str
    semester_id: str
    order: int = 0


class SubjectResponse(CamelORMModel):
    id: str
    name: str
    display_name: str
    semester_id: str
    type_id: str
    code: Optional[str] = None
    description: Optional[str] = None


class YearResponse(CamelORMModel):
    id: str
    year: str
    semester_id: str
    type_id: str
    subject_id: str
