"""Shared Pydantic schemas."""
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    message: str


class SweepResponse(BaseModel):
    checked: int
    removed: int
    errors: int
