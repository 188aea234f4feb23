"""Archive error taxonomy.

Storage backends translate provider-specific failures (OSError, aiohttp and
SQLAlchemy errors) into these classes, so pipelines and routes only ever see
the kinds below. Messages are shown to clients and must not contain paths or
credentials.
"""


class ArchiveError(Exception):
    """Base class: carries a stable error kind and an HTTP status."""

    kind = "archive_error"
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.kind
        super().__init__(self.message)


class ValidationError(ArchiveError):
    """Invalid request."""
    kind = "validation_error"
    status_code = 400


class UnsupportedMediaType(ValidationError):
    """Only PDF files are allowed."""
    kind = "unsupported_media_type"


class MissingClassification(ValidationError):
    """Semester, type, subject and year are all required."""
    kind = "missing_classification"


class InvalidFileId(ValidationError):
    """Invalid file id."""
    kind = "invalid_file_id"


class PayloadTooLarge(ArchiveError):
    """File exceeds the maximum upload size."""
    kind = "payload_too_large"
    status_code = 413


class StorageWriteError(ArchiveError):
    """Failed to store the file."""
    kind = "storage_write_error"
    status_code = 500


class StorageUnavailableError(ArchiveError):
    """Storage backend is unavailable."""
    kind = "storage_unavailable"
    status_code = 503


class NotFoundError(ArchiveError):
    """File not found."""
    kind = "not_found"
    status_code = 404


class RangeNotSatisfiableError(ArchiveError):
    """Requested range not satisfiable."""
    kind = "range_not_satisfiable"
    status_code = 416

    def __init__(self, total_length: int, message: str = ""):
        self.total_length = total_length
        super().__init__(message)


class ConflictError(ArchiveError):
    """Could not resolve the classification after concurrent updates."""
    kind = "conflict"
    status_code = 500


class SweepInProgressError(ArchiveError):
    """A cleanup sweep is already running."""
    kind = "sweep_in_progress"
    status_code = 409
