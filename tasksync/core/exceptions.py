"""Custom exceptions."""
from typing import Optional
from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Resource not found exception."""

    def __init__(self, detail: Optional[str] = None):
        if detail is None:
            detail = "Resource not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class InvalidOperationError(HTTPException):
    """Operation not allowed in the current state."""

    def __init__(self, detail: Optional[str] = None):
        if detail is None:
            detail = "Invalid operation"
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NoConflictError(InvalidOperationError):
    """Conflict resolution requested but no conflict is flagged."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or "No conflict detected for this task")


class ValidationError(HTTPException):
    """Validation exception."""

    def __init__(self, detail: Optional[str] = None):
        if detail is None:
            detail = "Validation error"
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class InvalidInputError(ValidationError):
    """Missing or malformed input for a sync operation."""


class ConflictError(HTTPException):
    """Conflict exception."""

    def __init__(self, detail: Optional[str] = None):
        if detail is None:
            detail = "Resource conflict"
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class AlreadySyncedError(ConflictError):
    """Task already has an active calendar link."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or "Task is already synced with calendar")


class RemoteUnavailableError(HTTPException):
    """The remote calendar could not be reached or answered with an error."""

    def __init__(self, detail: Optional[str] = None):
        if detail is None:
            detail = "Calendar service unavailable"
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
