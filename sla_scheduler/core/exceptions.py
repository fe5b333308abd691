"""
Custom exceptions for the SLA scheduler.
Provides meaningful error types for different failure scenarios.
"""
from typing import Any, Optional


class SchedulerException(Exception):
    """Base exception for all scheduler errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(SchedulerException):
    """Raised when a job or policy definition is invalid."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details, status_code=422)


class DatabaseError(SchedulerException):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=500)


class UnknownDocumentTypeError(SchedulerException):
    """Raised when a document type has no registered table."""

    def __init__(self, document_type: Any):
        super().__init__(
            f"No table registered for document type '{document_type}'",
            {"document_type": str(document_type)},
            status_code=500
        )
