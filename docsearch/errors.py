"""
Error Taxonomy
Application errors with a stable machine-readable code and HTTP status.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    FILE_PROCESSING_ERROR = "FILE_PROCESSING_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.FILE_PROCESSING_ERROR: 422,
    ErrorCode.INTERNAL_ERROR: 500,
}


class AppError(Exception):
    """Base class for errors that are rendered to API clients."""

    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE[self.code]

    def to_payload(self) -> Dict[str, Any]:
        """Uniform error body: {success: false, error: {message, code, details?}}."""
        error: Dict[str, Any] = {"message": self.message, "code": self.code.value}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(AppError):
    code = ErrorCode.VALIDATION_ERROR


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, identifier: Optional[str] = None):
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message)


class ExternalServiceError(AppError):
    code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(self, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{service} error: {message}", details)
        self.service = service


class DatabaseError(AppError):
    code = ErrorCode.DATABASE_ERROR

    def __init__(self, operation: str):
        super().__init__(f"Database {operation} failed")
        self.operation = operation


class FileProcessingError(AppError):
    code = ErrorCode.FILE_PROCESSING_ERROR

    def __init__(self, operation: str, filename: Optional[str] = None):
        if filename:
            message = f"File processing failed for '{filename}': {operation}"
        else:
            message = f"File processing failed: {operation}"
        super().__init__(message, {"operation": operation, "filename": filename} if filename else None)
        self.operation = operation
        self.filename = filename


class InternalError(AppError):
    code = ErrorCode.INTERNAL_ERROR
