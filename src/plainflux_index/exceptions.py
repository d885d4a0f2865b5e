"""Custom exceptions for the Plainflux index.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Not-found errors (1xxx)
    NOTE_NOT_FOUND = 1001
    TODO_NOT_FOUND = 1002
    BLOCK_NOT_FOUND = 1003

    # I/O errors (2xxx)
    IO_READ_FAILED = 2001
    IO_WRITE_FAILED = 2002

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_CONNECTION_FAILED = 4004
    FTS_CORRUPTED = 4007
    LOCK_POISONED = 4010

    # Search errors (5xxx)
    SEARCH_FAILED = 5001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    PATH_OUTSIDE_ROOT = 7005


class PlainfluxError(Exception):
    """Base exception for all index errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(PlainfluxError):
    """Raised when a note cannot be found on disk or in the index."""

    def __init__(self, note: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note '{note}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note": note}
        )
        self.note = note


class TodoNotFoundError(PlainfluxError):
    """Raised when no todo exists at the given note path and line."""

    def __init__(self, note_path: str, line_number: int):
        super().__init__(
            f"No todo at line {line_number}",
            code=ErrorCode.TODO_NOT_FOUND,
            details={"note_path": note_path, "line_number": line_number}
        )
        self.note_path = note_path
        self.line_number = line_number


class BlockNotFoundError(PlainfluxError):
    """Raised when a heading block cannot be found in a note."""

    def __init__(self, note_path: str, block_id: str):
        super().__init__(
            f"Block '{block_id}' not found in note",
            code=ErrorCode.BLOCK_NOT_FOUND,
            details={"note_path": note_path, "block_id": block_id}
        )
        self.note_path = note_path
        self.block_id = block_id


class IndexIOError(PlainfluxError):
    """Raised when a note file cannot be read or written."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.IO_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.path = path
        self.original_error = original_error


class StorageError(PlainfluxError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            details["path_hint"] = path.replace("\\", "/").split("/")[-1]
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class SearchError(PlainfluxError):
    """Raised for search-related errors."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        code: ErrorCode = ErrorCode.SEARCH_FAILED
    ):
        details = {}
        if query:
            details["query"] = query[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.query = query


class ValidationError(PlainfluxError):
    """Raised for malformed paths or arguments."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
