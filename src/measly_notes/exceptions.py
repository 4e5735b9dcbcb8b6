"""Custom exceptions for the Measly Notes core.

Provides a structured exception hierarchy with error codes and
machine-readable error information for the operation surface.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001

    # Tag errors (3xxx)
    TAG_NOT_FOUND = 3001
    TAG_INVALID = 3002
    TAG_PROTECTED = 3003

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    INDEX_FAILED = 4007

    # Reconciliation (45xx)
    RECONCILE_STAT_FAILED = 4501
    RECONCILE_RENAME_FAILED = 4502
    RECONCILE_READ_FAILED = 4503
    RECONCILE_UPDATE_FAILED = 4504

    # Search errors (5xxx)
    SEARCH_FAILED = 5001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_ID = 7002
    INVALID_PAGE = 7003


class MeaslyNotesError(Exception):
    """Base exception for all Measly Notes errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
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
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ValidationError(MeaslyNotesError):
    """Raised for malformed caller input, before storage is touched."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class NotFoundError(MeaslyNotesError):
    """Raised when an operation addresses a nonexistent note or tag."""


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id},
        )
        self.note_id = note_id


class TagNotFoundError(NotFoundError):
    """Raised when a tag cannot be found."""

    def __init__(self, tag_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Tag with ID '{tag_id}' not found",
            code=ErrorCode.TAG_NOT_FOUND,
            details={"tag_id": tag_id},
        )
        self.tag_id = tag_id


class ProtectedTagError(MeaslyNotesError):
    """Raised on an attempt to rename a protected tag (or rename onto one)."""

    def __init__(self, tag_name: str, message: Optional[str] = None):
        super().__init__(
            message or f"Tag '{tag_name}' is protected and cannot be renamed",
            code=ErrorCode.TAG_PROTECTED,
            details={"tag_name": tag_name},
        )
        self.tag_name = tag_name


class StorageError(MeaslyNotesError):
    """Raised for storage, file or index failures."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.replace("\\", "/").split("/")[-1]
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class SearchError(StorageError):
    """Raised when every search strategy, including the manual scan, failed."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            operation="search",
            code=ErrorCode.SEARCH_FAILED,
            original_error=original_error,
        )
        self.query = query
        if query:
            self.details["query"] = query[:100]


class ReconcileWarning(MeaslyNotesError):
    """A non-fatal per-file problem met during reconciliation.

    Instances are collected on the reconcile result rather than raised, so a
    single unreadable or unrenamable file never stops the remaining files
    from being reconciled.
    """

    def __init__(
        self,
        message: str,
        path: str,
        code: ErrorCode = ErrorCode.RECONCILE_RENAME_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"file": path.replace("\\", "/").split("/")[-1]}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=code, details=details)
        self.path = path
        self.original_error = original_error
