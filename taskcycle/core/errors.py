"""Engine exceptions and their classification into host-facing responses."""

from enum import Enum

from pydantic import BaseModel


class TaskcycleError(Exception):
    """Base class for all errors raised by the lifecycle engine."""


class ValidationError(TaskcycleError):
    """Input rejected before any state was mutated (difficulty, name, deadline)."""


class Forbidden(TaskcycleError):
    """Acting user is not allowed to perform the operation on this task."""

    def __init__(self, message: str, *, task_id: str | None = None, user_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.user_id = user_id


class NotFound(TaskcycleError, KeyError):
    """Task or stats row does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class StorageUnavailable(TaskcycleError):
    """Backing store timed out or failed."""


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_FORBIDDEN = "ERR_FORBIDDEN"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_STORAGE_UNAVAILABLE = "ERR_STORAGE_UNAVAILABLE"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an engine error and return a structured response with a recovery suggestion.

    Args:
        exception: The exception raised by a controller operation

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, ValidationError):
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            message=str(exception) or "The task details are not valid.",
            suggestion="Check the name, difficulty (1-5) and that the deadline is in the future.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, Forbidden):
        return ErrorResponse(
            code=ErrorCode.ERR_FORBIDDEN,
            message="Only the assigned member can complete this task.",
            suggestion="Ask the assignee to complete it, or reassign the task first.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, NotFound):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_FOUND,
            message="That task no longer exists.",
            suggestion="Refresh the task list and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, StorageUnavailable | TimeoutError | ConnectionError):
        return ErrorResponse(
            code=ErrorCode.ERR_STORAGE_UNAVAILABLE,
            message="Task storage is temporarily unavailable.",
            suggestion="Your change is kept locally and will sync on the next refresh.",
            severity=ErrorSeverity.HIGH,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
