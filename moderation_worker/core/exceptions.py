"""
Custom exceptions for the moderation worker.

Each exception type maps to one class of failure in the moderation pipeline.
The status code table at the bottom decides whether the event delivery system
sees a terminal client error (no redelivery) or a server error (redelivery).
"""

from typing import Optional, Dict, Any


class ModerationWorkerException(Exception):
    """Base exception for all moderation worker errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "MODERATION_WORKER_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class MalformedEventException(ModerationWorkerException):
    """Exception raised when an inbound event body cannot be parsed."""

    def __init__(
        self,
        message: str = "Event body is not a JSON object",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="MALFORMED_EVENT",
            details=details
        )


class ClassificationException(ModerationWorkerException):
    """Exception raised when the safety classifier is unreachable or errors."""

    def __init__(
        self,
        message: str,
        provider: str = "vision",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CLASSIFICATION_FAILED",
            details={**(details or {}), "provider": provider}
        )


class StoreOperationException(ModerationWorkerException):
    """Exception raised when an object store call fails."""

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "STORE_OPERATION_FAILED"
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details={**(details or {}), "operation": operation}
        )


class ObjectNotFoundException(StoreOperationException):
    """Exception raised when the addressed object does not exist."""

    def __init__(
        self,
        bucket: str,
        key: str,
        operation: str = "unknown"
    ):
        super().__init__(
            message=f"Object gs://{bucket}/{key} not found",
            operation=operation,
            details={"bucket": bucket, "object_key": key},
            error_code="OBJECT_NOT_FOUND"
        )
        self.bucket = bucket
        self.key = key


class PreconditionFailedException(StoreOperationException):
    """Exception raised when a generation precondition on an object fails."""

    def __init__(
        self,
        bucket: str,
        key: str,
        operation: str = "unknown"
    ):
        super().__init__(
            message=f"Precondition failed for gs://{bucket}/{key}",
            operation=operation,
            details={"bucket": bucket, "object_key": key},
            error_code="PRECONDITION_FAILED"
        )
        self.bucket = bucket
        self.key = key


class DatabaseException(ModerationWorkerException):
    """Exception raised when document store operations fail."""

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="DATABASE_ERROR",
            details={**(details or {}), "operation": operation}
        )


class ConfigurationException(ModerationWorkerException):
    """Exception raised when required configuration is missing."""

    def __init__(
        self,
        message: str,
        setting: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details={**(details or {}), "setting": setting}
        )


class InvocationTimeoutException(ModerationWorkerException):
    """Exception raised when an invocation exceeds its deadline."""

    def __init__(
        self,
        timeout_seconds: float,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=f"Invocation exceeded {timeout_seconds}s deadline",
            error_code="INVOCATION_TIMEOUT",
            details={**(details or {}), "timeout_seconds": timeout_seconds}
        )


# Exception to HTTP status code mapping
EXCEPTION_STATUS_MAPPING = {
    MalformedEventException: 400,  # Bad Request, never redelivered
    ClassificationException: 503,  # Service Unavailable
    StoreOperationException: 502,  # Bad Gateway
    ObjectNotFoundException: 502,
    PreconditionFailedException: 502,
    DatabaseException: 500,  # Internal Server Error
    ConfigurationException: 500,
    InvocationTimeoutException: 504,  # Gateway Timeout
}


def status_code_for(exception: ModerationWorkerException) -> int:
    """Return the HTTP status code for an exception, defaulting to 500."""
    return EXCEPTION_STATUS_MAPPING.get(exception.__class__, 500)
