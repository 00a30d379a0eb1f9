"""Custom exception classes for the git-backed broker store."""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for different types of failures."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Repository errors
    REPOSITORY_ERROR = "REPOSITORY_ERROR"
    SYNC_FAILED = "SYNC_FAILED"
    PUSH_FAILED = "PUSH_FAILED"

    # Record errors
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    INSTANCE_CONFLICT = "INSTANCE_CONFLICT"
    DECODE_FAILED = "DECODE_FAILED"


class GitOpsBrokerError(Exception):
    """Base exception class for the broker store."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        """Initialize the exception.

        Args:
            message: Human-readable error message
            error_code: Specific error code for the failure
            details: Additional context about the error
            cause: The underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    @property
    def retryable(self) -> bool:
        """Whether repeating the same request may succeed."""
        return self.error_code in (ErrorCode.SYNC_FAILED, ErrorCode.PUSH_FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            'error': self.error_code.value,
            'message': self.message,
            'details': self.details
        }

        if self.cause:
            result['cause'] = str(self.cause)

        return result

    def __str__(self) -> str:
        """String representation of the exception."""
        base_str = f"{self.error_code.value}: {self.message}"

        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            base_str += f" ({details_str})"

        if self.cause:
            base_str += f" [caused by: {self.cause}]"

        return base_str


class ValidationError(GitOpsBrokerError):
    """Exception for validation failures."""

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None):
        details = {}
        if field:
            details['field'] = field
        if value is not None:
            details['value'] = str(value)

        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            details=details
        )


class ConfigurationError(GitOpsBrokerError):
    """Exception for configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        details = {}
        if config_key:
            details['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            details=details
        )


class RepositoryError(GitOpsBrokerError):
    """The local working copy could not be opened, cloned or initialized."""

    def __init__(self, message: str, path: Optional[str] = None, cause: Optional[Exception] = None):
        details = {}
        if path:
            details['path'] = path

        super().__init__(
            message=message,
            error_code=ErrorCode.REPOSITORY_ERROR,
            details=details,
            cause=cause
        )


class SyncError(GitOpsBrokerError):
    """Local and remote history could not be reconciled by a pull."""

    def __init__(self, message: str, remote: Optional[str] = None, cause: Optional[Exception] = None):
        details = {}
        if remote:
            details['remote'] = remote

        super().__init__(
            message=message,
            error_code=ErrorCode.SYNC_FAILED,
            details=details,
            cause=cause
        )


class PushError(GitOpsBrokerError):
    """Push was rejected and the single pull-and-retry also failed."""

    def __init__(self, message: str, remote: Optional[str] = None, cause: Optional[Exception] = None):
        details = {}
        if remote:
            details['remote'] = remote

        super().__init__(
            message=message,
            error_code=ErrorCode.PUSH_FAILED,
            details=details,
            cause=cause
        )


class NotFoundError(GitOpsBrokerError):
    """Exception for when a service instance has no record."""

    def __init__(self, instance_id: str):
        super().__init__(
            message=f"Service instance '{instance_id}' not found",
            error_code=ErrorCode.INSTANCE_NOT_FOUND,
            details={'instance_id': instance_id}
        )
        self.instance_id = instance_id


class ConflictError(GitOpsBrokerError):
    """Exception for requests that contradict the stored record."""

    def __init__(self, message: str, instance_id: Optional[str] = None):
        details = {}
        if instance_id:
            details['instance_id'] = instance_id

        super().__init__(
            message=message,
            error_code=ErrorCode.INSTANCE_CONFLICT,
            details=details
        )


class DecodeError(GitOpsBrokerError):
    """On-disk content is present but malformed or schema-invalid."""

    def __init__(self, message: str, path: Optional[str] = None, cause: Optional[Exception] = None):
        details = {}
        if path:
            details['path'] = path

        super().__init__(
            message=message,
            error_code=ErrorCode.DECODE_FAILED,
            details=details,
            cause=cause
        )


def format_error_response(error: Exception) -> Dict[str, Any]:
    """Format an exception into a standardized error response."""
    if isinstance(error, GitOpsBrokerError):
        return error.to_dict()

    return {
        'error': ErrorCode.INTERNAL_ERROR.value,
        'message': str(error),
        'details': {}
    }
