"""
Error taxonomy
Every failure leaving the pipeline is a SummarizationError carrying a kind,
a severity, a retryable flag and a generic user-facing message.
"""
from typing import Any, Dict, Optional
from enum import Enum


class ErrorKind(str, Enum):
    """Error kinds"""
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    EXTERNAL_API = "external_api"
    DATABASE = "database"
    AUTHENTICATION = "authentication"
    PROCESSING = "processing"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Error severity"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# kind -> (severity, retryable, user message)
ERROR_PROFILES: Dict[ErrorKind, tuple] = {
    ErrorKind.VALIDATION: (Severity.LOW, False, "Please check your input and try again."),
    ErrorKind.RATE_LIMIT: (Severity.LOW, True, "Too many requests. Please wait and try again."),
    ErrorKind.NETWORK: (Severity.MEDIUM, True, "Network connection issue. Please try again."),
    ErrorKind.EXTERNAL_API: (Severity.HIGH, True, "AI service temporarily unavailable. Please try again."),
    ErrorKind.DATABASE: (Severity.HIGH, True, "Service temporarily unavailable. Please try again."),
    ErrorKind.AUTHENTICATION: (Severity.MEDIUM, False, "Please log in again."),
    ErrorKind.PROCESSING: (Severity.MEDIUM, True, "Processing failed. Please try again."),
    ErrorKind.UNKNOWN: (Severity.MEDIUM, False, "An unexpected error occurred. Please try again."),
}


class SummarizationError(Exception):
    """Base error raised by the summarization pipeline"""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        """
        Args:
            message: internal message, logged but never shown to users
            kind: error kind, defaults to the class kind
            severity: overrides the kind's default severity
            retryable: overrides the kind's default retryable flag
            details: extra context; only `public_details` keys reach the caller
            correlation_id: id linking the log line and the user response
        """
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        default_severity, default_retryable, user_message = ERROR_PROFILES[self.kind]
        self.severity = severity or default_severity
        self.retryable = default_retryable if retryable is None else retryable
        self.user_message = user_message
        self.details = details or {}
        self.correlation_id = correlation_id

    # Detail keys that are safe to return to the caller
    public_details: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing representation with the generic message only"""
        payload = {
            "error_type": self.kind.value,
            "error_message": self.user_message,
            "retryable": self.retryable,
        }
        if self.correlation_id:
            payload["correlation_id"] = self.correlation_id
        safe = {key: self.details[key] for key in self.public_details if key in self.details}
        if safe:
            payload["error_details"] = safe
        return payload

    def __repr__(self):
        return f"<{type(self).__name__}(kind={self.kind.value}, severity={self.severity.value}, message={self.message!r})>"


class InputValidationError(SummarizationError):
    kind = ErrorKind.VALIDATION
    public_details = ("field", "max_length")


class RateLimitError(SummarizationError):
    kind = ErrorKind.RATE_LIMIT
    public_details = ("reset_time", "blocked_until", "remaining", "reason")


class NetworkError(SummarizationError):
    kind = ErrorKind.NETWORK


class ExternalAPIError(SummarizationError):
    kind = ErrorKind.EXTERNAL_API


class DatabaseError(SummarizationError):
    kind = ErrorKind.DATABASE


class AuthenticationError(SummarizationError):
    kind = ErrorKind.AUTHENTICATION


class ProcessingError(SummarizationError):
    kind = ErrorKind.PROCESSING


ERROR_CLASSES: Dict[ErrorKind, type] = {
    ErrorKind.VALIDATION: InputValidationError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.EXTERNAL_API: ExternalAPIError,
    ErrorKind.DATABASE: DatabaseError,
    ErrorKind.AUTHENTICATION: AuthenticationError,
    ErrorKind.PROCESSING: ProcessingError,
    ErrorKind.UNKNOWN: SummarizationError,
}
