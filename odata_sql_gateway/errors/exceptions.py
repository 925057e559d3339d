"""Custom exception classes for the SQL OData Gateway."""

from enum import Enum
from typing import Any, Dict, Optional
from dataclasses import dataclass


class ErrorCategory(Enum):
    """Categories of errors that can occur in the gateway."""
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    MISCONFIGURATION = "misconfiguration"
    TRANSIENT = "transient"
    EXECUTION = "execution"
    CONFIGURATION = "configuration"
    RATE_LIMIT = "rate_limit"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Additional context information for errors."""
    operation: Optional[str] = None
    resource: Optional[str] = None
    environment: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None


class GatewayError(Exception):
    """Base exception class for all gateway errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        error_code: Optional[str] = None,
        status_code: int = 500,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        retryable: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.error_code = error_code or f"GATEWAY_{category.value.upper()}_ERROR"
        self.status_code = status_code
        self.context = context or ErrorContext()
        self.cause = cause
        self.retryable = retryable

    def get_user_message(self) -> str:
        """Get the message that is safe to return to an API caller."""
        return self.message

    def get_technical_details(self) -> str:
        """Get technical details for the operational log."""
        details = [f"Error: {self.message}", f"HTTP Status: {self.status_code}"]
        if self.cause:
            details.append(f"Underlying Cause: {type(self.cause).__name__}: {self.cause}")
        return " | ".join(details)


def _with_additional(context: Optional[ErrorContext], **data: Any) -> Optional[ErrorContext]:
    """Merge non-empty keyword data into the error context's additional data."""
    data = {key: value for key, value in data.items() if value is not None}
    if not data:
        return context
    if context is None:
        return ErrorContext(additional_data=data)
    if not context.additional_data:
        context.additional_data = {}
    context.additional_data.update(data)
    return context


class ValidationError(GatewayError):
    """The caller sent something the gateway cannot accept."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: Optional[str] = None,
        status_code: int = 400,
        context: Optional[ErrorContext] = None,
        category: ErrorCategory = ErrorCategory.VALIDATION
    ):
        super().__init__(
            message=message,
            category=category,
            severity=ErrorSeverity.LOW,
            error_code=error_code or "VALIDATION_FAILED",
            status_code=status_code,
            context=_with_additional(context, field=field),
            retryable=False  # Caller must fix the request
        )
        self.field = field


class NotFoundError(ValidationError):
    """An endpoint, environment-scoped resource or webhook id is unknown."""

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None
    ):
        context = context or ErrorContext()
        if resource and not context.resource:
            context.resource = resource
        super().__init__(
            message,
            error_code=error_code or "NOT_FOUND",
            status_code=404,
            context=context,
            category=ErrorCategory.NOT_FOUND
        )


class MethodNotAllowedError(ValidationError):
    """The HTTP method is not configured for the endpoint."""

    def __init__(
        self,
        method: str,
        endpoint: str,
        context: Optional[ErrorContext] = None
    ):
        super().__init__(
            f"HTTP {method} method is not allowed for endpoint '{endpoint}'",
            error_code="METHOD_NOT_ALLOWED",
            status_code=405,
            context=_with_additional(context, method=method, endpoint=endpoint),
            category=ErrorCategory.METHOD_NOT_ALLOWED
        )
        self.method = method
        self.endpoint = endpoint


class MisconfiguredEntityError(GatewayError):
    """An endpoint descriptor does not match the database it points at."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.MISCONFIGURATION,
            severity=ErrorSeverity.HIGH,
            error_code=error_code or "INVALID_ENTITY",
            status_code=500,
            context=_with_additional(context, endpoint=endpoint),
            cause=cause,
            retryable=False
        )
        self.endpoint = endpoint

    def get_user_message(self) -> str:
        return "Invalid entity. Object definition not correct."


class TransientDataSourceError(GatewayError):
    """Connection or command timeout; the caller may retry with backoff."""

    def __init__(
        self,
        message: str = "Database timeout occurred",
        timeout_seconds: Optional[int] = None,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.TRANSIENT,
            severity=ErrorSeverity.MEDIUM,
            error_code=error_code or "SERVICE_UNAVAILABLE",
            status_code=503,
            context=_with_additional(context, timeout_seconds=timeout_seconds),
            cause=cause,
            retryable=True
        )
        self.timeout_seconds = timeout_seconds

    def get_user_message(self) -> str:
        return "Database timeout occurred. Please try again later."


class ExecutionError(GatewayError):
    """Any other failure from the data source or the mapping logic."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        user_message: str = "An unexpected error occurred while processing the request."
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.EXECUTION,
            severity=ErrorSeverity.MEDIUM,
            error_code=error_code or "EXECUTION_FAILED",
            status_code=500,
            context=context,
            cause=cause,
            retryable=False
        )
        self.user_message = user_message

    def get_user_message(self) -> str:
        return self.user_message


class ConfigurationError(GatewayError):
    """Exception for gateway configuration errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            error_code=error_code or "CONFIG_ERROR",
            status_code=500,
            context=_with_additional(context, config_key=config_key),
            cause=cause,
            retryable=False
        )
        self.config_key = config_key

    def get_user_message(self) -> str:
        if self.config_key:
            return f"Configuration error for '{self.config_key}': {self.message}"
        return f"Configuration error: {self.message}"


class AuthenticationError(GatewayError):
    """Missing or invalid bearer token, or failed database credential."""

    def __init__(
        self,
        message: str = "Authentication failed",
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        retryable: bool = False
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.AUTHENTICATION,
            severity=ErrorSeverity.HIGH,
            error_code=error_code or "AUTH_FAILED",
            status_code=401,
            context=context,
            cause=cause,
            retryable=retryable
        )


class RateLimitError(GatewayError):
    """Exception for rate limiting errors."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.RATE_LIMIT,
            severity=ErrorSeverity.MEDIUM,
            error_code=error_code or "RATE_LIMIT_EXCEEDED",
            status_code=429,
            context=_with_additional(context, retry_after=retry_after),
            retryable=True
        )
        self.retry_after = retry_after

    def get_user_message(self) -> str:
        if self.retry_after:
            return f"Rate limit exceeded. Please wait {self.retry_after} seconds before trying again."
        return "Rate limit exceeded. Please wait before trying again."
