"""Error handling and logging utilities for the SQL OData Gateway."""

from .exceptions import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    GatewayError,
    ValidationError,
    NotFoundError,
    MethodNotAllowedError,
    MisconfiguredEntityError,
    TransientDataSourceError,
    ExecutionError,
    ConfigurationError,
    AuthenticationError,
    RateLimitError,
)
from .handlers import (
    ErrorHandler,
    ErrorHandlingContext,
    get_sqlstate,
)
from .retry import (
    RetryConfig,
    ExponentialBackoff,
    retry_with_backoff,
    is_retryable_error,
)
from .logging_config import (
    setup_logging,
    get_logger,
    log_operation,
    log_error,
    log_performance,
    OperationLogger,
)

__all__ = [
    # Exceptions
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'GatewayError',
    'ValidationError',
    'NotFoundError',
    'MethodNotAllowedError',
    'MisconfiguredEntityError',
    'TransientDataSourceError',
    'ExecutionError',
    'ConfigurationError',
    'AuthenticationError',
    'RateLimitError',

    # Error handlers
    'ErrorHandler',
    'ErrorHandlingContext',
    'get_sqlstate',

    # Retry utilities
    'RetryConfig',
    'ExponentialBackoff',
    'retry_with_backoff',
    'is_retryable_error',

    # Logging
    'setup_logging',
    'get_logger',
    'log_operation',
    'log_error',
    'log_performance',
    'OperationLogger',
]
