"""Translation of driver and runtime exceptions into gateway errors."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pyodbc

from .exceptions import (
    GatewayError,
    TransientDataSourceError,
    ExecutionError,
    ErrorContext,
)
from .logging_config import get_logger, log_error


logger = get_logger(__name__)

# SQLSTATEs the SQL Server ODBC drivers report for timeouts and lost or refused connections
TRANSIENT_SQLSTATES = frozenset({"HYT00", "HYT01", "08S01", "08001"})


def get_sqlstate(error: Exception) -> Optional[str]:
    """Extract the SQLSTATE from a pyodbc exception, if present."""
    args = getattr(error, "args", ())
    if len(args) >= 2 and isinstance(args[0], str):
        return args[0]
    return None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _fill_context(context: Optional[ErrorContext], operation: Optional[str], resource: Optional[str]) -> ErrorContext:
    if context is None:
        return ErrorContext(operation=operation, resource=resource, timestamp=_utc_now())
    context.operation = context.operation or operation
    context.resource = context.resource or resource
    context.timestamp = context.timestamp or _utc_now()
    return context


class ErrorHandler:
    """Maps exceptions onto the gateway's error categories."""

    @staticmethod
    def handle_database_error(
        error: Exception,
        operation: Optional[str] = None,
        resource: Optional[str] = None,
        context: Optional[ErrorContext] = None
    ) -> GatewayError:
        """
        Convert an exception raised while talking to the database.

        Timeouts and connection loss become TransientDataSourceError (503),
        any other driver error becomes a DATABASE_ERROR whose user message
        carries no driver text. GatewayErrors are returned as they are.
        """
        context = _fill_context(context, operation, resource)

        if isinstance(error, GatewayError):
            if not error.context.operation:
                error.context = context
            return error

        if isinstance(error, pyodbc.Error):
            sqlstate = get_sqlstate(error)
            if sqlstate in TRANSIENT_SQLSTATES or "timeout" in str(error).lower():
                return TransientDataSourceError(
                    message=f"Database timeout or connection loss (SQLSTATE {sqlstate})",
                    context=context,
                    cause=error
                )
            return ExecutionError(
                message=f"Database error (SQLSTATE {sqlstate})",
                error_code="DATABASE_ERROR",
                context=context,
                cause=error,
                user_message="Internal connection error."
            )

        if isinstance(error, TimeoutError):
            return TransientDataSourceError(message="Operation timed out", context=context, cause=error)

        return ExecutionError(
            message=f"Unexpected {type(error).__name__}: {error}",
            error_code="UNEXPECTED_ERROR",
            context=context,
            cause=error
        )

    @staticmethod
    def to_response_body(error: GatewayError) -> Dict[str, Any]:
        """JSON body for an error response. Only the user message is exposed."""
        body: Dict[str, Any] = {
            "error": error.get_user_message(),
            "error_code": error.error_code,
            "success": False,
        }
        if error.retryable:
            body["retryable"] = True
        return body


class ErrorHandlingContext:
    """
    Wraps a block of database work.

    Anything other than a GatewayError escaping the block is translated
    with ErrorHandler, logged, and re-raised chained to the original.
    """

    def __init__(
        self,
        operation: str,
        resource: Optional[str] = None,
        environment: Optional[str] = None,
        log_errors: bool = True
    ):
        self.operation = operation
        self.log_errors = log_errors
        self.context = ErrorContext(
            operation=operation,
            resource=resource,
            environment=environment,
            timestamp=_utc_now()
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_val is None or isinstance(exc_val, GatewayError):
            return False

        translated = ErrorHandler.handle_database_error(exc_val, context=self.context)
        if self.log_errors:
            log_error(logger, translated, operation=self.operation)
        raise translated from exc_val
