"""Structured logging configuration for the SQL OData Gateway."""

import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Union

import structlog
from structlog.types import FilteringBoundLogger, Processor

from .exceptions import GatewayError, ErrorContext


# Third-party loggers never go below WARNING
QUIET_LOGGERS = ("azure", "azure.identity", "uvicorn.access", "httpx")


def _shared_processors() -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _formatter(structured: bool) -> structlog.stdlib.ProcessorFormatter:
    renderer = structlog.processors.JSONRenderer() if structured else structlog.dev.ConsoleRenderer(colors=False)
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta]
        + ([structlog.processors.format_exc_info] if structured else [])
        + [renderer],
    )


def setup_logging(
    level: Union[str, int] = logging.INFO,
    log_file: Optional[str] = None,
    structured: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 10
) -> None:
    """
    Route structlog and standard-library logging through the same handlers.

    Gateway modules log through structlog; uvicorn and azure-identity log
    through ``logging``. Both end up as one JSON document
    (or one console line) per event on stdout and, when ``log_file`` is set,
    in a rotating file.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a rotating log file
        structured: JSON output when True, human-readable console output otherwise
        max_bytes: Maximum size of the log file before rotation
        backup_count: Number of rotated log files to keep
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    structlog.configure(
        processors=_shared_processors() + [
            structlog.dev.set_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = _formatter(structured)
    handlers: List[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> FilteringBoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def log_operation(
    logger: FilteringBoundLogger,
    operation: str,
    level: str = "info",
    **kwargs
) -> None:
    """Log a named gateway event with structured context."""
    log_func = getattr(logger, level.lower())
    log_func(operation, operation=operation, **kwargs)


def log_error(
    logger: FilteringBoundLogger,
    error: Exception,
    operation: Optional[str] = None,
    context: Optional[ErrorContext] = None,
    **kwargs
) -> None:
    """
    Log an error with its category, codes and context.

    GatewayError instances contribute their own context when none is
    passed. The technical message and the underlying cause are logged;
    neither ever reaches a response body.

    Args:
        logger: Logger instance
        error: Exception that occurred
        operation: Operation that failed
        context: Additional error context
        **kwargs: Additional context fields
    """
    log_data = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **kwargs
    }

    if operation:
        log_data["operation"] = operation

    if isinstance(error, GatewayError):
        log_data.update({
            "error_category": error.category.value,
            "error_severity": error.severity.value,
            "error_code": error.error_code,
            "status_code": error.status_code,
            "retryable": error.retryable
        })
        if error.cause:
            log_data["cause"] = f"{type(error.cause).__name__}: {error.cause}"
        context = context or error.context

    if context:
        for key in ("operation", "resource", "environment", "request_id"):
            value = getattr(context, key)
            if value:
                log_data.setdefault(key, value)
        for key, value in (context.additional_data or {}).items():
            log_data.setdefault(key, value)

    if error.__traceback__ is not None:
        log_data["exc_info"] = error
    logger.error(f"{operation or 'Operation'} failed: {type(error).__name__}", **log_data)


def log_performance(
    logger: FilteringBoundLogger,
    operation: str,
    duration_ms: float,
    success: bool = True,
    **kwargs
) -> None:
    """Log the duration of an operation."""
    logger.debug(
        f"Finished {operation}",
        operation=operation,
        duration_ms=round(duration_ms, 2),
        success=success,
        **kwargs
    )


class OperationLogger:
    """Context manager logging the start, failure and duration of one gateway operation."""

    def __init__(
        self,
        logger: FilteringBoundLogger,
        operation: str,
        level: str = "debug",
        **context
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.context = context
        self.start_time: Optional[float] = None
        self.success = False

    def __enter__(self):
        self.start_time = time.perf_counter()
        getattr(self.logger, self.level.lower())(f"Starting {self.operation}", operation=self.operation, **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000 if self.start_time else 0

        if exc_type is None:
            self.success = True
        elif not isinstance(exc_val, GatewayError) or exc_val.status_code >= 500:
            # Caller-side validation failures are logged where they are raised
            log_error(self.logger, exc_val, operation=self.operation, **self.context)

        log_performance(self.logger, self.operation, duration_ms, success=self.success, **self.context)
        return False

    def set_context(self, **kwargs) -> None:
        """Add additional context to the operation."""
        self.context.update(kwargs)
