"""Security helpers: identifier validation and request throttling."""

from .sql_validator import (
    SQLSecurityError,
    is_valid_identifier,
    validate_identifier,
    validate_parameter_name,
    quote_identifier,
    quote_table_ref,
    strip_brackets,
)
from .rate_limiter import RateLimiter, RateLimitConfig, RateLimitExceeded, RateLimitStatus

__all__ = [
    "SQLSecurityError",
    "is_valid_identifier",
    "validate_identifier",
    "validate_parameter_name",
    "quote_identifier",
    "quote_table_ref",
    "strip_brackets",
    "RateLimiter",
    "RateLimitConfig",
    "RateLimitExceeded",
    "RateLimitStatus",
]
