"""Identifier validation and quoting for SQL built from configuration."""

import re
from typing import Optional

from ..errors import ValidationError, ErrorContext, get_logger

logger = get_logger(__name__)

# Schema and table names interpolated into DDL/DML
STRICT_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$")

# Stored procedure parameter names taken from JSON payload keys
PARAMETER_NAME = re.compile(r"^@?[A-Za-z_][A-Za-z0-9_]*$")


class SQLSecurityError(ValidationError):
    """Raised when a value cannot be safely used as a SQL identifier."""

    def __init__(self, message: str, security_issue: str, context: Optional[ErrorContext] = None):
        super().__init__(message, error_code="UNSAFE_IDENTIFIER", context=context)
        self.security_issue = security_issue


def is_valid_identifier(identifier: Optional[str]) -> bool:
    """True when the identifier matches the strict [A-Za-z0-9_]+ pattern."""
    return bool(identifier) and STRICT_IDENTIFIER.match(identifier) is not None


def validate_identifier(identifier: Optional[str], kind: str = "identifier") -> str:
    """Return the identifier unchanged or raise SQLSecurityError."""
    if not is_valid_identifier(identifier):
        logger.warning("Rejected SQL identifier", kind=kind, identifier=identifier)
        raise SQLSecurityError(
            f"Invalid {kind}: '{identifier}'",
            security_issue="invalid_identifier",
            context=ErrorContext(operation="validate_identifier", additional_data={"kind": kind})
        )
    return identifier


def validate_parameter_name(name: str) -> str:
    """Normalize a payload key to an '@name' parameter, rejecting unsafe names."""
    if not PARAMETER_NAME.match(name or ""):
        raise SQLSecurityError(
            f"Invalid parameter name: '{name}'",
            security_issue="invalid_parameter_name",
            context=ErrorContext(operation="validate_parameter_name")
        )
    return name if name.startswith("@") else f"@{name}"


def strip_brackets(name: str) -> str:
    """Remove surrounding [ ] from a configured name."""
    return name.strip().strip("[]")


def quote_identifier(name: str) -> str:
    """Bracket-quote an identifier for SQL Server, escaping closing brackets."""
    return "[" + name.replace("]", "]]") + "]"


def quote_table_ref(schema: str, object_name: str) -> str:
    return f"{quote_identifier(schema)}.{quote_identifier(object_name)}"
