"""Data models for the SQL OData Gateway."""

from .data_models import (
    HttpMethod,
    ProcedureMethod,
    SqlParameterType,
    EndpointDescriptor,
    EnvironmentTarget,
    ODataQuerySpec,
    CompiledQuery,
    Page,
    ProcedureParameter,
    ProcedureInvocation,
    WRITE_METHODS,
)
from .query_formatter import RowFormatter
from .responses import PageResponse, WriteResponse, WebhookResponse, ErrorResponse, HealthResponse

__all__ = [
    "HttpMethod",
    "ProcedureMethod",
    "SqlParameterType",
    "EndpointDescriptor",
    "EnvironmentTarget",
    "ODataQuerySpec",
    "CompiledQuery",
    "Page",
    "ProcedureParameter",
    "ProcedureInvocation",
    "WRITE_METHODS",
    "RowFormatter",
    "PageResponse",
    "WriteResponse",
    "WebhookResponse",
    "ErrorResponse",
    "HealthResponse",
]
