"""Stored-procedure dispatch for write methods."""

import math
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

import simplejson

from ..client import SqlServerClient
from ..errors import (
    ValidationError,
    MethodNotAllowedError,
    MisconfiguredEntityError,
    ErrorContext,
    get_logger,
    log_error,
    log_operation,
    OperationLogger
)
from ..models import (
    EndpointDescriptor,
    EnvironmentTarget,
    HttpMethod,
    ProcedureInvocation,
    ProcedureMethod,
    ProcedureParameter,
    RowFormatter,
    SqlParameterType,
)
from ..security import quote_table_ref, strip_brackets, validate_parameter_name

logger = get_logger(__name__)

INT32_RANGE = (-2 ** 31, 2 ** 31 - 1)
INT64_RANGE = (-2 ** 63, 2 ** 63 - 1)

METHOD_PARAMETER = "@Method"


def parse_procedure_reference(procedure: str) -> Tuple[str, str]:
    """
    Split 'schema.name' into its two parts, trimming brackets.

    Raises:
        ValidationError: Unless the reference has exactly two non-empty parts
    """
    parts = (procedure or "").split(".")
    if len(parts) != 2 or not all(strip_brackets(part) for part in parts):
        raise ValidationError(
            f"Invalid procedure format. Expected 'schema.procedureName', got: {procedure}",
            field="Procedure",
            error_code="INVALID_PROCEDURE_FORMAT"
        )
    return strip_brackets(parts[0]), strip_brackets(parts[1])


def infer_parameter(name: str, value: Any) -> ProcedureParameter:
    """
    Bind one payload field as a typed parameter.

    Integral numbers take the narrowest of INT32 and INT64 that holds them,
    then DOUBLE, then DECIMAL. Arrays and objects are passed as JSON text
    with every number written exactly as it was parsed.
    """
    if value is None:
        return ProcedureParameter(name, None, SqlParameterType.NULL)
    if isinstance(value, bool):
        return ProcedureParameter(name, value, SqlParameterType.BOOLEAN)
    if isinstance(value, str):
        return ProcedureParameter(name, value, SqlParameterType.STRING)
    if isinstance(value, int):
        if INT32_RANGE[0] <= value <= INT32_RANGE[1]:
            return ProcedureParameter(name, value, SqlParameterType.INT32)
        if INT64_RANGE[0] <= value <= INT64_RANGE[1]:
            return ProcedureParameter(name, value, SqlParameterType.INT64)
        try:
            return ProcedureParameter(name, float(value), SqlParameterType.DOUBLE)
        except OverflowError:
            return ProcedureParameter(name, Decimal(value), SqlParameterType.DECIMAL)
    if isinstance(value, float):
        if math.isfinite(value):
            return ProcedureParameter(name, value, SqlParameterType.DOUBLE)
        raise ValidationError(f"Numeric value out of range for {name}", field=name, error_code="INVALID_PAYLOAD")
    if isinstance(value, Decimal):
        if value.is_finite() and math.isfinite(float(value)):
            return ProcedureParameter(name, float(value), SqlParameterType.DOUBLE)
        if value.is_finite():
            return ProcedureParameter(name, value, SqlParameterType.DECIMAL)
        raise ValidationError(f"Numeric value out of range for {name}", field=name, error_code="INVALID_PAYLOAD")
    if isinstance(value, (list, dict)):
        return ProcedureParameter(name, simplejson.dumps(value, use_decimal=True), SqlParameterType.STRING)
    return ProcedureParameter(name, str(value), SqlParameterType.STRING)


def payload_to_parameters(payload: Mapping[str, Any]) -> List[ProcedureParameter]:
    """Map every top-level payload field to an '@field' parameter."""
    if not isinstance(payload, Mapping):
        raise ValidationError(
            "Request body must be a JSON object",
            field="body",
            error_code="INVALID_PAYLOAD"
        )
    return [infer_parameter(validate_parameter_name(key), value) for key, value in payload.items()]


def delete_payload(record_id: Optional[str]) -> Dict[str, Any]:
    """DELETE carries only the query-string id."""
    if record_id is None or record_id == "":
        raise ValidationError("The id query parameter is required for DELETE", field="id", error_code="MISSING_ID")
    return {"id": record_id}


def build_invocation(
    procedure: str,
    method: ProcedureMethod,
    payload: Mapping[str, Any]
) -> ProcedureInvocation:
    schema, name = parse_procedure_reference(procedure)
    invocation = ProcedureInvocation(
        procedure_schema=schema,
        procedure_name=name,
        method=method,
        parameters=payload_to_parameters(payload),
    )
    if invocation.parameter(METHOD_PARAMETER) is None:
        invocation.parameters.append(ProcedureParameter(METHOD_PARAMETER, method.value, SqlParameterType.STRING))
    return invocation


def build_exec_statement(invocation: ProcedureInvocation) -> str:
    """EXEC statement binding every parameter by name to a positional marker."""
    sql = f"EXEC {quote_table_ref(invocation.procedure_schema, invocation.procedure_name)}"
    if invocation.parameters:
        sql += " " + ", ".join(f"{parameter.name} = ?" for parameter in invocation.parameters)
    return sql


class ProcedureDispatcher:
    """Maps JSON payloads onto an endpoint's stored procedure and runs it."""

    def __init__(self, client: SqlServerClient, formatter: Optional[RowFormatter] = None):
        self.client = client
        self.formatter = formatter or RowFormatter()

    def dispatch(
        self,
        target: EnvironmentTarget,
        descriptor: EndpointDescriptor,
        method: HttpMethod,
        payload: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        """
        Invoke the endpoint's procedure for a write method.

        Args:
            target: Environment to run against
            descriptor: Endpoint being written to
            method: POST, PUT or DELETE
            payload: Top-level JSON object whose fields become parameters

        Returns:
            Rows of the procedure's first result set

        Raises:
            MethodNotAllowedError: If the method is not allowed for the endpoint
            MisconfiguredEntityError: If the endpoint has no procedure
            ValidationError: If the procedure reference or payload is malformed
        """
        if not descriptor.allows(method):
            logger.warning("Method not allowed", endpoint=descriptor.name, method=method.value)
            raise MethodNotAllowedError(method.value, descriptor.name)

        if not descriptor.procedure:
            error = MisconfiguredEntityError(
                f"Endpoint '{descriptor.name}' has {method.value} enabled but no procedure configured.",
                endpoint=descriptor.name,
                error_code="MISSING_PROCEDURE",
                context=ErrorContext(operation="dispatch", resource=descriptor.name, environment=target.name)
            )
            log_error(logger, error, operation="dispatch")
            raise error

        procedure_method = ProcedureMethod.for_http_method(method)
        invocation = build_invocation(descriptor.procedure, procedure_method, payload)

        with OperationLogger(
            logger,
            "dispatch_procedure",
            procedure=invocation.qualified_name,
            method=procedure_method.value,
            environment=target.name
        ):
            rows = self.client.call_procedure(target, build_exec_statement(invocation), invocation.parameters)
            log_operation(
                logger,
                "procedure_executed",
                level="debug",
                procedure=invocation.qualified_name,
                method=procedure_method.value,
                row_count=len(rows)
            )
            return [{key: self.formatter.format_value(value) for key, value in row.items()} for row in rows]
