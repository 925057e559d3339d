"""Stored-procedure dispatch."""

from .procedure_dispatcher import (
    ProcedureDispatcher,
    parse_procedure_reference,
    infer_parameter,
    payload_to_parameters,
    delete_payload,
    build_invocation,
    build_exec_statement,
    METHOD_PARAMETER,
)

__all__ = [
    "ProcedureDispatcher",
    "parse_procedure_reference",
    "infer_parameter",
    "payload_to_parameters",
    "delete_payload",
    "build_invocation",
    "build_exec_statement",
    "METHOD_PARAMETER",
]
