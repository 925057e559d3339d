"""Data models shared by the gateway components."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum


class HttpMethod(Enum):
    """HTTP methods an endpoint may allow."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class ProcedureMethod(Enum):
    """Synthetic method tag passed to multi-purpose stored procedures as @Method."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def for_http_method(cls, method: HttpMethod) -> "ProcedureMethod":
        try:
            return _PROCEDURE_METHODS[method]
        except KeyError:
            raise ValueError(f"{method.value} has no procedure method") from None

    @property
    def http_method(self) -> HttpMethod:
        return {value: key for key, value in _PROCEDURE_METHODS.items()}[self]


_PROCEDURE_METHODS = {
    HttpMethod.POST: ProcedureMethod.INSERT,
    HttpMethod.PUT: ProcedureMethod.UPDATE,
    HttpMethod.DELETE: ProcedureMethod.DELETE,
}

WRITE_METHODS = frozenset(_PROCEDURE_METHODS)


class SqlParameterType(Enum):
    """Type a procedure parameter is bound with."""
    NULL = "NULL"
    STRING = "NVARCHAR"
    INT32 = "INT"
    INT64 = "BIGINT"
    DOUBLE = "FLOAT"
    DECIMAL = "DECIMAL"
    BOOLEAN = "BIT"


@dataclass(frozen=True)
class EndpointDescriptor:
    """Configuration binding a URL-facing endpoint name to a database object."""
    name: str
    object_name: str
    schema: str = "dbo"
    allowed_columns: Tuple[str, ...] = ()
    allowed_methods: Tuple[HttpMethod, ...] = (HttpMethod.GET,)
    procedure: Optional[str] = None

    @property
    def table_ref(self) -> str:
        return f"{self.schema}.{self.object_name}"

    def allows(self, method: HttpMethod) -> bool:
        return method in self.allowed_methods

    def discovers_columns(self) -> bool:
        """True when columns must be discovered from the database catalog."""
        return not self.allowed_columns


@dataclass(frozen=True)
class EnvironmentTarget:
    """Connection target for one named environment."""
    name: str
    connection_string: str = field(repr=False)
    server_name: str = "."
    authentication: Optional[str] = None
    credentials: Dict[str, str] = field(default_factory=dict, repr=False, compare=False, hash=False)


@dataclass
class ODataQuerySpec:
    """Validated request-time OData query options."""
    select: List[str] = field(default_factory=list)
    filter: Optional[str] = None
    orderby: Optional[str] = None
    top: int = 10
    skip: int = 0
    select_supplied: bool = False


@dataclass
class CompiledQuery:
    """Parameterized SQL produced by the OData compiler."""
    sql: str
    parameters: List[Any] = field(default_factory=list)


@dataclass
class Page:
    """One page of query results."""
    count: int
    value: List[Dict[str, Any]]
    next_link: Optional[str] = None

    @property
    def is_last_page(self) -> bool:
        return self.next_link is None

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "value": self.value, "nextLink": self.next_link}


@dataclass(frozen=True)
class ProcedureParameter:
    """One named, typed stored-procedure parameter."""
    name: str
    value: Any
    sql_type: SqlParameterType


@dataclass
class ProcedureInvocation:
    """A resolved stored-procedure call."""
    procedure_schema: str
    procedure_name: str
    method: ProcedureMethod
    parameters: List[ProcedureParameter] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.procedure_schema}.{self.procedure_name}"

    def parameter(self, name: str) -> Optional[ProcedureParameter]:
        """Look a parameter up by name, case-insensitively, with or without '@'."""
        wanted = name.lstrip("@").lower()
        for parameter in self.parameters:
            if parameter.name.lstrip("@").lower() == wanted:
                return parameter
        return None
