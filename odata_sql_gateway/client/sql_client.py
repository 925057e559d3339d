"""SQL Server client for the gateway using pyodbc."""

import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pyodbc

from ..auth import DatabaseCredentialManager
from ..config import GatewayConfig
from ..errors import (
    ErrorHandlingContext,
    get_logger,
    log_operation,
    OperationLogger
)
from ..environments import mask_connection_string
from ..models import EnvironmentTarget, ProcedureParameter, SqlParameterType


logger = get_logger(__name__)


def _input_size(parameter: ProcedureParameter):
    """pyodbc setinputsizes entry for a typed procedure parameter."""
    if parameter.sql_type == SqlParameterType.INT32:
        return pyodbc.SQL_INTEGER
    if parameter.sql_type == SqlParameterType.INT64:
        return pyodbc.SQL_BIGINT
    if parameter.sql_type == SqlParameterType.DOUBLE:
        return pyodbc.SQL_DOUBLE
    if parameter.sql_type == SqlParameterType.BOOLEAN:
        return pyodbc.SQL_BIT
    if parameter.sql_type == SqlParameterType.DECIMAL:
        exponent = parameter.value.as_tuple().exponent
        scale = -exponent if isinstance(exponent, int) and exponent < 0 else 0
        return (pyodbc.SQL_DECIMAL, 38, min(scale, 38))
    # Strings and nulls; 0 selects NVARCHAR(MAX)
    return (pyodbc.SQL_WVARCHAR, 0, 0)


class SqlServerClient:
    """
    Opens scoped connections to environment targets and runs statements on them.

    Every public method acquires its own connection and closes it on every
    exit path. Driver exceptions are translated into gateway errors before
    they leave this class.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        credential_manager: Optional[DatabaseCredentialManager] = None,
        connect: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize the SQL Server client.

        Args:
            config: Gateway configuration (timeouts, ODBC driver)
            credential_manager: Azure AD credential manager for token-authenticated environments
            connect: Connection factory, defaults to pyodbc.connect
        """
        self.config = config or GatewayConfig()
        self.credential_manager = credential_manager or DatabaseCredentialManager()
        self._connect = connect or pyodbc.connect

    def build_connection_string(self, target: EnvironmentTarget) -> str:
        """Return an ODBC connection string, adding the configured driver when none is named."""
        connection_string = target.connection_string.strip().rstrip(";")
        keys = {segment.partition("=")[0].strip().lower() for segment in connection_string.split(";")}
        if "driver" not in keys:
            connection_string = f"DRIVER={{{self.config.odbc_driver}}};{connection_string}"
        return connection_string

    @contextmanager
    def connection(self, target: EnvironmentTarget, operation: str = "connect") -> Iterator[Any]:
        """Yield an autocommit connection with the query timeout applied; always closed on exit."""
        with ErrorHandlingContext(operation, resource=target.server_name, environment=target.name):
            kwargs: Dict[str, Any] = {"autocommit": True, "timeout": self.config.connect_timeout}
            if target.authentication:
                kwargs["attrs_before"] = self.credential_manager.get_connect_attrs(target)

            log_operation(
                logger,
                "opening_connection",
                level="debug",
                environment=target.name,
                connection=mask_connection_string(target.connection_string)
            )
            conn = self._connect(self.build_connection_string(target), **kwargs)
            try:
                conn.timeout = self.config.query_timeout
                yield conn
            finally:
                conn.close()

    def fetch_rows(
        self,
        target: EnvironmentTarget,
        sql: str,
        parameters: Sequence[Any] = (),
        max_rows: Optional[int] = None,
        operation: str = "fetch_rows",
    ) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        """
        Execute a query and materialize its rows.

        Args:
            target: Environment to run against
            sql: Parameterized SQL text using '?' markers
            parameters: Positional parameter values
            max_rows: Upper bound on rows read from the cursor

        Returns:
            Tuple of (column names, row tuples)
        """
        with OperationLogger(logger, operation, environment=target.name):
            start_time = time.time()
            with self.connection(target, operation) as conn:
                with ErrorHandlingContext(operation, resource=target.server_name, environment=target.name):
                    cursor = conn.cursor()
                    try:
                        cursor.execute(sql, *parameters)
                        columns = [desc[0] for desc in cursor.description] if cursor.description else []
                        if not cursor.description:
                            rows = []
                        elif max_rows is None:
                            rows = cursor.fetchall()
                        else:
                            rows = cursor.fetchmany(max_rows)
                    finally:
                        cursor.close()

            log_operation(
                logger,
                "sql_query_executed",
                level="debug",
                row_count=len(rows),
                column_count=len(columns),
                execution_time_ms=(time.time() - start_time) * 1000
            )
            return columns, [tuple(row) for row in rows]

    def execute_scalar(
        self,
        target: EnvironmentTarget,
        sql: str,
        parameters: Sequence[Any] = (),
        operation: str = "execute_scalar",
        conn: Any = None,
    ) -> Any:
        """Return the first column of the first row, or None. Reuses ``conn`` when given."""
        if conn is None:
            with self.connection(target, operation) as owned:
                return self.execute_scalar(target, sql, parameters, operation, owned)

        with ErrorHandlingContext(operation, resource=target.server_name, environment=target.name):
            cursor = conn.cursor()
            try:
                cursor.execute(sql, *parameters)
                row = cursor.fetchone()
            finally:
                cursor.close()
        return row[0] if row else None

    def execute_non_query(
        self,
        target: EnvironmentTarget,
        sql: str,
        parameters: Sequence[Any] = (),
        operation: str = "execute_non_query",
        conn: Any = None,
    ) -> int:
        """Run a statement with no result set and return its row count. Reuses ``conn`` when given."""
        if conn is None:
            with self.connection(target, operation) as owned:
                return self.execute_non_query(target, sql, parameters, operation, owned)

        with ErrorHandlingContext(operation, resource=target.server_name, environment=target.name):
            cursor = conn.cursor()
            try:
                cursor.execute(sql, *parameters)
                return cursor.rowcount
            finally:
                cursor.close()

    def call_procedure(
        self,
        target: EnvironmentTarget,
        sql: str,
        parameters: Sequence[ProcedureParameter],
    ) -> List[Dict[str, Any]]:
        """
        Execute a stored procedure call and return its first result set as dicts.

        Args:
            target: Environment to run against
            sql: EXEC statement with one '?' marker per parameter, in order
            parameters: Typed parameters bound with explicit input sizes

        Returns:
            Rows of the first result set; empty when the procedure returns none
        """
        with OperationLogger(logger, "call_procedure", environment=target.name):
            with self.connection(target, "call_procedure") as conn:
                with ErrorHandlingContext("call_procedure", resource=target.server_name, environment=target.name):
                    cursor = conn.cursor()
                    try:
                        cursor.setinputsizes([_input_size(parameter) for parameter in parameters])
                        cursor.execute(sql, *[parameter.value for parameter in parameters])

                        # Skip row-count results that precede the first result set
                        while cursor.description is None:
                            if not cursor.nextset():
                                return []

                        columns = [desc[0] for desc in cursor.description]
                        return [dict(zip(columns, row)) for row in cursor.fetchall()]
                    finally:
                        cursor.close()

    def test_connection(self, target: EnvironmentTarget) -> bool:
        """Run SELECT 1 against the environment."""
        with OperationLogger(logger, "test_connection", environment=target.name):
            result = self.execute_scalar(target, "SELECT 1", operation="test_connection")
            log_operation(logger, "connection_test_successful", environment=target.name)
            return result == 1
