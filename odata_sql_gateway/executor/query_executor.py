"""Paged query execution for GET endpoints."""

import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote, urlencode

from ..client import SqlServerClient
from ..errors import (
    MisconfiguredEntityError,
    ErrorContext,
    get_logger,
    log_error,
    log_operation,
    OperationLogger
)
from ..models import EndpointDescriptor, EnvironmentTarget, ODataQuerySpec, Page, RowFormatter
from ..odata import ODataTranslator

logger = get_logger(__name__)

COLUMN_DISCOVERY_SQL = (
    "SELECT c.name AS COLUMN_NAME "
    "FROM sys.columns c "
    "INNER JOIN sys.objects o ON c.object_id = o.object_id "
    "WHERE o.name = ? AND SCHEMA_NAME(o.schema_id) = ? "
    "ORDER BY c.column_id"
)


def build_next_link(base_url: str, spec: ODataQuerySpec) -> str:
    """
    Link to the page after the one described by ``spec``.

    $select is carried only when the caller supplied it; $filter and
    $orderby are carried verbatim.
    """
    params = [("$top", spec.top), ("$skip", spec.skip + spec.top)]
    if spec.select_supplied and spec.select:
        params.append(("$select", ",".join(spec.select)))
    if spec.filter:
        params.append(("$filter", spec.filter))
    if spec.orderby:
        params.append(("$orderby", spec.orderby))
    return f"{base_url}?{urlencode(params, safe='$,', quote_via=quote)}"


class ColumnCache:
    """Catalog-discovered column lists, populated insert-if-absent and kept for the process lifetime."""

    def __init__(self):
        self._columns: Dict[Tuple[str, str, str], Tuple[str, ...]] = {}
        self._lock = threading.Lock()

    def get(self, key: Tuple[str, str, str]) -> Optional[Tuple[str, ...]]:
        return self._columns.get(key)

    def put_if_absent(self, key: Tuple[str, str, str], columns: Sequence[str]) -> Tuple[str, ...]:
        with self._lock:
            return self._columns.setdefault(key, tuple(columns))

    def clear(self) -> None:
        with self._lock:
            self._columns.clear()

    def __len__(self) -> int:
        return len(self._columns)


class QueryExecutor:
    """Runs translated GET queries and shapes their results into pages."""

    def __init__(
        self,
        client: SqlServerClient,
        translator: Optional[ODataTranslator] = None,
        formatter: Optional[RowFormatter] = None,
        column_cache: Optional[ColumnCache] = None,
    ):
        self.client = client
        self.translator = translator or ODataTranslator()
        self.formatter = formatter or RowFormatter()
        self.column_cache = column_cache or ColumnCache()

    def resolve_columns(self, target: EnvironmentTarget, descriptor: EndpointDescriptor) -> List[str]:
        """
        Return the descriptor's allowed columns, discovering them from the catalog when empty.

        Raises:
            MisconfiguredEntityError: If the catalog knows no columns for the object
        """
        if not descriptor.discovers_columns():
            return list(descriptor.allowed_columns)

        key = (target.name.lower(), descriptor.schema.lower(), descriptor.object_name.lower())
        cached = self.column_cache.get(key)
        if cached is not None:
            return list(cached)

        log_operation(
            logger,
            "discovering_columns",
            level="debug",
            environment=target.name,
            resource=descriptor.table_ref
        )
        _, rows = self.client.fetch_rows(
            target,
            COLUMN_DISCOVERY_SQL,
            (descriptor.object_name, descriptor.schema),
            operation="discover_columns"
        )
        columns = [row[0] for row in rows]
        if not columns:
            error = MisconfiguredEntityError(
                f"No columns found for {descriptor.table_ref}. Verify the object exists and is accessible.",
                endpoint=descriptor.name,
                context=ErrorContext(
                    operation="discover_columns",
                    resource=descriptor.table_ref,
                    environment=target.name
                )
            )
            log_error(logger, error, operation="discover_columns")
            raise error

        return list(self.column_cache.put_if_absent(key, columns))

    def execute(
        self,
        target: EnvironmentTarget,
        sql: str,
        parameters: Sequence[Any],
        top: int,
        next_link: Optional[str] = None,
    ) -> Page:
        """
        Execute a query that requests top+1 rows and build the page.

        Args:
            target: Environment to run against
            sql: Parameterized SQL from the translator
            parameters: Bound parameter values
            top: Page size requested by the caller
            next_link: Link reported when more rows exist

        Returns:
            Page whose next_link is set only when top+1 rows came back
        """
        columns, rows = self.client.fetch_rows(target, sql, parameters, max_rows=top + 1, operation="execute_query")

        is_last_page = len(rows) <= top
        page_rows = rows[:top]
        return Page(
            count=len(rows) if is_last_page else len(rows) - 1,
            value=self.formatter.format_rows(columns, page_rows),
            next_link=None if is_last_page else next_link,
        )

    def query(
        self,
        target: EnvironmentTarget,
        descriptor: EndpointDescriptor,
        spec: ODataQuerySpec,
        base_url: str,
    ) -> Page:
        """Resolve columns, translate, execute and page one GET request."""
        with OperationLogger(logger, "query_endpoint", endpoint=descriptor.name, environment=target.name):
            columns = self.resolve_columns(target, descriptor)
            compiled = self.translator.translate(descriptor.schema, descriptor.object_name, columns, spec)
            page = self.execute(
                target,
                compiled.sql,
                compiled.parameters,
                spec.top,
                next_link=build_next_link(base_url, spec),
            )
            log_operation(
                logger,
                "endpoint_queried",
                level="debug",
                endpoint=descriptor.name,
                environment=target.name,
                count=page.count,
                last_page=page.is_last_page
            )
            return page
