"""OData query option validation and translation to SQL for configured endpoints."""

import re
from typing import Optional, Sequence

from ..errors import (
    ValidationError,
    MisconfiguredEntityError,
    ErrorContext,
    get_logger,
    log_error,
    log_operation
)
from ..models import CompiledQuery, ODataQuerySpec
from ..security import quote_table_ref
from .compiler import ODataCompiler

logger = get_logger(__name__)

# Dirty reads on the GET path: consistency is traded for not blocking writers.
READ_HINT = "WITH (NOLOCK)"


def _parse_count(value: Optional[str], name: str, default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValidationError(
            f"{name} must be an integer, got '{value}'",
            field=name,
            error_code="INVALID_PAGING"
        ) from None
    if number < 0:
        raise ValidationError(f"{name} must be >= 0", field=name, error_code="INVALID_PAGING")
    return number


def parse_query_options(
    select: Optional[str] = None,
    filter: Optional[str] = None,
    orderby: Optional[str] = None,
    top: Optional[str] = None,
    skip: Optional[str] = None,
    default_top: int = 10,
    max_top: Optional[int] = None,
) -> ODataQuerySpec:
    """
    Build an ODataQuerySpec from raw query-string values.

    $top above ``max_top`` is capped; non-integer or negative $top/$skip
    raise ValidationError.
    """
    top_value = _parse_count(top, "$top", default_top)
    if max_top is not None and top_value > max_top:
        logger.debug("Capping $top", requested=top_value, max_top=max_top)
        top_value = max_top

    columns = [column.strip() for column in select.split(",") if column.strip()] if select else []
    return ODataQuerySpec(
        select=columns,
        filter=filter or None,
        orderby=orderby or None,
        top=top_value,
        skip=_parse_count(skip, "$skip", 0),
        select_supplied=bool(columns),
    )


def apply_read_hint(sql: str, schema: str, object_name: str) -> str:
    """Append the NOLOCK table hint to the FROM clause naming schema.object."""
    from_clause = f"FROM {quote_table_ref(schema, object_name)}"
    return re.sub(
        re.escape(from_clause),
        lambda match: f"{match.group(0)} {READ_HINT}",
        sql,
        flags=re.IGNORECASE
    )


class ODataTranslator:
    """Validates select lists against an endpoint's allowed columns and produces paged SQL."""

    def translate(
        self,
        schema: str,
        object_name: str,
        allowed_columns: Sequence[str],
        spec: ODataQuerySpec,
    ) -> CompiledQuery:
        """
        Translate a query spec into parameterized SQL fetching top+1 rows.

        Args:
            schema: Database schema of the object
            object_name: Table or view name
            allowed_columns: Known, non-empty column allow-list
            spec: Validated request-time query options

        Raises:
            MisconfiguredEntityError: If an allowed column name contains whitespace
            ValidationError: If $select names a column outside the allow-list
        """
        table_ref = f"{schema}.{object_name}"

        invalid_names = [column for column in allowed_columns if any(ch.isspace() for ch in column)]
        if invalid_names:
            error = MisconfiguredEntityError(
                f"Invalid column names for OData: {', '.join(invalid_names)}. Column names must not contain spaces.",
                endpoint=table_ref,
                context=ErrorContext(operation="translate", resource=table_ref)
            )
            log_error(logger, error, operation="translate")
            raise error

        canonical = {column.lower(): column for column in allowed_columns}
        if spec.select:
            rejected = [column for column in spec.select if column.lower() not in canonical]
            if rejected:
                logger.warning("Selected columns not allowed", resource=table_ref, columns=rejected)
                raise ValidationError(
                    f"One or more columns are not allowed: {', '.join(rejected)}",
                    field="$select",
                    error_code="COLUMN_NOT_ALLOWED"
                )
            select = [canonical[column.lower()] for column in spec.select]
        else:
            select = list(allowed_columns)

        compiled = ODataCompiler(allowed_columns).compile(
            schema,
            object_name,
            select,
            filter=spec.filter,
            orderby=spec.orderby,
            top=spec.top + 1,
            skip=spec.skip,
        )
        compiled.sql = apply_read_hint(compiled.sql, schema, object_name)

        log_operation(
            logger,
            "odata_translated",
            level="debug",
            resource=table_ref,
            columns=len(select),
            parameter_count=len(compiled.parameters)
        )
        return compiled
