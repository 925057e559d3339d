"""Query execution."""

from .query_executor import QueryExecutor, ColumnCache, build_next_link, COLUMN_DISCOVERY_SQL

__all__ = ["QueryExecutor", "ColumnCache", "build_next_link", "COLUMN_DISCOVERY_SQL"]
