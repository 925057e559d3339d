"""Database client."""

from .sql_client import SqlServerClient

__all__ = ["SqlServerClient"]
