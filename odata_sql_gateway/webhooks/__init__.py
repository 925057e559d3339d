"""Webhook ingestion."""

from .ingestor import WebhookIngestor, create_table_statements, insert_statement, TABLE_EXISTS_SQL

__all__ = ["WebhookIngestor", "create_table_statements", "insert_statement", "TABLE_EXISTS_SQL"]
