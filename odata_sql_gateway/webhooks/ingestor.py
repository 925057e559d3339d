"""Webhook payload ingestion into lazily provisioned SQL tables."""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

import simplejson

from ..client import SqlServerClient
from ..errors import (
    ExecutionError,
    NotFoundError,
    get_logger,
    log_operation,
    OperationLogger
)
from ..models import EndpointDescriptor, EnvironmentTarget
from ..registry import EndpointRegistry, WEBHOOKS_ENDPOINT
from ..security import quote_table_ref, validate_identifier

logger = get_logger(__name__)

TABLE_EXISTS_SQL = (
    "SELECT COUNT(1) FROM sys.tables t "
    "JOIN sys.schemas s ON t.schema_id = s.schema_id "
    "WHERE t.name = ? AND s.name = ?"
)


def _utc_now() -> datetime:
    # DATETIME columns carry no offset
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_table_statements(schema: str, table: str) -> list:
    """DDL for a webhook table; both names must already be validated identifiers."""
    table_ref = quote_table_ref(schema, table)
    return [
        f"CREATE TABLE {table_ref} ("
        "Id INT IDENTITY(1,1) PRIMARY KEY, "
        "WebhookId NVARCHAR(100) NOT NULL, "
        "Payload NVARCHAR(MAX) NOT NULL, "
        "ReceivedAt DATETIME NOT NULL, "
        "Processed BIT DEFAULT 0, "
        "ProcessedAt DATETIME NULL)",
        f"CREATE INDEX IX_{table}_WebhookId ON {table_ref}(WebhookId)",
        f"CREATE INDEX IX_{table}_Processed ON {table_ref}(Processed)",
    ]


def insert_statement(schema: str, table: str) -> str:
    return (
        f"INSERT INTO {quote_table_ref(schema, table)} (WebhookId, Payload, ReceivedAt) "
        "OUTPUT INSERTED.Id VALUES (?, ?, ?)"
    )


class WebhookIngestor:
    """Appends raw webhook payloads to the table named by the Webhooks endpoint."""

    def __init__(
        self,
        client: SqlServerClient,
        registry: EndpointRegistry,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.client = client
        self.registry = registry
        self.clock = clock or _utc_now

    def _check_allowed(self, descriptor: EndpointDescriptor, webhook_id: str) -> None:
        allowed = descriptor.allowed_columns
        if allowed and webhook_id.lower() not in {item.lower() for item in allowed}:
            logger.warning(
                "Webhook ID is not in the allowed list",
                webhook_id=webhook_id,
                allowed=", ".join(allowed)
            )
            raise NotFoundError(
                f"Webhook ID '{webhook_id}' is not configured.",
                resource=webhook_id,
                error_code="WEBHOOK_NOT_CONFIGURED"
            )

    def ensure_table(self, target: EnvironmentTarget, schema: str, table: str, conn: Any) -> bool:
        """Create the webhook table and its indexes unless the catalog already has it; True if created."""
        exists = self.client.execute_scalar(
            target, TABLE_EXISTS_SQL, (table, schema), operation="webhook_table_check", conn=conn
        )
        if exists:
            return False

        for statement in create_table_statements(schema, table):
            self.client.execute_non_query(target, statement, operation="webhook_table_create", conn=conn)
        log_operation(logger, "webhook_table_created", schema=schema, table=table, environment=target.name)
        return True

    def ingest(self, target: EnvironmentTarget, webhook_id: str, payload: Any) -> int:
        """
        Store one webhook payload.

        Args:
            target: Environment to write to
            webhook_id: Identifier from the URL, checked against the Webhooks allow-list
            payload: JSON text of the request body, stored unchanged; parsed
                values are serialized with their numbers kept exact

        Returns:
            Identity value of the inserted row

        Raises:
            ValidationError: If the webhook id or the configured schema/table is not a plain identifier
            NotFoundError: If the webhook id is not allow-listed
            TransientDataSourceError: On database timeouts
        """
        validate_identifier(webhook_id, "webhook id")
        descriptor = self.registry.resolve(WEBHOOKS_ENDPOINT)
        self._check_allowed(descriptor, webhook_id)

        schema = validate_identifier(descriptor.schema, "schema name")
        table = validate_identifier(descriptor.object_name, "table name")
        body = payload if isinstance(payload, str) else simplejson.dumps(payload, use_decimal=True)

        with OperationLogger(logger, "ingest_webhook", webhook_id=webhook_id, environment=target.name):
            try:
                with self.client.connection(target, "ingest_webhook") as conn:
                    self.ensure_table(target, schema, table, conn)
                    inserted_id = self.client.execute_scalar(
                        target,
                        insert_statement(schema, table),
                        (webhook_id, body, self.clock()),
                        operation="webhook_insert",
                        conn=conn
                    )
            except ExecutionError as e:
                raise ExecutionError(
                    f"Failed to store webhook {webhook_id}: {e.message}",
                    error_code=e.error_code,
                    context=e.context,
                    cause=e,
                    user_message="An error occurred while processing the webhook."
                ) from e

            log_operation(
                logger,
                "webhook_processed",
                webhook_id=webhook_id,
                inserted_id=inserted_id,
                table=f"{schema}.{table}"
            )
            return int(inserted_id)
