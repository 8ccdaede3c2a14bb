"""
Amazon Redshift connection manager.

Redshift is reached through the Data API (boto3 ``redshift-data``), so the
"pool" held here is a ``StatementClient``. Unlike SQL Server, a failed
connect at startup is not fatal: the manager stays up in a degraded state,
remembers why, and tries again the next time a pool is requested.
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any

import boto3

from ..normalizer import normalize_warehouse
from ..schema import SchemaStrategy, group_columns, resolve_schema
from .base import (
    BackendConnector,
    BackendType,
    ColumnDescriptor,
    ConnectionError,
    ConnectionStatus,
    HealthStatus,
    QueryExecutionError,
    QueryResult,
    SchemaMap,
    sanitize_error_message,
)
from .config import RedshiftSettings
from .statement import SleepFn, StatementClient

SYSTEM_SCHEMAS = ("pg_catalog", "information_schema", "pg_internal")
SYSTEM_TABLE_TYPE = "SYSTEM TABLE"

INFORMATION_SCHEMA_QUERY = f"""
SELECT
  t.table_schema AS schema_name,
  t.table_name AS table_name,
  c.column_name AS column_name,
  c.data_type AS data_type,
  c.character_maximum_length AS max_length,
  c.is_nullable AS is_nullable
FROM information_schema.tables t
LEFT JOIN information_schema.columns c
  ON c.table_schema = t.table_schema AND c.table_name = t.table_name
WHERE t.table_type = 'BASE TABLE'
  AND t.table_schema NOT IN ({", ".join(f"'{name}'" for name in SYSTEM_SCHEMAS)})
ORDER BY t.table_schema, t.table_name, c.ordinal_position
"""

ClientFactory = Callable[[RedshiftSettings], Any]


def create_data_api_client(settings: RedshiftSettings) -> Any:
    """Build a boto3 ``redshift-data`` client for the configured region."""
    return boto3.client("redshift-data", region_name=settings.region)


def information_schema_row_to_column(
    row: dict[str, Any],
) -> ColumnDescriptor | None:
    """Map an ``information_schema.columns`` row; tables without columns map to None."""
    if row.get("column_name") is None:
        return None

    is_nullable = row.get("is_nullable")
    if isinstance(is_nullable, str):
        is_nullable = is_nullable.upper() == "YES"

    return ColumnDescriptor(
        column_name=row["column_name"],
        data_type=row.get("data_type"),
        max_length=row.get("max_length"),
        is_nullable=is_nullable,
    )


class RedshiftConnector(BackendConnector):
    """Redshift Data API manager."""

    def __init__(
        self,
        settings: RedshiftSettings | None = None,
        client_factory: ClientFactory | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.settings = settings or RedshiftSettings()
        self._client_factory = client_factory or create_data_api_client
        self._sleep = sleep
        self._client: StatementClient | None = None
        self._connected = False
        self._connection_error: str | None = None
        self._lock = asyncio.Lock()
        super().__init__()

    @property
    def backend_type(self) -> BackendType:
        return BackendType.REDSHIFT

    @property
    def connected(self) -> bool:
        return self._client is not None and self._connected

    @property
    def connection_error(self) -> str | None:
        """Reason for the last failed connect, if any."""
        return self._connection_error

    async def init(self) -> None:
        """
        Create the Data API client and validate it with ``SELECT 1``.

        Failures are logged and recorded rather than raised.
        """
        async with self._lock:
            await self._connect()

    async def _connect(self, max_wait_seconds: float | None = None) -> None:
        if self.connected:
            return
        if self._client is not None:
            self._client.close()
            self._client = None

        self._status = ConnectionStatus.CONNECTING
        client = None
        try:
            client = StatementClient(
                self._client_factory(self.settings), self.settings, self._sleep
            )
            await client.probe(max_wait_seconds or self.settings.max_wait_seconds)
        except Exception as e:
            if client is not None:
                client.close()
            self._client = None
            self._connected = False
            self._connection_error = sanitize_error_message(str(e))
            self._status = ConnectionStatus.DISCONNECTED
            self.logger.warning(
                "connection_failed",
                workgroup=self.settings.workgroup_name,
                database=self.settings.database,
                error=self._connection_error,
            )
            return

        self._client = client
        self._connected = True
        self._connection_error = None
        self._status = ConnectionStatus.CONNECTED
        self.logger.info(
            "connection_established",
            workgroup=self.settings.workgroup_name,
            database=self.settings.database,
            region=self.settings.region,
        )

    async def get_pool(self) -> StatementClient:
        """
        Return the statement client, retrying the connect once if needed.

        Raises:
            ConnectionError: If Redshift is still unreachable after the retry
        """
        if self.connected:
            return self._client
        return await self._reconnect()

    async def _reconnect(self, max_wait_seconds: float | None = None) -> StatementClient:
        async with self._lock:
            await self._connect(max_wait_seconds)

        if not self.connected:
            raise ConnectionError(
                f"Redshift not connected: {self._connection_error}",
                BackendType.REDSHIFT,
            )
        return self._client

    async def close(self) -> None:
        async with self._lock:
            client, self._client = self._client, None
            self._connected = False
            if client is not None:
                client.close()
                self.logger.info("client_closed")
            self._status = ConnectionStatus.CLOSED

    async def execute_query(self, sql: str) -> QueryResult:
        client = await self.get_pool()

        start_time = time.perf_counter()
        try:
            raw = await client.execute(sql)
        except QueryExecutionError as e:
            self.logger.error("query_failed", error=str(e), error_type=type(e).__name__)
            raise type(e)(
                f"Redshift query error: {e}", sql, BackendType.REDSHIFT
            ) from e
        except Exception as e:
            message = sanitize_error_message(str(e))
            self.logger.error("query_failed", error=message)
            raise QueryExecutionError(
                f"Redshift query error: {message}", sql, BackendType.REDSHIFT
            ) from e
        execution_time = int((time.perf_counter() - start_time) * 1000)

        result = normalize_warehouse(raw, execution_time)
        self.logger.debug(
            "query_executed",
            row_count=result.row_count,
            execution_time_ms=execution_time,
        )
        return result

    def schema_strategies(self) -> list[SchemaStrategy]:
        """Table listing first, ``information_schema`` as the fallback."""
        return [
            SchemaStrategy("list_tables", self._list_tables_schema),
            SchemaStrategy("information_schema", self._information_schema),
        ]

    async def _list_tables_schema(self) -> SchemaMap:
        client = await self.get_pool()

        tables: list[dict[str, Any]] = []
        next_token = None
        while True:
            page = await asyncio.to_thread(client.list_tables, next_token)
            tables.extend(page.get("Tables") or [])
            next_token = page.get("NextToken")
            if not next_token:
                break

        rows = sorted(
            (
                {"schema_name": table["schema"], "table_name": table["name"]}
                for table in tables
                if table.get("schema") not in SYSTEM_SCHEMAS
                and table.get("type") != SYSTEM_TABLE_TYPE
            ),
            key=lambda row: (row["schema_name"], row["table_name"]),
        )
        # The listing carries no column metadata
        return group_columns(rows, lambda row: None)

    async def _information_schema(self) -> SchemaMap:
        result = await self.execute_query(INFORMATION_SCHEMA_QUERY)
        return group_columns(result.rows, information_schema_row_to_column)

    async def get_schema(self) -> SchemaMap:
        return await resolve_schema(BackendType.REDSHIFT, self.schema_strategies())

    async def get_health_status(self) -> HealthStatus:
        ceiling = self.settings.health_check_max_wait_seconds
        try:
            if self.connected:
                await self._client.probe(ceiling)
            else:
                # A successful reconnect has already run the probe
                await self._reconnect(ceiling)
        except Exception as e:
            self._connected = False
            self._status = ConnectionStatus.DISCONNECTED
            message = sanitize_error_message(str(e))
            self.logger.warning("health_check_failed", error=message)
            return HealthStatus(status="unhealthy", connected=False, error=message)

        return HealthStatus(
            status="healthy",
            connected=True,
            workgroup=self.settings.cluster_identifier or self.settings.workgroup_name,
            database=self.settings.database,
            region=self.settings.region,
        )
