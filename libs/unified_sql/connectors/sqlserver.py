"""
SQL Server connection pool manager.

The pool is a SQLAlchemy async engine on the ``mssql+aioodbc`` dialect.
Statements are sent verbatim with ``exec_driver_sql`` so that SQL Server
syntax (``[bracketed]`` identifiers, ``TOP``, ``GO``-less batches) never goes
through SQLAlchemy's parameter parsing.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..normalizer import (
    RelationalResultSet,
    normalize_relational,
    unique_column_names,
)
from ..schema import SchemaStrategy, group_columns, resolve_schema
from .base import (
    BackendConnector,
    BackendType,
    ColumnDescriptor,
    ConnectionError,
    ConnectionStatus,
    HealthStatus,
    PoolStats,
    QueryExecutionError,
    QueryResult,
    QueryTimeoutError,
    SchemaMap,
    sanitize_error_message,
)
from .config import SqlServerSettings

CATALOG_QUERY = """
SELECT
  s.name AS schema_name,
  t.name AS table_name,
  c.name AS column_name,
  ty.name AS data_type,
  c.max_length,
  c.is_nullable,
  c.is_identity,
  CASE WHEN pk.column_id IS NOT NULL THEN 1 ELSE 0 END AS is_primary_key
FROM sys.schemas s
INNER JOIN sys.tables t ON s.schema_id = t.schema_id
INNER JOIN sys.columns c ON t.object_id = c.object_id
INNER JOIN sys.types ty ON c.user_type_id = ty.user_type_id
LEFT JOIN (
  SELECT ic.column_id, ic.object_id
  FROM sys.index_columns ic
  INNER JOIN sys.indexes i
    ON ic.index_id = i.index_id AND ic.object_id = i.object_id
  WHERE i.is_primary_key = 1
) pk ON c.column_id = pk.column_id AND c.object_id = pk.object_id
ORDER BY s.name, t.name, c.column_id
"""

HEALTH_QUERY = "SELECT 1 as healthy"


class SqlServerPool:
    """Thin wrapper giving an async engine the pool interface the manager needs."""

    def __init__(self, engine: AsyncEngine, request_timeout: float | None = None):
        self.engine = engine
        self.request_timeout = request_timeout
        self.connected = True
        self._waiting = 0

    @classmethod
    async def connect(cls, settings: SqlServerSettings) -> "SqlServerPool":
        """Create the engine and prove it can reach the server."""
        engine = create_async_engine(
            settings.sqlalchemy_url(), **settings.engine_options()
        )
        try:
            async with engine.connect() as conn:
                await conn.exec_driver_sql(HEALTH_QUERY)
        except Exception:
            await engine.dispose()
            raise

        return cls(engine, settings.request_timeout_seconds or None)

    async def query(self, sql: str) -> RelationalResultSet:
        """Run one statement, bounded by the request timeout when set."""
        if not self.request_timeout:
            return await self._run(sql)
        try:
            return await asyncio.wait_for(self._run(sql), self.request_timeout)
        except asyncio.TimeoutError:
            raise QueryTimeoutError(
                f"Request timed out after {self.request_timeout:g}s",
                sql,
                BackendType.SQLSERVER,
            ) from None

    async def _run(self, sql: str) -> RelationalResultSet:
        self._waiting += 1
        acquired = False
        try:
            async with self.engine.connect() as conn:
                self._waiting -= 1
                acquired = True

                result = await conn.exec_driver_sql(sql)
                if result.returns_rows:
                    # Positional, so repeated names keep every value
                    columns = unique_column_names(result.keys())
                    recordset = [dict(zip(columns, row)) for row in result.all()]
                    await conn.commit()
                    return RelationalResultSet(recordset=recordset, columns=columns)

                rowcount = result.rowcount
                await conn.commit()
                return RelationalResultSet(
                    rows_affected=[rowcount] if rowcount is not None and rowcount >= 0 else []
                )
        except DBAPIError as e:
            if e.connection_invalidated:
                self.connected = False
            raise
        finally:
            if not acquired:
                self._waiting -= 1

    def stats(self) -> PoolStats:
        """Open, idle and waiting connection counts."""
        pool = self.engine.pool
        checked_in = pool.checkedin()
        return PoolStats(
            size=checked_in + pool.checkedout(),
            available=checked_in,
            pending=self._waiting,
        )

    async def close(self) -> None:
        self.connected = False
        await self.engine.dispose()


PoolFactory = Callable[[SqlServerSettings], Awaitable[Any]]


def _as_bool(value: Any) -> bool | None:
    return None if value is None else bool(value)


def catalog_row_to_column(row: dict[str, Any]) -> ColumnDescriptor:
    """Map one ``sys.columns`` catalog row to a column descriptor."""
    return ColumnDescriptor(
        column_name=row["column_name"],
        data_type=row.get("data_type"),
        max_length=row.get("max_length"),
        is_nullable=_as_bool(row.get("is_nullable")),
        is_identity=_as_bool(row.get("is_identity")),
        is_primary_key=_as_bool(row.get("is_primary_key")),
    )


class SqlServerConnector(BackendConnector):
    """Pooled SQL Server manager: one lazily created, self-healing pool."""

    def __init__(
        self,
        settings: SqlServerSettings | None = None,
        pool_factory: PoolFactory | None = None,
    ):
        """
        Initialize the manager without connecting.

        Args:
            settings: Connection settings, read from the environment if omitted
            pool_factory: Coroutine creating a pool from settings; anything with
                ``connected``, ``query``, ``stats`` and ``close`` will do
        """
        self.settings = settings or SqlServerSettings()
        self._pool_factory = pool_factory or SqlServerPool.connect
        self._pool: Any = None
        self._lock = asyncio.Lock()
        super().__init__()

    @property
    def backend_type(self) -> BackendType:
        return BackendType.SQLSERVER

    async def init(self) -> None:
        """Create the pool; a failed connect is fatal for this backend."""
        async with self._lock:
            await self._connect()

    async def _connect(self) -> Any:
        if self._pool is not None and self._pool.connected:
            return self._pool

        if self._pool is not None:
            await self._discard_pool()

        self._status = ConnectionStatus.CONNECTING
        try:
            self._pool = await self._pool_factory(self.settings)
        except Exception as e:
            self._pool = None
            self._status = ConnectionStatus.DISCONNECTED
            message = sanitize_error_message(str(e))
            self.logger.error(
                "connection_failed", host=self.settings.host, error=message
            )
            raise ConnectionError(
                f"SQL Server connection failed: {message}", BackendType.SQLSERVER
            ) from e

        self._status = ConnectionStatus.CONNECTED
        self.logger.info(
            "connection_pool_created",
            host=self.settings.host,
            database=self.settings.database,
            pool_max=self.settings.pool_max,
        )
        return self._pool

    async def _discard_pool(self) -> None:
        pool, self._pool = self._pool, None
        try:
            await pool.close()
        except Exception as e:
            self.logger.warning("stale_pool_close_failed", error=str(e))

    async def get_pool(self) -> Any:
        pool = self._pool
        if pool is not None and pool.connected:
            return pool

        self.logger.info("reconnecting")
        async with self._lock:
            return await self._connect()

    async def close(self) -> None:
        async with self._lock:
            if self._pool is not None:
                await self._discard_pool()
                self.logger.info("connection_pool_closed")
            self._status = ConnectionStatus.CLOSED

    async def execute_query(self, sql: str) -> QueryResult:
        pool = await self.get_pool()

        start_time = time.perf_counter()
        try:
            raw = await pool.query(sql)
        except QueryExecutionError as e:
            raise type(e)(
                f"SQL Server query error: {e}", sql, BackendType.SQLSERVER
            ) from e
        except Exception as e:
            message = sanitize_error_message(str(e))
            self.logger.error("query_failed", error=message)
            raise QueryExecutionError(
                f"SQL Server query error: {message}", sql, BackendType.SQLSERVER
            ) from e
        execution_time = int((time.perf_counter() - start_time) * 1000)

        result = normalize_relational(raw, execution_time)
        self.logger.debug(
            "query_executed",
            row_count=result.row_count,
            execution_time_ms=execution_time,
        )
        return result

    def schema_strategies(self) -> list[SchemaStrategy]:
        return [SchemaStrategy("sys_catalog", self._catalog_schema)]

    async def _catalog_schema(self) -> SchemaMap:
        result = await self.execute_query(CATALOG_QUERY)
        return group_columns(result.rows, catalog_row_to_column)

    async def get_schema(self) -> SchemaMap:
        return await resolve_schema(BackendType.SQLSERVER, self.schema_strategies())

    async def get_health_status(self) -> HealthStatus:
        try:
            pool = await self.get_pool()
            await pool.query(HEALTH_QUERY)
            return HealthStatus(status="healthy", connected=True, pool=pool.stats())
        except Exception as e:
            message = sanitize_error_message(str(e))
            self.logger.warning("health_check_failed", error=message)
            return HealthStatus(status="unhealthy", connected=False, error=message)
