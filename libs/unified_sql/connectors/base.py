"""
Base backend connector interface and common data structures.

This module defines the abstract base class shared by the Redshift and
SQL Server connection pool managers, the canonical result and schema
models every backend is normalized into, and the error taxonomy used
across the library.
"""

import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field


def sanitize_error_message(error_message: str) -> str:
    """
    Sanitize error messages to remove sensitive information.

    Args:
        error_message: The raw error message

    Returns:
        str: Sanitized error message
    """
    sensitive_patterns = [
        (r'password[=:]\s*[\'"][^\'";]+[\'"]', "password=***"),
        (r"pwd[=:]\s*[^;\s]+", "pwd=***"),
        (r"password[=:]\s*\w+", "password=***"),
        (r'user[=:]\s*[\'"][^\'";]+[\'"]', "user=***"),
        (r'token[=:]\s*[\'"][^\'";]+[\'"]', "token=***"),
        (r'secret[=:]\s*[\'"][^\'";]+[\'"]', "secret=***"),
        (r"aws_secret_access_key[=:]\s*\S+", "aws_secret_access_key=***"),
    ]

    sanitized_message = error_message
    for pattern, replacement in sensitive_patterns:
        sanitized_message = re.sub(
            pattern, replacement, sanitized_message, flags=re.IGNORECASE
        )

    return sanitized_message


class BackendType(str, Enum):
    """Supported SQL backends."""

    REDSHIFT = "redshift"
    SQLSERVER = "sqlserver"

    @property
    def display_name(self) -> str:
        """Human readable backend name used in error messages."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    BackendType.REDSHIFT: "Redshift",
    BackendType.SQLSERVER: "SQL Server",
}


class ConnectionStatus(str, Enum):
    """Connection pool lifecycle states."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class ColumnDescriptor(BaseModel):
    """Information about a table column."""

    column_name: str
    data_type: str | None = None
    max_length: int | None = None
    is_nullable: bool | None = None
    is_identity: bool | None = None
    is_primary_key: bool | None = None


# schema name -> table name -> columns in native ordinal order
SchemaMap = dict[str, dict[str, list[ColumnDescriptor]]]


def schema_map_to_dict(schema_map: SchemaMap) -> dict[str, Any]:
    """Convert a schema map into plain JSON-serializable dictionaries."""
    return {
        schema_name: {
            table_name: [column.model_dump() for column in columns]
            for table_name, columns in tables.items()
        }
        for schema_name, tables in schema_map.items()
    }


class QueryResult(BaseModel):
    """Canonical, backend-agnostic result of a query execution."""

    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    execution_time: int = Field(default=0, ge=0, description="Milliseconds")
    source: str | None = None

    def to_response(self, message: str | None = None) -> dict[str, Any]:
        """Convert result to the response shape consumed by the HTTP layer."""
        response: dict[str, Any] = {
            "status": "success",
            "columns": self.columns,
            "rows": self.rows,
            "row_count": self.row_count,
            "execution_time": self.execution_time,
        }
        if self.source:
            response["source"] = self.source
        if message:
            response["message"] = message
        return response


class PoolStats(BaseModel):
    """Point-in-time pool utilization."""

    size: int = 0
    available: int = 0
    pending: int = 0


class HealthStatus(BaseModel):
    """Health report for a single backend."""

    status: str
    connected: bool
    pool: PoolStats | None = None
    error: str | None = None
    workgroup: str | None = None
    database: str | None = None
    region: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting fields that were not reported."""
        return self.model_dump(exclude_none=True)


class BackendConnector(ABC):
    """
    Abstract base class for backend connection pool managers.

    Each concrete manager owns exactly one pool for its backend. The pool
    is created lazily by ``init`` and transparently re-created by
    ``get_pool`` when it reports itself disconnected.
    """

    def __init__(self) -> None:
        self._status = ConnectionStatus.UNINITIALIZED
        self.logger = structlog.get_logger(__name__).bind(
            backend=self.backend_type.value
        )

    @property
    def status(self) -> ConnectionStatus:
        """Get current connection status."""
        return self._status

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Return the backend served by this manager."""
        pass

    @abstractmethod
    async def init(self) -> None:
        """
        Establish the backend pool.

        Raises:
            ConnectionError: If the backend requires a working connection
                at startup and the connect call fails
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the pool. Calling this on a closed pool is a no-op."""
        pass

    @abstractmethod
    async def get_pool(self) -> Any:
        """Return the live pool, reconnecting once if it is disconnected."""
        pass

    @abstractmethod
    async def execute_query(self, sql: str) -> QueryResult:
        """
        Execute exactly one SQL statement.

        Raises:
            ConnectionError: If no pool can be obtained
            QueryExecutionError: If the backend rejects the statement
        """
        pass

    @abstractmethod
    async def get_schema(self) -> SchemaMap:
        """Discover schema -> table -> column metadata. Never raises."""
        pass

    @abstractmethod
    async def get_health_status(self) -> HealthStatus:
        """Probe the backend with a trivial statement. Never raises."""
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


class UnifiedSQLError(Exception):
    """Base class for all errors raised by the execution layer."""

    def __init__(self, message: str, backend: BackendType | None = None):
        super().__init__(message)
        self.backend = backend


class ConnectionError(UnifiedSQLError):
    """Exception raised when a backend pool cannot be established."""


class QueryExecutionError(UnifiedSQLError):
    """Exception raised for query execution errors."""

    def __init__(
        self,
        message: str,
        query: str | None = None,
        backend: BackendType | None = None,
    ):
        super().__init__(message, backend)
        self.query = query


class QueryTimeoutError(QueryExecutionError):
    """Statement did not reach a terminal state within the polling ceiling."""


class StatementFailedError(QueryExecutionError):
    """The warehouse reported the statement as FAILED."""


class StatementAbortedError(QueryExecutionError):
    """The warehouse reported the statement as ABORTED."""


class AmbiguousSourceError(QueryExecutionError):
    """A statement carries no recognized source prefix."""


class FederationError(UnifiedSQLError):
    """Any failure while executing a cross-source query."""


class SchemaUnavailableError(UnifiedSQLError):
    """Every schema discovery strategy failed for a backend."""
