"""Backend connection managers."""

from .base import (
    BackendConnector,
    BackendType,
    ConnectionStatus,
    HealthStatus,
    QueryResult,
)
from .redshift import RedshiftConnector
from .sqlserver import SqlServerConnector

__all__ = [
    "BackendConnector",
    "BackendType",
    "ConnectionStatus",
    "HealthStatus",
    "QueryResult",
    "RedshiftConnector",
    "SqlServerConnector",
]
