"""
Unified SQL Library

Executes SQL against Amazon Redshift (Data API) and SQL Server (pooled)
through one interface, and federates statements that reference tables on
both.

Features:
- Self-healing connection managers per backend
- Submit/poll/fetch client for the Redshift Data API
- Canonical result normalization across drivers
- rs./ss. source-prefix routing
- Cross-source joins executed in an in-process DuckDB
- Schema discovery with ordered fallback strategies
- Combined health reporting
"""

from .connectors.base import (
    AmbiguousSourceError,
    BackendType,
    ConnectionError,
    FederationError,
    QueryExecutionError,
    QueryResult,
    QueryTimeoutError,
    UnifiedSQLError,
)
from .connectors.redshift import RedshiftConnector
from .connectors.sqlserver import SqlServerConnector
from .dependencies import UnifiedSQLManager, get_unified_sql_manager
from .query.federation import FederationEngine
from .query.router import QueryRouter, QuerySource

__all__ = [
    "AmbiguousSourceError",
    "BackendType",
    "ConnectionError",
    "FederationError",
    "QueryExecutionError",
    "QueryResult",
    "QueryTimeoutError",
    "UnifiedSQLError",
    "RedshiftConnector",
    "SqlServerConnector",
    "UnifiedSQLManager",
    "get_unified_sql_manager",
    "FederationEngine",
    "QueryRouter",
    "QuerySource",
]
