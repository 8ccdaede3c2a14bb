"""
Query routing.

Decides which backend runs a statement from its source prefixes, strips the
prefixes for single-backend statements and hands cross-source statements to
the federation engine.
"""

from enum import Enum
from typing import Any

import structlog

from ..connectors.base import (
    AmbiguousSourceError,
    BackendConnector,
    BackendType,
    QueryResult,
    UnifiedSQLError,
)
from ..connectors.config import FederationSettings, UnprefixedPolicy
from .federation import FederationEngine
from .references import referenced_sources, strip_source_prefix

logger = structlog.get_logger(__name__)


class QuerySource(str, Enum):
    """Where a statement runs."""

    REDSHIFT = "redshift"
    SQLSERVER = "sqlserver"
    CROSS = "cross"


_SOURCE_FOR_BACKEND = {
    BackendType.REDSHIFT: QuerySource.REDSHIFT,
    BackendType.SQLSERVER: QuerySource.SQLSERVER,
}


def heuristic_source(sql: str) -> QuerySource:
    """Guess the backend of an unprefixed statement from dialect hints."""
    lowered = sql.lower()
    if "limit " in lowered and "top " not in lowered:
        return QuerySource.REDSHIFT
    return QuerySource.SQLSERVER


def detect_query_source(
    sql: str, policy: UnprefixedPolicy = UnprefixedPolicy.REJECT
) -> QuerySource:
    """
    Classify a statement by the source prefixes it uses.

    Raises:
        AmbiguousSourceError: No prefix is present and the policy is ``reject``
    """
    sources = referenced_sources(sql)
    if len(sources) > 1:
        return QuerySource.CROSS
    if sources:
        return _SOURCE_FOR_BACKEND[sources.pop()]

    if policy == UnprefixedPolicy.SQLSERVER:
        return QuerySource.SQLSERVER
    if policy == UnprefixedPolicy.REDSHIFT:
        return QuerySource.REDSHIFT
    if policy == UnprefixedPolicy.HEURISTIC:
        return heuristic_source(sql)

    raise AmbiguousSourceError(
        "Query does not reference any source-prefixed table; "
        "use rs.<schema>.<table> for Redshift or ss.<schema>.<table> for SQL Server",
        query=sql,
    )


def transform_query_for_source(sql: str, source: QuerySource) -> str:
    """Strip the source prefixes a single-backend statement carries."""
    if source == QuerySource.REDSHIFT:
        return strip_source_prefix(sql, BackendType.REDSHIFT)
    if source == QuerySource.SQLSERVER:
        return strip_source_prefix(sql, BackendType.SQLSERVER)
    return sql


def error_response(message: str) -> dict[str, Any]:
    """Serialized failure in the same shape as a successful result."""
    return {
        "status": "error",
        "columns": [],
        "rows": [],
        "row_count": 0,
        "execution_time": 0,
        "error": message,
    }


class QueryRouter:
    """Dispatches statements to a backend or to the federation engine."""

    def __init__(
        self,
        redshift: BackendConnector,
        sqlserver: BackendConnector,
        federation: FederationEngine | None = None,
        settings: FederationSettings | None = None,
    ):
        self.settings = settings or FederationSettings()
        self.connectors = {
            QuerySource.REDSHIFT: redshift,
            QuerySource.SQLSERVER: sqlserver,
        }
        self.federation = federation or FederationEngine(
            {BackendType.REDSHIFT: redshift, BackendType.SQLSERVER: sqlserver},
            pushdown=self.settings.pushdown_predicates,
        )

    async def execute(self, sql: str) -> QueryResult:
        """
        Route and run one statement.

        Raises:
            UnifiedSQLError: Any connection, query, federation or routing error
        """
        source = detect_query_source(sql, self.settings.unprefixed_policy)
        logger.info("query_routed", source=source.value)

        if source == QuerySource.CROSS:
            return await self.federation.execute(sql)

        result = await self.connectors[source].execute_query(
            transform_query_for_source(sql, source)
        )
        return result.model_copy(update={"source": source.value})

    async def execute_unified(self, sql: str) -> dict[str, Any]:
        """Run a statement and serialize the outcome, never raising domain errors."""
        try:
            result = await self.execute(sql)
        except UnifiedSQLError as e:
            logger.error(
                "unified_query_failed", error=str(e), error_type=type(e).__name__
            )
            return error_response(str(e) or "Query execution failed")

        return result.to_response(
            message=(
                f"Query executed successfully "
                f"({result.row_count} rows from {result.source})"
            )
        )
