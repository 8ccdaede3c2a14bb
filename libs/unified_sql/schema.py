"""
Schema discovery and aggregation.

Every backend describes its catalog through an ordered list of named
strategies. They are tried in order until one succeeds; when all of them
fail the backend reports an empty schema map so schema browsing never
blocks query execution.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from .connectors.base import (
    BackendType,
    ColumnDescriptor,
    SchemaMap,
    SchemaUnavailableError,
    schema_map_to_dict,
)

if TYPE_CHECKING:
    from .connectors.base import BackendConnector

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SchemaStrategy:
    """A named way of discovering a backend's schema map."""

    name: str
    fetch: Callable[[], Awaitable[SchemaMap]]


def group_columns(
    rows: Iterable[dict[str, Any]],
    to_descriptor: Callable[[dict[str, Any]], ColumnDescriptor | None],
) -> SchemaMap:
    """
    Group catalog rows into ``schema -> table -> columns``.

    Rows must already be ordered by schema, table and column ordinal; that
    order is preserved. ``to_descriptor`` may return ``None`` for a table
    that has no column information, which registers the table with an
    empty column list.
    """
    schemas: SchemaMap = {}
    for row in rows:
        tables = schemas.setdefault(row["schema_name"], {})
        columns = tables.setdefault(row["table_name"], [])
        descriptor = to_descriptor(row)
        if descriptor is not None:
            columns.append(descriptor)
    return schemas


async def try_strategies(
    backend: BackendType, strategies: list[SchemaStrategy]
) -> SchemaMap:
    """
    Run strategies in order and return the first successful schema map.

    Raises:
        SchemaUnavailableError: If every strategy failed
    """
    failures = []
    for strategy in strategies:
        try:
            schema = await strategy.fetch()
        except Exception as e:
            logger.warning(
                "schema_strategy_failed",
                backend=backend.value,
                strategy=strategy.name,
                error=str(e),
            )
            failures.append(f"{strategy.name}: {e}")
            continue

        logger.debug(
            "schema_strategy_succeeded",
            backend=backend.value,
            strategy=strategy.name,
            schemas=len(schema),
        )
        return schema

    raise SchemaUnavailableError(
        f"{backend.display_name} schema unavailable ({'; '.join(failures)})",
        backend,
    )


async def resolve_schema(
    backend: BackendType, strategies: list[SchemaStrategy]
) -> SchemaMap:
    """Like ``try_strategies`` but downgrades total failure to an empty map."""
    try:
        return await try_strategies(backend, strategies)
    except SchemaUnavailableError as e:
        logger.error("schema_unavailable", backend=backend.value, error=str(e))
        return {}


def summarize(schema: SchemaMap) -> dict[str, int]:
    """Count schemas and tables in a schema map."""
    return {
        "schemas": len(schema),
        "tables": sum(len(tables) for tables in schema.values()),
    }


def table_listing(schema: SchemaMap) -> dict[str, list[str]]:
    """Reduce a schema map to ``schema -> [table names]``."""
    return {schema_name: list(tables) for schema_name, tables in schema.items()}


class SchemaAggregator:
    """Builds the combined schema of both backends."""

    def __init__(
        self, redshift: "BackendConnector", sqlserver: "BackendConnector"
    ) -> None:
        self.redshift = redshift
        self.sqlserver = sqlserver

    async def get_unified_schema(self) -> dict[str, Any]:
        """
        Fetch both schema maps concurrently.

        Returns:
            ``{"schemas": {"redshift": ..., "sqlserver": ...},
            "summary": {"redshift": {...}, "sqlserver": {...}}}``
        """
        redshift_schema, sqlserver_schema = await asyncio.gather(
            self.redshift.get_schema(), self.sqlserver.get_schema()
        )

        summary = {
            BackendType.REDSHIFT.value: summarize(redshift_schema),
            BackendType.SQLSERVER.value: summarize(sqlserver_schema),
        }
        logger.info("unified_schema_fetched", **summary)

        return {
            "schemas": {
                BackendType.REDSHIFT.value: schema_map_to_dict(redshift_schema),
                BackendType.SQLSERVER.value: schema_map_to_dict(sqlserver_schema),
            },
            "summary": summary,
        }
