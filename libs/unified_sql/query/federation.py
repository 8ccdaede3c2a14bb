"""
Federated query engine for cross-source statements.

A statement referencing both ``rs.`` and ``ss.`` tables cannot run on either
backend. Each referenced table is pulled from its own backend, the pulled
rows are registered as pandas DataFrames in a private in-memory DuckDB
connection, and the statement (with its prefixed names rewritten to the
registered relation names) runs there.
"""

import asyncio
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import duckdb
import pandas as pd
import structlog
from pydantic import BaseModel, Field

from ..connectors.base import (
    BackendConnector,
    BackendType,
    FederationError,
    QueryResult,
)
from ..normalizer import normalize_tabular
from .references import (
    TableReference,
    find_table_references,
    rewrite_references,
    unique_references,
)

logger = structlog.get_logger(__name__)

CROSS_SOURCE = "cross"

READ_STATEMENT = re.compile(r"^\s*(?:SELECT|WITH)\b", re.IGNORECASE)
SELECT_KEYWORD = re.compile(r"\bSELECT\b", re.IGNORECASE)
WHERE_CLAUSE = re.compile(
    r"\bWHERE\s+(?P<body>.+?)"
    r"(?=\s+(?:GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT|OFFSET|QUALIFY|WINDOW|"
    r"UNION|EXCEPT|INTERSECT)\b|\s*;?\s*$)",
    re.IGNORECASE | re.DOTALL,
)
CONJUNCTION = re.compile(r"\s+AND\s+", re.IGNORECASE)
DISJUNCTION = re.compile(r"\bOR\b", re.IGNORECASE)
SIMPLE_PREDICATE = re.compile(
    r"^(?P<alias>[a-z_][a-z0-9_]*)\.(?P<column>[a-z_][a-z0-9_]*)\s*"
    r"(?P<op><>|!=|<=|>=|=|<|>)\s*"
    r"(?P<literal>'(?:[^']|'')*'|-?\d+(?:\.\d+)?)$",
    re.IGNORECASE,
)


class FederatedTable(BaseModel):
    """Rows pulled from one backend, registered for a single federated query."""

    name: str
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    source: BackendType

    def to_frame(self) -> pd.DataFrame:
        """Build a DataFrame; empty pulls keep their column names."""
        if not self.rows:
            return pd.DataFrame(
                {column: pd.Series(dtype="string") for column in self.columns}
            )
        return pd.DataFrame.from_records(self.rows, columns=self.columns)


class RelationRegistry:
    """
    Named in-memory relations over a private DuckDB connection.

    One registry serves exactly one federated query, so relations from
    concurrent queries never see each other.
    """

    def __init__(self) -> None:
        self._connection = duckdb.connect(":memory:")
        self._names: set[str] = set()

    def register(self, table: FederatedTable) -> None:
        """Register ``table``, replacing any relation with the same name."""
        if table.name in self._names:
            self._connection.unregister(table.name)
        self._connection.register(table.name, table.to_frame())
        self._names.add(table.name)

    @property
    def names(self) -> set[str]:
        return set(self._names)

    def execute(self, sql: str) -> tuple[list[str], list[tuple]]:
        """Run one read-only statement against the registered relations."""
        cursor = self._connection.execute(sql)
        columns = [desc[0] for desc in cursor.description or []]
        return columns, cursor.fetchall()

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "RelationRegistry":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


@dataclass
class SourcePull:
    """The query that materializes one referenced table."""

    reference: TableReference
    predicates: list[str] = field(default_factory=list)

    @property
    def query(self) -> str:
        sql = f"SELECT * FROM {self.reference.native_name}"
        if self.predicates:
            sql += " WHERE " + " AND ".join(self.predicates)
        return sql


def pushdown_predicates(
    sql: str, references: list[TableReference]
) -> dict[tuple, list[str]]:
    """
    Select WHERE conjuncts that can be evaluated by a single source.

    Only statements with one SELECT and an AND-only, parenthesis-free WHERE
    clause qualify. A conjunct qualifies when it compares an aliased column
    with a string or numeric literal, and the alias belongs to a table that
    is referenced exactly once. The full WHERE clause still runs locally, so
    pushed predicates only shrink the pulls.

    Returns:
        Predicates keyed by ``TableReference.key``, alias prefix removed
    """
    if len(SELECT_KEYWORD.findall(sql)) != 1:
        return {}

    where = WHERE_CLAUSE.search(sql)
    if where is None:
        return {}
    body = where.group("body").strip()
    if DISJUNCTION.search(body) or "(" in body or ")" in body:
        return {}

    occurrences = Counter(reference.key for reference in references)
    by_alias = {
        reference.alias.lower(): reference
        for reference in references
        if reference.alias and occurrences[reference.key] == 1
    }

    pushed: dict[tuple, list[str]] = {}
    for conjunct in CONJUNCTION.split(body):
        match = SIMPLE_PREDICATE.match(conjunct.strip())
        if match is None:
            continue
        reference = by_alias.get(match.group("alias").lower())
        if reference is None:
            continue
        pushed.setdefault(reference.key, []).append(
            f"{match.group('column')} {match.group('op')} {match.group('literal')}"
        )
    return pushed


class FederationEngine:
    """Executes statements that span both backends."""

    def __init__(
        self,
        connectors: dict[BackendType, BackendConnector],
        pushdown: bool = False,
    ):
        """
        Initialize the engine.

        Args:
            connectors: Backend managers used for the per-table pulls
            pushdown: Push simple WHERE predicates into the pulls
        """
        self.connectors = connectors
        self.pushdown = pushdown

    def plan(self, sql: str) -> list[SourcePull]:
        """One pull per distinct referenced table, in statement order."""
        references = find_table_references(sql)
        predicates = pushdown_predicates(sql, references) if self.pushdown else {}
        return [
            SourcePull(reference, predicates.get(reference.key, []))
            for reference in unique_references(references)
        ]

    async def _pull(self, pull: SourcePull) -> FederatedTable:
        reference = pull.reference
        connector = self.connectors[reference.source]
        logger.debug(
            "federated_pull_started",
            source=reference.source.value,
            query=pull.query,
        )
        result = await connector.execute_query(pull.query)
        return FederatedTable(
            name=reference.local_name,
            columns=result.columns,
            rows=result.rows,
            source=reference.source,
        )

    @staticmethod
    def _run_locally(
        tables: list[FederatedTable], sql: str
    ) -> tuple[list[str], list[tuple]]:
        with RelationRegistry() as registry:
            for table in tables:
                registry.register(table)
            return registry.execute(sql)

    async def execute(self, sql: str) -> QueryResult:
        """
        Run a cross-source statement.

        Raises:
            FederationError: If the statement is not a read, any pull fails,
                or the local execution fails
        """
        if not READ_STATEMENT.match(sql):
            raise FederationError(
                "Cross-source queries must be SELECT statements"
            )

        start_time = time.perf_counter()
        pulls = self.plan(sql)
        logger.info(
            "federated_query_started",
            tables=[pull.reference.local_name for pull in pulls],
        )

        # A failed pull cancels its siblings before the error surfaces
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(self._pull(pull)) for pull in pulls]
        except ExceptionGroup as group_error:
            error = group_error.exceptions[0]
            logger.error("federated_pull_failed", error=str(error))
            raise FederationError(f"Cross-source query failed: {error}") from error
        tables = [task.result() for task in tasks]

        local_sql = rewrite_references(sql, lambda reference: reference.local_name)
        try:
            columns, tuples = await asyncio.to_thread(
                self._run_locally, list(tables), local_sql
            )
        except Exception as e:
            logger.error("federated_execution_failed", error=str(e))
            raise FederationError(f"Cross-source query failed: {e}") from e

        execution_time = int((time.perf_counter() - start_time) * 1000)
        result = normalize_tabular(columns, tuples, execution_time, CROSS_SOURCE)
        logger.info(
            "federated_query_completed",
            row_count=result.row_count,
            pulled_rows={table.name: len(table.rows) for table in tables},
            execution_time_ms=execution_time,
        )
        return result
