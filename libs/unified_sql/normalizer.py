"""
Result normalization.

Each backend driver returns a differently shaped result: SQL Server yields
plain row mappings plus affected-row counts, the Redshift Data API yields
column metadata plus records of tagged-union cells, and the in-process
federation engine yields column names plus tuples. The functions here turn
every one of them into the canonical ``QueryResult``.
"""

from collections.abc import Iterable, Sequence
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from .connectors.base import QueryResult

# Precedence matters: the first present, non-null tag wins.
CELL_VALUE_TAGS = (
    "stringValue",
    "longValue",
    "doubleValue",
    "booleanValue",
    "blobValue",
)


class RelationalResultSet(BaseModel):
    """Raw result of a SQL Server statement."""

    kind: Literal["relational"] = "relational"
    recordset: list[dict[str, Any]] | None = None
    columns: list[str] | None = None
    rows_affected: list[int] = Field(default_factory=list)


class WarehouseResultSet(BaseModel):
    """Raw result of a Redshift Data API statement."""

    kind: Literal["warehouse"] = "warehouse"
    column_metadata: list[dict[str, Any]] = Field(default_factory=list)
    records: list[list[dict[str, Any]]] = Field(default_factory=list)
    total_num_rows: int | None = None


BackendResultSet = Annotated[
    RelationalResultSet | WarehouseResultSet, Field(discriminator="kind")
]


def extract_cell_value(cell: dict[str, Any] | None) -> Any:
    """Pick the scalar out of a Data API field, or ``None`` when it is null."""
    if not cell or cell.get("isNull") is True:
        return None
    for tag in CELL_VALUE_TAGS:
        value = cell.get(tag)
        if value is not None:
            return value
    return None


def unique_column_names(names: Iterable[str]) -> list[str]:
    """Suffix repeated column names so every name appears once, in order."""
    seen: dict[str, int] = {}
    unique: list[str] = []
    for name in names:
        candidate = name
        while candidate in seen:
            seen[name] += 1
            candidate = f"{name}_{seen[name]}"
        seen.setdefault(candidate, 0)
        unique.append(candidate)
    return unique


def normalize_relational(
    result: RelationalResultSet,
    execution_time: int = 0,
    source: str | None = None,
) -> QueryResult:
    """
    Normalize a SQL Server result.

    Columns come from driver metadata when it was reported, otherwise from
    the keys of the first row. A result without rows has no columns.
    Statements that return no recordset report the first affected-row count
    instead.
    """
    recordset = result.recordset or []

    if not recordset:
        columns = []
    elif result.columns:
        columns = unique_column_names(result.columns)
    else:
        columns = list(recordset[0].keys())

    if recordset:
        row_count = len(recordset)
    elif result.rows_affected:
        row_count = result.rows_affected[0] or 0
    else:
        row_count = 0

    return QueryResult(
        columns=columns,
        rows=recordset,
        row_count=row_count,
        execution_time=execution_time,
        source=source,
    )


def normalize_warehouse(
    result: WarehouseResultSet,
    execution_time: int = 0,
    source: str | None = None,
) -> QueryResult:
    """Normalize a Redshift Data API result."""
    columns = unique_column_names(
        meta.get("name") or f"column_{index}"
        for index, meta in enumerate(result.column_metadata)
    )

    rows = []
    for record in result.records:
        row: dict[str, Any] = {}
        for index, cell in enumerate(record):
            column_name = columns[index] if index < len(columns) else f"column_{index}"
            row[column_name] = extract_cell_value(cell)
        rows.append(row)

    if not rows:
        columns = []
    elif not columns:
        columns = list(rows[0].keys())

    return QueryResult(
        columns=columns,
        rows=rows,
        row_count=result.total_num_rows or len(rows),
        execution_time=execution_time,
        source=source,
    )


def normalize_tabular(
    column_names: Sequence[str],
    tuples: Iterable[Sequence[Any]],
    execution_time: int = 0,
    source: str | None = None,
) -> QueryResult:
    """Normalize a column-name list plus row tuples (DB-API cursor output)."""
    columns = unique_column_names(column_names)
    rows = [dict(zip(columns, values)) for values in tuples]

    if not rows:
        return QueryResult(
            columns=[], rows=[], row_count=0, execution_time=execution_time, source=source
        )

    return QueryResult(
        columns=columns,
        rows=rows,
        row_count=len(rows),
        execution_time=execution_time,
        source=source,
    )


def normalize(
    result: BackendResultSet,
    execution_time: int = 0,
    source: str | None = None,
) -> QueryResult:
    """Normalize any backend-native result set."""
    if isinstance(result, WarehouseResultSet):
        return normalize_warehouse(result, execution_time, source)
    return normalize_relational(result, execution_time, source)
