"""
Source-prefixed table references.

Statements name their tables with a source prefix: ``rs.<schema>.<table>``
for Redshift and ``ss.<schema>.<table>`` (optionally ``ss.[<schema>].<table>``)
for SQL Server. This module finds those references and rewrites them.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from ..connectors.base import BackendType

SOURCE_PREFIXES = {
    "rs": BackendType.REDSHIFT,
    "ss": BackendType.SQLSERVER,
}
PREFIX_FOR_SOURCE = {source: prefix for prefix, source in SOURCE_PREFIXES.items()}

TABLE_PATH = re.compile(
    r"\b(?P<prefix>rs|ss)\."
    r"(?:\[(?P<quoted_schema>[^\]]+)\]|(?P<schema>[a-z0-9_]+))\."
    r"(?:\[(?P<quoted_table>[^\]]+)\]|(?P<table>[a-z0-9_]+))",
    re.IGNORECASE,
)

TABLE_ALIAS = re.compile(r"\s+(?:AS\s+)?([a-z_][a-z0-9_]*)\b", re.IGNORECASE)

# Words that can follow a table reference without being its alias
RESERVED_WORDS = frozenset(
    {
        "AND", "AS", "CROSS", "EXCEPT", "FETCH", "FROM", "FULL", "GROUP",
        "HAVING", "INNER", "INTERSECT", "JOIN", "LEFT", "LIMIT", "NATURAL",
        "OFFSET", "ON", "OR", "ORDER", "OUTER", "QUALIFY", "RIGHT", "SELECT",
        "UNION", "USING", "WHERE", "WINDOW", "WITH",
    }
)


@dataclass(frozen=True)
class TableReference:
    """One prefixed table reference found in a statement."""

    source: BackendType
    schema: str
    table: str
    alias: str | None = field(default=None, compare=False)

    @property
    def key(self) -> tuple[BackendType, str, str]:
        """Identity of the referenced table, ignoring case and alias."""
        return (self.source, self.schema.lower(), self.table.lower())

    @property
    def local_name(self) -> str:
        """Relation name used when the table is registered in-process."""
        raw = f"{PREFIX_FOR_SOURCE[self.source]}_{self.schema}_{self.table}"
        return re.sub(r"\W", "_", raw).lower()

    @property
    def native_name(self) -> str:
        """The table name as the owning backend spells it."""
        if self.source == BackendType.SQLSERVER:
            return f"[{self.schema}].[{self.table}]"
        return f"{self.schema}.{self.table}"


def _reference_from_match(match: re.Match, alias: str | None = None) -> TableReference:
    return TableReference(
        source=SOURCE_PREFIXES[match.group("prefix").lower()],
        schema=match.group("quoted_schema") or match.group("schema"),
        table=match.group("quoted_table") or match.group("table"),
        alias=alias,
    )


def _alias_after(sql: str, position: int) -> str | None:
    match = TABLE_ALIAS.match(sql, position)
    if match is None or match.group(1).upper() in RESERVED_WORDS:
        return None
    return match.group(1)


def find_table_references(sql: str) -> list[TableReference]:
    """Every prefixed reference in statement order, with its alias if any."""
    return [
        _reference_from_match(match, _alias_after(sql, match.end()))
        for match in TABLE_PATH.finditer(sql)
    ]


def unique_references(references: list[TableReference]) -> list[TableReference]:
    """Drop repeated references to the same table, keeping the first."""
    seen: dict[tuple, TableReference] = {}
    for reference in references:
        seen.setdefault(reference.key, reference)
    return list(seen.values())


def referenced_sources(sql: str) -> set[BackendType]:
    """Backends named by at least one prefixed reference."""
    return {
        SOURCE_PREFIXES[match.group("prefix").lower()]
        for match in TABLE_PATH.finditer(sql)
    }


def rewrite_references(
    sql: str, replace: Callable[[TableReference], str | None]
) -> str:
    """
    Substitute every prefixed reference.

    ``replace`` returns the new text for a reference, or ``None`` to leave
    that reference untouched.
    """

    def substitute(match: re.Match) -> str:
        replacement = replace(_reference_from_match(match))
        return match.group(0) if replacement is None else replacement

    return TABLE_PATH.sub(substitute, sql)


def strip_source_prefix(sql: str, source: BackendType) -> str:
    """
    Rewrite ``source``'s references into that backend's native names.

    ``rs.s.t`` becomes ``s.t``; ``ss.s.t`` and ``ss.[s].t`` become
    ``[s].[t]``. References to the other backend are left alone.
    """
    return rewrite_references(
        sql,
        lambda reference: (
            reference.native_name if reference.source == source else None
        ),
    )
