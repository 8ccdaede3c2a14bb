"""Query routing and cross-source federation."""

from .federation import FederatedTable, FederationEngine, RelationRegistry
from .references import TableReference, find_table_references
from .router import QueryRouter, QuerySource, detect_query_source

__all__ = [
    "FederatedTable",
    "FederationEngine",
    "RelationRegistry",
    "TableReference",
    "find_table_references",
    "QueryRouter",
    "QuerySource",
    "detect_query_source",
]
