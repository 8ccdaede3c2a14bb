"""
SQL execution API endpoints.

Per-backend endpoints (``/sqlserver/...``, ``/redshift/...``) run statements
verbatim on one backend. The ``/sqlv2`` endpoints route by ``rs.``/``ss.``
source prefix and federate cross-source statements.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator

from libs.unified_sql.connectors.base import (
    BackendType,
    UnifiedSQLError,
    schema_map_to_dict,
)
from libs.unified_sql.connectors.config import UnprefixedPolicy
from libs.unified_sql.dependencies import UnifiedSQLManager, get_unified_sql_manager
from libs.unified_sql.query.router import error_response
from libs.unified_sql.schema import summarize, table_listing

logger = structlog.get_logger(__name__)

sqlv2_router = APIRouter(prefix="/sqlv2", tags=["Unified SQL"])
backend_router = APIRouter(tags=["SQL"])

UNPREFIXED_NOTES = {
    UnprefixedPolicy.REJECT: "Queries without a prefix are rejected",
    UnprefixedPolicy.SQLSERVER: "Queries without prefix default to SQL Server",
    UnprefixedPolicy.REDSHIFT: "Queries without prefix default to Redshift",
    UnprefixedPolicy.HEURISTIC: (
        "Queries without prefix run on Redshift when they use LIMIT without TOP, "
        "otherwise on SQL Server"
    ),
}


class ExecuteQueryRequest(BaseModel):
    """Request to execute a statement. Either field may carry the SQL."""

    query: str | None = Field(default=None, min_length=1)
    sql: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def require_statement(self) -> "ExecuteQueryRequest":
        if not (self.query or self.sql):
            raise ValueError("Either 'query' or 'sql' must be provided")
        return self

    @property
    def statement(self) -> str:
        return self.query or self.sql


def _execution_failed(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_response(message))


@sqlv2_router.post("/execute")
async def execute_unified_query(
    request: ExecuteQueryRequest,
    manager: UnifiedSQLManager = Depends(get_unified_sql_manager),
) -> Any:
    """
    Execute a statement routed by source prefix.

    ``rs.schema.table`` names a Redshift table and ``ss.schema.table`` a
    SQL Server table; statements naming both are joined in-process.
    """
    response = await manager.router.execute_unified(request.statement)
    if response["status"] == "error":
        return JSONResponse(status_code=400, content=response)
    return response


@sqlv2_router.get("/schema")
async def get_unified_schema(
    manager: UnifiedSQLManager = Depends(get_unified_sql_manager),
) -> dict[str, Any]:
    """Schema maps of both backends with per-backend counts."""
    unified = await manager.schema.get_unified_schema()
    return {"status": "success", **unified}


@sqlv2_router.get("/health")
async def get_unified_health(
    manager: UnifiedSQLManager = Depends(get_unified_sql_manager),
) -> dict[str, Any]:
    """Combined ``connected``/``partial``/``disconnected`` status."""
    return await manager.health.get_unified_health()


@sqlv2_router.get("/help")
async def get_prefix_help(
    manager: UnifiedSQLManager = Depends(get_unified_sql_manager),
) -> dict[str, Any]:
    return {
        "status": "success",
        "prefixes": {
            BackendType.REDSHIFT.value: {
                "prefix": "rs.",
                "format": "rs.schema.table",
                "example": "SELECT * FROM rs.public.customers LIMIT 10",
            },
            BackendType.SQLSERVER.value: {
                "prefix": "ss.",
                "format": "ss.schema.table",
                "example": "SELECT TOP 10 * FROM ss.dbo.orders",
            },
        },
        "notes": [
            "Use rs. prefix for Redshift tables",
            "Use ss. prefix for SQL Server tables",
            UNPREFIXED_NOTES[manager.settings.unprefixed_policy],
            "Cross-source JOINs are executed in-process",
        ],
    }


@backend_router.post("/{backend}/execute")
async def execute_backend_query(
    backend: BackendType,
    request: ExecuteQueryRequest,
    manager: UnifiedSQLManager = Depends(get_unified_sql_manager),
) -> Any:
    """Execute a statement verbatim on one backend."""
    try:
        result = await manager.get_connector(backend).execute_query(request.statement)
    except UnifiedSQLError as e:
        logger.error("query_execution_failed", backend=backend.value, error=str(e))
        return _execution_failed(str(e) or "Query execution failed")

    return result.to_response(
        message=f"Query executed successfully ({result.row_count} rows)"
    )


@backend_router.get("/{backend}/schema")
async def get_backend_schema(
    backend: BackendType,
    detail: bool = Query(False, description="Include column descriptors"),
    manager: UnifiedSQLManager = Depends(get_unified_sql_manager),
) -> dict[str, Any]:
    """Schema of one backend, as table names or full column detail."""
    schema = await manager.get_connector(backend).get_schema()
    summary = summarize(schema)
    logger.info("schema_fetched", backend=backend.value, **summary)

    return {
        "status": "success",
        "database": backend.value,
        "schemas": schema_map_to_dict(schema) if detail else table_listing(schema),
        "summary": summary,
    }


@backend_router.get("/{backend}/health")
async def get_backend_health(
    backend: BackendType,
    manager: UnifiedSQLManager = Depends(get_unified_sql_manager),
) -> dict[str, Any]:
    health = await manager.get_connector(backend).get_health_status()
    return {
        **health.to_dict(),
        "status": "connected" if health.connected else "disconnected",
        "database": backend.value,
    }
