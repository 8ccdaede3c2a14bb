import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from libs.observability import (
    CorrelationMiddleware,
    LoggingSettings,
    configure_structured_logging,
)
from libs.unified_sql.dependencies import UnifiedSQLManager, unified_sql_lifespan
from services.sql_api.routes import sql


def create_app(manager: UnifiedSQLManager | None = None) -> FastAPI:
    """
    Build the SQL API application.

    Args:
        manager: Pre-built manager, mainly for tests; by default one is
            created from environment settings at startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        configure_structured_logging(LoggingSettings())

        async with unified_sql_lifespan(manager) as unified_sql:
            app.state.unified_sql = unified_sql
            app.state.start_time = time.time()
            yield

    app = FastAPI(
        title="Unified SQL API",
        description="Executes SQL on Redshift and SQL Server and federates cross-source queries",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(CorrelationMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # sqlv2 goes first so its paths are not captured by /{backend}/...
    app.include_router(sql.sqlv2_router)
    app.include_router(sql.backend_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Liveness of the API process itself."""
        return {
            "status": "healthy",
            "uptime_seconds": round(time.time() - request.app.state.start_time, 2),
        }

    return app


app = create_app()
