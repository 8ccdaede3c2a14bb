"""
Dependency injection for the unified SQL components.

``UnifiedSQLManager`` owns exactly one connector per backend and the
components built on top of them. It is created once per application and
stored on ``app.state`` rather than in module-level state.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import Request

from .connectors.base import BackendConnector, BackendType
from .connectors.config import FederationSettings
from .connectors.redshift import RedshiftConnector
from .connectors.sqlserver import SqlServerConnector
from .health import HealthAggregator
from .query.federation import FederationEngine
from .query.router import QueryRouter
from .schema import SchemaAggregator


class UnifiedSQLManager:
    """
    Wires the two backend managers to the router, federation engine and the
    schema and health aggregators.
    """

    def __init__(
        self,
        redshift: BackendConnector | None = None,
        sqlserver: BackendConnector | None = None,
        federation_settings: FederationSettings | None = None,
    ):
        self.logger = structlog.get_logger(__name__)
        self.redshift = redshift or RedshiftConnector()
        self.sqlserver = sqlserver or SqlServerConnector()
        self.settings = federation_settings or FederationSettings()

        self.federation = FederationEngine(
            self.connectors, pushdown=self.settings.pushdown_predicates
        )
        self.router = QueryRouter(
            self.redshift, self.sqlserver, self.federation, self.settings
        )
        self.schema = SchemaAggregator(self.redshift, self.sqlserver)
        self.health = HealthAggregator(self.redshift, self.sqlserver)

    @property
    def connectors(self) -> dict[BackendType, BackendConnector]:
        return {
            BackendType.REDSHIFT: self.redshift,
            BackendType.SQLSERVER: self.sqlserver,
        }

    def get_connector(self, backend: BackendType | str) -> BackendConnector:
        """Look up a backend manager by type or name."""
        return self.connectors[BackendType(backend)]

    async def initialize(self) -> dict[str, Any]:
        """
        Initialize both backends concurrently.

        A backend that fails to start is logged and left to reconnect on
        first use; startup itself never fails.

        Returns:
            Backend name -> connection status after initialization
        """
        backends = list(self.connectors.items())
        results = await asyncio.gather(
            *(connector.init() for _, connector in backends),
            return_exceptions=True,
        )

        for (backend, _), result in zip(backends, results):
            if isinstance(result, Exception):
                self.logger.warning(
                    "backend_initialization_failed",
                    backend=backend.value,
                    error=str(result),
                )

        statuses = {
            backend.value: connector.status.value for backend, connector in backends
        }
        self.logger.info("unified_sql_initialized", **statuses)
        return statuses

    async def close(self) -> None:
        """Close both backends."""
        await asyncio.gather(self.redshift.close(), self.sqlserver.close())
        self.logger.info("unified_sql_closed")


def get_unified_sql_manager(request: Request) -> UnifiedSQLManager:
    """
    FastAPI dependency returning the application's manager.

    Returns:
        UnifiedSQLManager: The manager created by the application lifespan
    """
    return request.app.state.unified_sql


@asynccontextmanager
async def unified_sql_lifespan(
    manager: UnifiedSQLManager | None = None,
) -> AsyncGenerator[UnifiedSQLManager, None]:
    """
    Context manager for the backends' lifecycle.

    Yields:
        UnifiedSQLManager: An initialized manager, closed on exit
    """
    manager = manager or UnifiedSQLManager()
    await manager.initialize()
    try:
        yield manager
    finally:
        await manager.close()
