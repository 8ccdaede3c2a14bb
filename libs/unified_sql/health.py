"""Combined health of both backends."""

import asyncio
from typing import Any

import structlog

from .connectors.base import BackendConnector, BackendType, HealthStatus

logger = structlog.get_logger(__name__)


def overall_status(redshift: HealthStatus, sqlserver: HealthStatus) -> str:
    """``connected`` when both are up, ``partial`` for one, else ``disconnected``."""
    if redshift.connected and sqlserver.connected:
        return "connected"
    if redshift.connected or sqlserver.connected:
        return "partial"
    return "disconnected"


class HealthAggregator:
    """Probes both backends concurrently."""

    def __init__(self, redshift: BackendConnector, sqlserver: BackendConnector):
        self.redshift = redshift
        self.sqlserver = sqlserver

    async def get_unified_health(self) -> dict[str, Any]:
        redshift, sqlserver = await asyncio.gather(
            self.redshift.get_health_status(), self.sqlserver.get_health_status()
        )
        status = overall_status(redshift, sqlserver)
        if status != "connected":
            logger.warning(
                "backends_degraded",
                status=status,
                redshift=redshift.status,
                sqlserver=sqlserver.status,
            )

        return {
            "status": status,
            BackendType.REDSHIFT.value: redshift.to_dict(),
            BackendType.SQLSERVER.value: sqlserver.to_dict(),
        }
