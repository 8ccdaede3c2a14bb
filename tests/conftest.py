"""Pytest configuration and shared fixtures."""

from unittest.mock import AsyncMock

import pytest

from fakes import FakeRedshiftDataClient, FakeSqlServerPool
from libs.unified_sql.connectors.config import (
    FederationSettings,
    RedshiftSettings,
    SqlServerSettings,
)
from libs.unified_sql.connectors.redshift import RedshiftConnector
from libs.unified_sql.connectors.sqlserver import SqlServerConnector


@pytest.fixture
def redshift_settings():
    """Redshift settings with instant polling."""
    return RedshiftSettings(
        database="dev",
        workgroup_name="test-workgroup",
        region="us-east-1",
        poll_interval_seconds=0,
        max_wait_seconds=5,
        health_check_max_wait_seconds=2,
    )


@pytest.fixture
def sqlserver_settings():
    """SQL Server settings pointing at a host that is never contacted."""
    return SqlServerSettings(
        host="testhost",
        user="tester",
        password="secret",
        database="testdb",
    )


@pytest.fixture
def federation_settings():
    return FederationSettings()


@pytest.fixture
def data_client():
    return FakeRedshiftDataClient()


@pytest.fixture
def fake_sleep():
    """Sleep primitive that returns immediately and records the delays."""
    return AsyncMock()


@pytest.fixture
def redshift_connector(redshift_settings, data_client, fake_sleep):
    return RedshiftConnector(
        redshift_settings, client_factory=lambda settings: data_client, sleep=fake_sleep
    )


@pytest.fixture
def sqlserver_pool():
    return FakeSqlServerPool()


@pytest.fixture
def sqlserver_connector(sqlserver_settings, sqlserver_pool):
    return SqlServerConnector(
        sqlserver_settings, pool_factory=AsyncMock(return_value=sqlserver_pool)
    )
