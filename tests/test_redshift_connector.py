"""Tests for the Redshift connection manager."""

import asyncio
from unittest.mock import MagicMock

import pytest

from fakes import FakeRedshiftDataClient
from libs.unified_sql.connectors.base import (
    BackendType,
    ConnectionError,
    ConnectionStatus,
    QueryExecutionError,
    StatementAbortedError,
    StatementFailedError,
)
from libs.unified_sql.connectors.config import RedshiftSettings
from libs.unified_sql.connectors.redshift import (
    RedshiftConnector,
    information_schema_row_to_column,
)


class TestLifecycle:
    """Test init, reconnect and close."""

    @pytest.mark.asyncio
    async def test_init_validates_with_select_1(self, redshift_connector, data_client):
        await redshift_connector.init()

        assert redshift_connector.status == ConnectionStatus.CONNECTED
        assert redshift_connector.connected
        assert data_client.submitted_sql == ["SELECT 1"]
        assert data_client.describe_calls == ["stmt-1"]

    @pytest.mark.asyncio
    async def test_init_failure_is_swallowed(self, redshift_connector, data_client):
        data_client.queue_statuses({"Status": "FAILED", "Error": "invalid credentials"})

        await redshift_connector.init()

        assert redshift_connector.status == ConnectionStatus.DISCONNECTED
        assert not redshift_connector.connected
        assert "invalid credentials" in redshift_connector.connection_error

    @pytest.mark.asyncio
    async def test_client_factory_error_is_swallowed(self, redshift_settings, fake_sleep):
        def broken_factory(settings):
            raise RuntimeError("no credentials found")

        connector = RedshiftConnector(
            redshift_settings, client_factory=broken_factory, sleep=fake_sleep
        )

        await connector.init()

        assert connector.connection_error == "no credentials found"

    @pytest.mark.asyncio
    async def test_get_pool_reconnects_once(self, redshift_connector, data_client):
        data_client.queue_statuses({"Status": "FAILED", "Error": "network"})
        await redshift_connector.init()
        assert not redshift_connector.connected

        client = await redshift_connector.get_pool()

        assert client is not None
        assert redshift_connector.connected
        assert data_client.submitted_sql == ["SELECT 1", "SELECT 1"]

    @pytest.mark.asyncio
    async def test_get_pool_raises_when_still_down(self, redshift_connector, data_client):
        data_client.queue_statuses(
            {"Status": "FAILED", "Error": "network"},
            {"Status": "FAILED", "Error": "still down"},
        )
        await redshift_connector.init()

        with pytest.raises(ConnectionError, match="Redshift not connected: .*still down"):
            await redshift_connector.get_pool()

    @pytest.mark.asyncio
    async def test_init_when_connected_keeps_client(self, redshift_connector, data_client):
        await redshift_connector.init()
        client = await redshift_connector.get_pool()

        await redshift_connector.init()

        assert await redshift_connector.get_pool() is client
        assert data_client.submitted_sql == ["SELECT 1"]
        assert not data_client.closed

    @pytest.mark.asyncio
    async def test_reconnect_closes_stale_client(self, redshift_settings, fake_sleep):
        clients = [FakeRedshiftDataClient(), FakeRedshiftDataClient()]
        connector = RedshiftConnector(
            redshift_settings, client_factory=MagicMock(side_effect=clients), sleep=fake_sleep
        )
        await connector.init()
        clients[0].queue_statuses({"Status": "FAILED", "Error": "expired token"})
        await connector.get_health_status()

        await connector.get_pool()

        assert clients[0].closed
        assert not clients[1].closed
        assert clients[1].submitted_sql == ["SELECT 1"]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, redshift_connector, data_client):
        await redshift_connector.init()

        await redshift_connector.close()
        await redshift_connector.close()

        assert data_client.closed
        assert redshift_connector.status == ConnectionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_close_uninitialized(self, redshift_connector):
        await redshift_connector.close()
        assert redshift_connector.status == ConnectionStatus.CLOSED


class TestExecuteQuery:
    """Test query execution."""

    @pytest.mark.asyncio
    async def test_two_running_polls_then_rows(self, redshift_connector, data_client):
        await redshift_connector.init()
        data_client.queue_statuses("STARTED", "STARTED", "FINISHED")
        data_client.queue_result(
            ["id", "name", "amount"], [[1, "alpha", 10.5], [2, "beta", None]]
        )

        result = await redshift_connector.execute_query("SELECT * FROM public.orders")

        assert result.row_count == 2
        assert result.columns == ["id", "name", "amount"]
        assert result.rows[1] == {"id": 2, "name": "beta", "amount": None}
        assert result.execution_time >= 0

    @pytest.mark.asyncio
    async def test_write_statement_row_count(self, redshift_connector, data_client):
        await redshift_connector.init()
        data_client.queue_statuses(
            {"Status": "FINISHED", "HasResultSet": False, "ResultRows": 3}
        )

        result = await redshift_connector.execute_query("DELETE FROM public.t")

        assert result.rows == []
        assert result.columns == []
        assert result.row_count == 3

    @pytest.mark.asyncio
    async def test_failed_statement(self, redshift_connector, data_client):
        await redshift_connector.init()
        data_client.queue_statuses({"Status": "FAILED", "Error": "syntax error at or near"})

        with pytest.raises(StatementFailedError) as exc_info:
            await redshift_connector.execute_query("SELEC 1")

        message = str(exc_info.value)
        assert message.startswith("Redshift query error:")
        assert "syntax error at or near" in message
        assert exc_info.value.backend == BackendType.REDSHIFT
        assert exc_info.value.query == "SELEC 1"

    @pytest.mark.asyncio
    async def test_aborted_statement(self, redshift_connector, data_client):
        await redshift_connector.init()
        data_client.queue_statuses("ABORTED")

        with pytest.raises(StatementAbortedError, match="aborted"):
            await redshift_connector.execute_query("SELECT 1")

    @pytest.mark.asyncio
    async def test_driver_error_is_wrapped(self, redshift_connector, data_client):
        await redshift_connector.init()
        data_client.execute_error = RuntimeError("throttled")

        with pytest.raises(QueryExecutionError, match="Redshift query error: throttled"):
            await redshift_connector.execute_query("SELECT 1")


class TestSchema:
    """Test schema discovery strategies."""

    @pytest.mark.asyncio
    async def test_list_tables_paginates_and_filters(self, redshift_connector, data_client):
        await redshift_connector.init()
        data_client.table_pages.extend(
            [
                {
                    "Tables": [
                        {"schema": "public", "name": "orders", "type": "TABLE"},
                        {"schema": "pg_catalog", "name": "pg_class", "type": "TABLE"},
                    ],
                    "NextToken": "t2",
                },
                {
                    "Tables": [
                        {"schema": "public", "name": "customers", "type": "TABLE"},
                        {"schema": "public", "name": "stl_x", "type": "SYSTEM TABLE"},
                        {"schema": "sales", "name": "daily", "type": "VIEW"},
                        {"schema": "pg_internal", "name": "x", "type": "TABLE"},
                    ]
                },
            ]
        )

        schema = await redshift_connector.get_schema()

        assert list(schema) == ["public", "sales"]
        assert list(schema["public"]) == ["customers", "orders"]
        assert schema["public"]["orders"] == []
        assert data_client.list_tables_calls[1]["NextToken"] == "t2"

    @pytest.mark.asyncio
    async def test_falls_back_to_information_schema(self, redshift_connector, data_client):
        await redshift_connector.init()
        data_client.list_tables_error = RuntimeError("AccessDenied")
        data_client.queue_result(
            ["schema_name", "table_name", "column_name", "data_type", "max_length", "is_nullable"],
            [
                ["public", "orders", "id", "integer", None, "NO"],
                ["public", "orders", "note", "character varying", 256, "YES"],
                ["public", "empty_table", None, None, None, None],
            ],
        )

        schema = await redshift_connector.get_schema()

        orders = schema["public"]["orders"]
        assert [column.column_name for column in orders] == ["id", "note"]
        assert orders[0].is_nullable is False
        assert orders[1].max_length == 256
        assert schema["public"]["empty_table"] == []
        assert "information_schema.tables" in data_client.submitted_sql[-1]

    @pytest.mark.asyncio
    async def test_empty_map_when_every_strategy_fails(self, redshift_connector, data_client):
        data_client.queue_statuses(
            {"Status": "FAILED", "Error": "down"},
            {"Status": "FAILED", "Error": "down"},
            {"Status": "FAILED", "Error": "down"},
        )
        await redshift_connector.init()

        assert await redshift_connector.get_schema() == {}

    def test_strategy_order(self, redshift_connector):
        names = [strategy.name for strategy in redshift_connector.schema_strategies()]
        assert names == ["list_tables", "information_schema"]

    def test_row_without_column_maps_to_none(self):
        assert (
            information_schema_row_to_column(
                {"schema_name": "s", "table_name": "t", "column_name": None}
            )
            is None
        )


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy_reports_target(self, redshift_connector):
        await redshift_connector.init()

        health = await redshift_connector.get_health_status()

        assert health.to_dict() == {
            "status": "healthy",
            "connected": True,
            "workgroup": "test-workgroup",
            "database": "dev",
            "region": "us-east-1",
        }

    @pytest.mark.asyncio
    async def test_unhealthy_never_raises(self, redshift_connector, data_client):
        await redshift_connector.init()
        data_client.queue_statuses({"Status": "FAILED", "Error": "expired token"})

        health = await redshift_connector.get_health_status()

        assert health.status == "unhealthy"
        assert health.connected is False
        assert "expired token" in health.error
        assert redshift_connector.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_reconnect_uses_health_ceiling(self, data_client):
        settings = RedshiftSettings(
            workgroup_name="test-workgroup",
            poll_interval_seconds=0.01,
            max_wait_seconds=5,
            health_check_max_wait_seconds=0.05,
        )
        connector = RedshiftConnector(
            settings, client_factory=lambda s: data_client, sleep=asyncio.sleep
        )
        data_client.queue_statuses(*["STARTED"] * 1000)
        loop = asyncio.get_running_loop()

        started = loop.time()
        health = await connector.get_health_status()
        elapsed = loop.time() - started

        assert elapsed < 1
        assert health.connected is False
        assert "Query timeout after 0.05s" in health.error

    @pytest.mark.asyncio
    async def test_fresh_reconnect_probes_once(self, redshift_connector, data_client):
        data_client.queue_statuses({"Status": "FAILED", "Error": "network"})
        await redshift_connector.init()

        health = await redshift_connector.get_health_status()

        assert health.status == "healthy"
        assert data_client.submitted_sql == ["SELECT 1", "SELECT 1"]

    @pytest.mark.asyncio
    async def test_health_when_never_connected(self, redshift_connector, data_client):
        data_client.execute_error = RuntimeError("endpoint unreachable")

        health = await redshift_connector.get_health_status()

        assert health.connected is False
        assert "endpoint unreachable" in health.error
