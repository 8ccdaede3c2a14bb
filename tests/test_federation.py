"""Tests for cross-source federation over DuckDB."""

import asyncio

import duckdb
import pytest

from fakes import StubConnector, table_result
from libs.unified_sql.connectors.base import BackendType, FederationError
from libs.unified_sql.query.federation import (
    FederatedTable,
    FederationEngine,
    RelationRegistry,
    pushdown_predicates,
)
from libs.unified_sql.query.references import find_table_references
from libs.unified_sql.query.router import QueryRouter

JOIN_SQL = (
    "SELECT c.name, o.total FROM rs.public.customers c "
    "JOIN ss.dbo.orders o ON c.id = o.customer_id ORDER BY o.total"
)
CUSTOMERS_PULL = "SELECT * FROM public.customers"
ORDERS_PULL = "SELECT * FROM [dbo].[orders]"


@pytest.fixture
def redshift_stub():
    return StubConnector(
        BackendType.REDSHIFT,
        results={
            CUSTOMERS_PULL: table_result(
                ["id", "name", "region"], [[1, "alpha", "west"], [2, "beta", "east"]]
            ),
        },
    )


@pytest.fixture
def sqlserver_stub():
    return StubConnector(
        BackendType.SQLSERVER,
        results={
            ORDERS_PULL: table_result(
                ["order_id", "customer_id", "total"], [[10, 1, 50], [11, 3, 75]]
            ),
        },
    )


@pytest.fixture
def engine(redshift_stub, sqlserver_stub):
    return FederationEngine(
        {BackendType.REDSHIFT: redshift_stub, BackendType.SQLSERVER: sqlserver_stub}
    )


class TestFederationEngine:
    """Test pulling, registering and joining."""

    @pytest.mark.asyncio
    async def test_join_across_backends(self, engine, redshift_stub, sqlserver_stub):
        result = await engine.execute(JOIN_SQL)

        assert redshift_stub.executed == [CUSTOMERS_PULL]
        assert sqlserver_stub.executed == [ORDERS_PULL]
        assert result.source == "cross"
        assert result.columns == ["name", "total"]
        assert result.rows == [{"name": "alpha", "total": 50}]
        assert result.row_count == 1

    @pytest.mark.asyncio
    async def test_empty_result_has_no_columns(self, engine):
        result = await engine.execute(
            JOIN_SQL.replace("ORDER BY", "WHERE c.name = 'nobody' ORDER BY")
        )

        assert result.columns == []
        assert result.rows == []
        assert result.row_count == 0

    @pytest.mark.asyncio
    async def test_repeated_table_pulled_once(self, engine, redshift_stub):
        sql = (
            "SELECT a.name FROM rs.public.customers a "
            "JOIN rs.public.customers b ON a.id = b.id "
            "JOIN ss.dbo.orders o ON a.id = o.customer_id"
        )

        result = await engine.execute(sql)

        assert redshift_stub.executed == [CUSTOMERS_PULL]
        assert result.rows == [{"name": "alpha"}]

    @pytest.mark.asyncio
    async def test_pull_failure(self, engine, sqlserver_stub):
        sqlserver_stub.results.clear()

        with pytest.raises(FederationError) as exc_info:
            await engine.execute(JOIN_SQL)

        assert str(exc_info.value).startswith("Cross-source query failed:")
        assert "SQL Server query error" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_pull_failure_cancels_sibling(self, sqlserver_stub):
        class SlowConnector(StubConnector):
            cancelled = False

            async def execute_query(self, sql):
                try:
                    await asyncio.sleep(30)
                except asyncio.CancelledError:
                    self.cancelled = True
                    raise

        slow = SlowConnector(BackendType.REDSHIFT)
        sqlserver_stub.results.clear()
        engine = FederationEngine(
            {BackendType.REDSHIFT: slow, BackendType.SQLSERVER: sqlserver_stub}
        )

        with pytest.raises(FederationError, match="SQL Server query error"):
            await engine.execute(JOIN_SQL)

        assert slow.cancelled

    @pytest.mark.asyncio
    async def test_local_execution_failure(self, engine):
        with pytest.raises(FederationError, match="Cross-source query failed"):
            await engine.execute(
                "SELECT c.missing FROM rs.public.customers c "
                "JOIN ss.dbo.orders o ON c.id = o.customer_id"
            )

    @pytest.mark.asyncio
    async def test_rejects_non_select(self, engine, redshift_stub, sqlserver_stub):
        with pytest.raises(FederationError, match="must be SELECT"):
            await engine.execute(
                "DELETE FROM rs.public.customers USING ss.dbo.orders"
            )

        assert redshift_stub.executed == sqlserver_stub.executed == []

    @pytest.mark.asyncio
    async def test_concurrent_queries(self, engine):
        first, second = await asyncio.gather(
            engine.execute(JOIN_SQL),
            engine.execute(
                "SELECT count(*) AS n FROM rs.public.customers c "
                "CROSS JOIN ss.dbo.orders o"
            ),
        )

        assert first.rows == [{"name": "alpha", "total": 50}]
        assert second.rows == [{"n": 4}]

    @pytest.mark.asyncio
    async def test_router_dispatches_cross(self, redshift_stub, sqlserver_stub):
        router = QueryRouter(redshift_stub, sqlserver_stub)

        response = await router.execute_unified(JOIN_SQL)

        assert response["status"] == "success"
        assert response["source"] == "cross"
        assert response["message"] == "Query executed successfully (1 rows from cross)"


class TestPushdown:
    """Test predicate pushdown into the pulls."""

    FILTERED_SQL = (
        "SELECT c.name, o.total FROM rs.public.customers c "
        "JOIN ss.dbo.orders o ON c.id = o.customer_id "
        "WHERE c.region = 'west' AND o.total > 20 AND c.id = o.customer_id"
    )

    def test_disabled_by_default(self, engine):
        assert [pull.query for pull in engine.plan(self.FILTERED_SQL)] == [
            CUSTOMERS_PULL,
            ORDERS_PULL,
        ]

    def test_simple_predicates_pushed(self, redshift_stub, sqlserver_stub):
        engine = FederationEngine(
            {BackendType.REDSHIFT: redshift_stub, BackendType.SQLSERVER: sqlserver_stub},
            pushdown=True,
        )

        assert [pull.query for pull in engine.plan(self.FILTERED_SQL)] == [
            "SELECT * FROM public.customers WHERE region = 'west'",
            "SELECT * FROM [dbo].[orders] WHERE total > 20",
        ]

    @pytest.mark.asyncio
    async def test_where_still_applied_locally(self, redshift_stub, sqlserver_stub):
        redshift_stub.results["SELECT * FROM public.customers WHERE region = 'west'"] = (
            redshift_stub.results[CUSTOMERS_PULL]
        )
        sqlserver_stub.results["SELECT * FROM [dbo].[orders] WHERE total > 20"] = (
            sqlserver_stub.results[ORDERS_PULL]
        )
        engine = FederationEngine(
            {BackendType.REDSHIFT: redshift_stub, BackendType.SQLSERVER: sqlserver_stub},
            pushdown=True,
        )

        result = await engine.execute(self.FILTERED_SQL)

        assert result.rows == [{"name": "alpha", "total": 50}]

    def test_disjunction_disables_pushdown(self):
        sql = (
            "SELECT * FROM rs.public.customers c JOIN ss.dbo.orders o "
            "ON c.id = o.customer_id WHERE c.region = 'west' OR o.total > 20"
        )
        assert pushdown_predicates(sql, find_table_references(sql)) == {}

    def test_self_join_not_pushed(self):
        sql = (
            "SELECT * FROM rs.public.t a JOIN rs.public.t b ON a.parent = b.id "
            "JOIN ss.dbo.x x ON a.id = x.id WHERE a.kind = 'root' AND x.flag = 1"
        )

        pushed = pushdown_predicates(sql, find_table_references(sql))

        assert pushed == {(BackendType.SQLSERVER, "dbo", "x"): ["flag = 1"]}

    def test_subquery_not_pushed(self):
        sql = (
            "SELECT * FROM rs.public.c c JOIN ss.dbo.o o ON c.id = o.cid "
            "WHERE c.id IN (SELECT id FROM rs.public.vip) AND o.total > 1"
        )
        assert pushdown_predicates(sql, find_table_references(sql)) == {}


class TestRelationRegistry:
    def test_reregister_replaces_relation(self):
        with RelationRegistry() as registry:
            registry.register(
                FederatedTable(
                    name="t", columns=["x"], rows=[{"x": 1}], source=BackendType.REDSHIFT
                )
            )
            registry.register(
                FederatedTable(
                    name="t",
                    columns=["x"],
                    rows=[{"x": 2}, {"x": 3}],
                    source=BackendType.REDSHIFT,
                )
            )

            columns, rows = registry.execute("SELECT count(*) AS n FROM t")

        assert columns == ["n"]
        assert rows == [(2,)]

    def test_registries_are_isolated(self):
        first = RelationRegistry()
        second = RelationRegistry()
        try:
            first.register(
                FederatedTable(
                    name="only_here",
                    columns=["x"],
                    rows=[{"x": 1}],
                    source=BackendType.SQLSERVER,
                )
            )

            assert second.names == set()
            with pytest.raises(duckdb.Error):
                second.execute("SELECT * FROM only_here")
        finally:
            first.close()
            second.close()

    def test_empty_table_keeps_columns(self):
        table = FederatedTable(name="t", columns=["a", "b"], source=BackendType.REDSHIFT)

        with RelationRegistry() as registry:
            registry.register(table)
            columns, rows = registry.execute("SELECT * FROM t")

        assert columns == ["a", "b"]
        assert rows == []
