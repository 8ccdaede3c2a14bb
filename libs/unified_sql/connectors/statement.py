"""
Redshift Data API statement protocol.

The Data API is not request/response: a statement is submitted, its status
is polled until it reaches a terminal state, and only then are the result
pages fetched. ``StatementClient`` drives that state machine and exposes a
synchronous-looking ``execute`` with a bounded wait.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..normalizer import WarehouseResultSet
from .base import (
    BackendType,
    QueryExecutionError,
    QueryTimeoutError,
    StatementAbortedError,
    StatementFailedError,
)
from .config import RedshiftSettings

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


class StatementState(str, Enum):
    """Client-side view of a submitted statement."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    FINISHED = "finished"
    FAILED = "failed"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self not in (StatementState.SUBMITTED, StatementState.POLLING)


# Data API status strings that end polling
REMOTE_FINISHED = "FINISHED"
REMOTE_FAILED = "FAILED"
REMOTE_ABORTED = "ABORTED"


class AsyncStatementHandle(BaseModel):
    """Identifier of one submitted statement, alive for a single call."""

    statement_id: str
    submitted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    state: StatementState = StatementState.SUBMITTED
    polls: int = 0


class StatementClient:
    """Submit/poll/fetch wrapper around a boto3 ``redshift-data`` client."""

    def __init__(
        self,
        client: Any,
        settings: RedshiftSettings,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self._sleep = sleep

    async def submit(self, sql: str) -> AsyncStatementHandle:
        """Submit a statement and return immediately."""
        response = await asyncio.to_thread(
            self.client.execute_statement,
            Sql=sql,
            **self.settings.statement_target(),
        )
        statement_id = response.get("Id")
        if not statement_id:
            raise QueryExecutionError(
                "Failed to execute statement", sql, BackendType.REDSHIFT
            )

        logger.debug("statement_submitted", statement_id=statement_id)
        return AsyncStatementHandle(statement_id=statement_id)

    async def poll(
        self, handle: AsyncStatementHandle, max_wait_seconds: float | None = None
    ) -> dict[str, Any]:
        """
        Check the statement status on a fixed interval until it terminates.

        Args:
            handle: Handle returned by ``submit``
            max_wait_seconds: Polling ceiling, defaults to the configured one

        Returns:
            The final ``describe_statement`` response

        Raises:
            StatementFailedError: The warehouse reported FAILED
            StatementAbortedError: The warehouse reported ABORTED
            QueryTimeoutError: No terminal state within the ceiling
        """
        ceiling = max_wait_seconds or self.settings.max_wait_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + ceiling
        handle.state = StatementState.POLLING

        while loop.time() < deadline:
            description = await asyncio.to_thread(
                self.client.describe_statement, Id=handle.statement_id
            )
            handle.polls += 1
            status = description.get("Status")

            if status == REMOTE_FINISHED:
                handle.state = StatementState.FINISHED
                return description
            if status == REMOTE_FAILED:
                handle.state = StatementState.FAILED
                raise StatementFailedError(
                    f"Query failed: {description.get('Error')}",
                    backend=BackendType.REDSHIFT,
                )
            if status == REMOTE_ABORTED:
                handle.state = StatementState.ABORTED
                raise StatementAbortedError(
                    "Query was aborted", backend=BackendType.REDSHIFT
                )

            await self._sleep(self.settings.poll_interval_seconds)

        handle.state = StatementState.TIMED_OUT
        logger.warning(
            "statement_timed_out",
            statement_id=handle.statement_id,
            polls=handle.polls,
            max_wait_seconds=ceiling,
        )
        raise QueryTimeoutError(
            f"Query timeout after {ceiling:g}s", backend=BackendType.REDSHIFT
        )

    async def fetch_result(
        self,
        handle: AsyncStatementHandle,
        description: dict[str, Any] | None = None,
    ) -> WarehouseResultSet:
        """
        Retrieve column metadata and every page of records.

        Statements without a result set (DDL, INSERT, UPDATE) cannot be
        fetched; for them the affected-row count from ``description`` is
        returned with no records.
        """
        if description is not None and description.get("HasResultSet") is False:
            return WarehouseResultSet(
                total_num_rows=max(description.get("ResultRows") or 0, 0)
            )

        column_metadata: list[dict[str, Any]] = []
        records: list[list[dict[str, Any]]] = []
        total_num_rows = None
        next_token = None

        while True:
            page_args: dict[str, Any] = {"Id": handle.statement_id}
            if next_token:
                page_args["NextToken"] = next_token
            page = await asyncio.to_thread(
                self.client.get_statement_result, **page_args
            )

            if not column_metadata:
                column_metadata = page.get("ColumnMetadata") or []
            records.extend(page.get("Records") or [])
            total_num_rows = page.get("TotalNumRows", total_num_rows)

            next_token = page.get("NextToken")
            if not next_token:
                break

        return WarehouseResultSet(
            column_metadata=column_metadata,
            records=records,
            total_num_rows=total_num_rows,
        )

    async def execute(
        self, sql: str, max_wait_seconds: float | None = None
    ) -> WarehouseResultSet:
        """Submit, wait for completion and fetch, strictly in that order."""
        handle = await self.submit(sql)
        description = await self.poll(handle, max_wait_seconds)
        return await self.fetch_result(handle, description)

    async def probe(self, max_wait_seconds: float | None = None) -> None:
        """
        Submit ``SELECT 1`` and wait for it to finish.

        Credentials are only validated while the statement runs, so a probe
        that did not poll would report bad credentials as healthy.
        """
        handle = await self.submit("SELECT 1")
        await self.poll(
            handle, max_wait_seconds or self.settings.health_check_max_wait_seconds
        )

    def list_tables(self, next_token: str | None = None) -> dict[str, Any]:
        """One page of the Data API table listing (blocking)."""
        params = self.settings.statement_target()
        if next_token:
            params["NextToken"] = next_token
        return self.client.list_tables(**params)

    def close(self) -> None:
        """Release the underlying HTTP client."""
        close = getattr(self.client, "close", None)
        if callable(close):
            close()
