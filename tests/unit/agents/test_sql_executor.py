"""
Unit tests for SqlExecutor.

Tests execution results, timeouts, transient retries through the SQL
handler and the circuit breaker hand-off for connectivity failures.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sqlagent.agents.executor import SqlExecutor, friendly_message
from sqlagent.connectors.base import ConnectionError as ConnectorConnectionError
from sqlagent.connectors.base import QueryError, QueryResult
from sqlagent.resilience.connection import ConnectionHandler


def query_result(rows: list[dict]) -> QueryResult:
    return QueryResult(
        rows=rows,
        row_count=len(rows),
        columns=list(rows[0].keys()) if rows else [],
        execution_time_ms=1.5,
    )


@pytest.fixture
def connection_handler():
    handler = ConnectionHandler()
    handler._sleep = AsyncMock()
    return handler


@pytest.fixture
def executor(mock_introspector, connection_handler):
    ex = SqlExecutor(mock_introspector, connection_handler=connection_handler, command_timeout=5)
    ex.sql_handler._sleep = AsyncMock()
    return ex


class TestSqlExecutor:
    """Execution outcomes as SqlExecutionResult values."""

    @pytest.mark.asyncio
    async def test_success(self, executor, mock_introspector):
        mock_introspector.execute.return_value = query_result([{"Total": 42}])

        result = await executor.execute("SELECT COUNT(*) AS Total FROM Customers")

        assert result.success is True
        assert result.columns == ["Total"]
        assert result.rows == [{"Total": 42}]
        assert result.error_message is None
        mock_introspector.execute.assert_awaited_once_with(
            "SELECT COUNT(*) AS Total FROM Customers", timeout=5
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sql", ["", "   "])
    async def test_empty_sql(self, executor, mock_introspector, sql):
        result = await executor.execute(sql)

        assert result.success is False
        assert result.error_message == "SQL query cannot be empty"
        mock_introspector.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_engine_error_is_classified(self, executor, mock_introspector):
        mock_introspector.execute.side_effect = QueryError("Invalid column name 'Nme'.")

        result = await executor.execute("SELECT Nme FROM Customers")

        assert result.success is False
        assert result.error_message == "Invalid column name 'Nme'."
        assert result.error_details["type"] == "InvalidColumnName"
        assert result.error_details["invalid_element"] == "Nme"
        assert result.error_details["friendly_message"] == "Error: Invalid column name 'Nme'."

    @pytest.mark.asyncio
    async def test_timeout(self, executor, mock_introspector):
        mock_introspector.execute.side_effect = asyncio.TimeoutError()

        result = await executor.execute("SELECT * FROM Orders")

        assert result.success is False
        assert result.error_message == "Query timeout: execution exceeded 5s"
        assert result.error_details["type"] == "QueryTimeout"

    @pytest.mark.asyncio
    async def test_transient_error_retried_by_sql_handler(self, executor, mock_introspector):
        mock_introspector.is_transient_error.return_value = True
        mock_introspector.execute.side_effect = [
            QueryError("deadlock detected"),
            query_result([{"Id": 1}]),
        ]

        result = await executor.execute("SELECT Id FROM Orders")

        assert result.success is True
        assert mock_introspector.execute.await_count == 2
        executor.sql_handler._sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_error_gives_up_after_retries(self, executor, mock_introspector):
        mock_introspector.is_transient_error.return_value = True
        mock_introspector.execute.side_effect = QueryError("deadlock detected")

        result = await executor.execute("SELECT Id FROM Orders")

        assert result.success is False
        assert result.error_message == "deadlock detected"
        assert mock_introspector.execute.await_count == 4
        assert [c.args[0] for c in executor.sql_handler._sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_timeout_during_transient_retry_is_not_retried(self, executor, mock_introspector):
        mock_introspector.is_transient_error.side_effect = lambda exc: "deadlock" in str(exc)
        mock_introspector.execute.side_effect = [
            QueryError("deadlock detected"),
            asyncio.TimeoutError(),
        ]

        result = await executor.execute("SELECT Id FROM Orders")

        assert result.success is False
        assert result.error_message == "Query timeout: execution exceeded 5s"
        assert result.error_details["type"] == "QueryTimeout"
        assert mock_introspector.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_regeneration_error_keeps_raw_message(self, executor, mock_introspector):
        mock_introspector.execute.side_effect = QueryError("Incorrect syntax near 'FORM'.")

        result = await executor.execute("SELECT * FORM Orders")

        assert result.error_message == "Incorrect syntax near 'FORM'."
        assert "Suggestion" not in result.error_message
        mock_introspector.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_error_retried_through_handler(self, executor, mock_introspector):
        mock_introspector.execute.side_effect = [
            ConnectorConnectionError("connection refused"),
            query_result([{"Id": 1}]),
        ]

        result = await executor.execute("SELECT Id FROM Orders")

        assert result.success is True
        assert mock_introspector.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_connection_error_exhausted_is_failure(self, executor, mock_introspector, connection_handler):
        mock_introspector.execute.side_effect = ConnectorConnectionError("connection refused")

        result = await executor.execute("SELECT Id FROM Orders")

        assert result.success is False
        assert "connection refused" in result.error_message
        assert connection_handler.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_open_circuit_fails_without_touching_database(
        self, executor, mock_introspector, connection_handler
    ):
        connection_handler.consecutive_failures = 5
        connection_handler.circuit_opened_at = connection_handler._now()

        result = await executor.execute("SELECT 1")

        assert result.success is False
        assert "Circuit breaker is open" in result.error_message
        mock_introspector.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_resets_failure_streak(self, executor, mock_introspector, connection_handler):
        connection_handler.consecutive_failures = 4
        mock_introspector.execute.return_value = query_result([{"Id": 1}])

        result = await executor.execute("SELECT 1")

        assert result.success is True
        assert connection_handler.consecutive_failures == 0
        assert connection_handler.get_circuit_breaker_status()["state"] == "closed"

    @pytest.mark.asyncio
    async def test_outages_separated_by_successes_do_not_open_circuit(
        self, executor, mock_introspector, connection_handler
    ):
        outage = [ConnectorConnectionError("connection refused")] * 4
        healthy = [query_result([{"Id": 1}])]
        mock_introspector.execute.side_effect = (outage + healthy) * 4 + outage

        for _ in range(4):
            assert (await executor.execute("SELECT 1")).success is False
            assert (await executor.execute("SELECT 1")).success is True
        result = await executor.execute("SELECT 1")

        assert result.success is False
        assert "Circuit breaker is open" not in result.error_message
        assert connection_handler.consecutive_failures == 1
        assert connection_handler.is_circuit_open is False

    @pytest.mark.asyncio
    async def test_validate_connection(self, executor, mock_introspector):
        assert await executor.validate_connection() is True
        mock_introspector.test_connection.assert_awaited_once()


class TestFriendlyMessage:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Query timeout: execution exceeded 30s", "Query execution timed out."),
            ("connection refused", "Cannot connect to database."),
            ("The SELECT permission was denied", "Insufficient database permissions."),
            ("Incorrect syntax near 'FORM'.", "SQL Error: Incorrect syntax near 'FORM'."),
            ("boom", "Error: boom"),
        ],
    )
    def test_messages(self, raw, expected):
        assert friendly_message(raw).startswith(expected)
