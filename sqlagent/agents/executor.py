"""
SQL Executor

Runs one statement through the configured SchemaIntrospector and always
returns a SqlExecutionResult; execution failures are values so the
self-correction loop can inspect them.

- Each attempt is bounded by ``command_timeout``; exceeding it produces a
  failure whose message contains "timeout" (classified QueryTimeout).
- Connectivity failures go through the ConnectionHandler, so they feed
  the circuit breaker. Any answered statement resets it.
- Other engine failures go through the SqlHandler, which re-runs the
  errors the engine reports as transient.
"""

import asyncio
import logging
import time
from functools import partial

from sqlagent.connectors.base import ConnectionError as ConnectorConnectionError
from sqlagent.connectors.base import QueryError, QueryResult, SchemaIntrospector
from sqlagent.models.errors import AgentError
from sqlagent.models.query import SqlExecutionResult
from sqlagent.resilience.connection import ConnectionHandler
from sqlagent.resilience.sql import SqlHandler

logger = logging.getLogger(__name__)


def friendly_message(error_message: str) -> str:
    """User-facing rendering of a raw engine error."""
    lowered = error_message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        return "Query execution timed out. Please try again or simplify your query."
    if "connection" in lowered:
        return "Cannot connect to database. Please check your connection settings."
    if "permission" in lowered or "access" in lowered:
        return "Insufficient database permissions. Please contact your database administrator."
    if "syntax" in lowered or "sql" in lowered:
        return f"SQL Error: {error_message}"
    return f"Error: {error_message}"


class SqlExecutor:
    """
    Executes SQL and reports the outcome as a SqlExecutionResult.

    Attributes:
        introspector: Engine-specific database access
        sql_handler: Classifies failed statements and re-runs transient ones
        connection_handler: Retry + circuit breaker for connectivity failures
        command_timeout: Per-attempt timeout in seconds
    """

    def __init__(
        self,
        introspector: SchemaIntrospector,
        sql_handler: SqlHandler | None = None,
        connection_handler: ConnectionHandler | None = None,
        command_timeout: int = 30,
    ):
        self.introspector = introspector
        self.sql_handler = sql_handler or SqlHandler(is_transient=introspector.is_transient_error)
        self.connection_handler = connection_handler or ConnectionHandler()
        self.command_timeout = command_timeout

    async def execute(self, sql: str) -> SqlExecutionResult:
        """Execute ``sql``; never raises for database-side failures."""
        if not sql or not sql.strip():
            logger.error("SQL is null or empty")
            return self._failure("SQL query cannot be empty", sql or "", 0.0)

        started = time.perf_counter()
        try:
            self.connection_handler.guard()
        except AgentError as e:
            return self._failure(e.message, sql, self._elapsed(started))

        operation = partial(self._run_once, sql)
        try:
            query_result = await operation()
        except ConnectorConnectionError as exc:
            try:
                query_result = await self.connection_handler.handle_connection_error(operation, exc)
            except AgentError as e:
                return self._failure(e.message, sql, self._elapsed(started))
        except Exception as exc:
            try:
                query_result = await self.sql_handler.handle_sql_error(operation, exc, sql)
            except AgentError as e:
                # Failures carry the raw engine text, not the handler message.
                message = str(e.__cause__ or exc)
                logger.error(
                    f"Query failed: {message}",
                    extra={"dialect": self.introspector.dialect, "error_code": e.error_code},
                )
                return self._failure(message, sql, self._elapsed(started))

        self.connection_handler.record_success()
        logger.info(
            f"Query executed ({query_result.row_count} rows, {query_result.execution_time_ms:.0f}ms)",
            extra={"dialect": self.introspector.dialect},
        )
        return SqlExecutionResult(
            success=True,
            columns=query_result.columns,
            rows=query_result.rows,
            execution_time_ms=self._elapsed(started),
        )

    async def validate_connection(self) -> bool:
        """Cheap connectivity probe; never raises."""
        ok = await self.introspector.test_connection()
        if ok:
            logger.info("Connection validated", extra={"dialect": self.introspector.dialect})
        return ok

    async def _run_once(self, sql: str) -> QueryResult:
        try:
            return await asyncio.wait_for(
                self.introspector.execute(sql, timeout=self.command_timeout),
                timeout=self.command_timeout,
            )
        except asyncio.TimeoutError:
            message = f"Query timeout: execution exceeded {self.command_timeout}s"
            logger.warning(message, extra={"dialect": self.introspector.dialect})
            raise QueryError(message) from None

    def _failure(self, message: str, sql: str, elapsed_ms: float) -> SqlExecutionResult:
        error = self.sql_handler.analyze(message, sql)
        details = error.model_dump(mode="json")
        details["friendly_message"] = friendly_message(message)
        return SqlExecutionResult(
            success=False,
            error_message=message,
            error_details=details,
            execution_time_ms=elapsed_ms,
        )

    @staticmethod
    def _elapsed(started: float) -> float:
        return (time.perf_counter() - started) * 1000
