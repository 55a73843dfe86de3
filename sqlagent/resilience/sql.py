"""
SQL Handler

Error handling for statement execution. Errors that only a rewritten
statement can fix (bad identifiers, syntax, ambiguity, type mismatches)
are never re-run as-is; they raise ``SqlCorrectionRequired`` so the
self-correction loop can regenerate the SQL. Errors the engine reports as
transient (deadlocks, serialization failures, dropped sessions) are re-run
with exponential backoff. Everything else goes through the base retry
strategies.
"""

import logging
from collections.abc import Callable

from sqlagent.models.errors import (
    AgentError,
    DatabasePermissionError,
    DatabaseTimeoutError,
    RetryStrategy,
    SqlCorrectionRequired,
    SqlError,
    SqlErrorType,
)
from sqlagent.resilience.analyzer import SqlErrorAnalyzer
from sqlagent.resilience.base import BaseErrorHandler, Operation, T

logger = logging.getLogger(__name__)

NEEDS_REGENERATION = frozenset(
    {
        SqlErrorType.INVALID_COLUMN_NAME,
        SqlErrorType.INVALID_OBJECT_NAME,
        SqlErrorType.INVALID_TABLE_NAME,
        SqlErrorType.SYNTAX_ERROR,
        SqlErrorType.AMBIGUOUS_COLUMN_NAME,
        SqlErrorType.TYPE_MISMATCH,
        SqlErrorType.PARAMETER_NOT_DECLARED,
    }
)


class SqlHandler(BaseErrorHandler):
    """
    SQL execution error handler.

    Attributes:
        is_transient: Engine check for errors worth re-running unchanged
        max_retry_attempts: Re-runs allowed for a transient error
    """

    def __init__(
        self,
        analyzer: SqlErrorAnalyzer | None = None,
        wait_seconds: float = 5,
        is_transient: Callable[[BaseException], bool] | None = None,
        max_retry_attempts: int = 3,
    ):
        super().__init__(name="SqlHandler", analyzer=analyzer, wait_seconds=wait_seconds)
        self.is_transient = is_transient
        self.max_retry_attempts = max_retry_attempts

    def analyze(self, error_message: str, sql: str = "") -> SqlError:
        return self.analyzer.analyze_error(error_message, sql)

    def transient_error(self, error_message: str, sql: str = "") -> SqlError:
        """Classification for an error the engine says will pass on its own."""
        return self.analyze(error_message, sql).model_copy(
            update={
                "is_recoverable": True,
                "max_retry_attempts": self.max_retry_attempts,
                "recommended_strategy": RetryStrategy.EXPONENTIAL_BACKOFF,
            }
        )

    def classify(self, exc: Exception) -> SqlError:
        if self.is_transient is not None and self.is_transient(exc):
            return self.transient_error(str(exc))
        return super().classify(exc)

    async def handle_sql_error(self, operation: Operation[T], exc: Exception, sql: str) -> T:
        """
        Classify a failed statement and recover or raise.

        Raises:
            SqlCorrectionRequired: The statement must be regenerated
            DatabasePermissionError: Login lacks privileges
            DatabaseTimeoutError: Statement timed out
            AgentError: Any other failure, once retries (if any) are spent
        """
        if self.is_transient is not None and self.is_transient(exc):
            logger.warning(
                "Transient SQL error, retrying with backoff",
                extra={"handler": self.name, "error": str(exc)},
            )
            return await self.handle(operation, self.transient_error(str(exc), sql))

        error = self.analyze(str(exc), sql)

        if error.type in NEEDS_REGENERATION:
            logger.info(
                f"SQL error {error.type.value} needs regeneration",
                extra={"handler": self.name, "invalid_element": error.invalid_element},
            )
            raise self.create_exception(error)
        if error.type in {SqlErrorType.PERMISSION_DENIED, SqlErrorType.QUERY_TIMEOUT}:
            raise self.create_exception(error)

        return await self.handle(operation, error)

    def create_exception(self, error: SqlError) -> AgentError:
        context = {
            "error_type": error.type.value,
            "invalid_element": error.invalid_element,
            "suggested_fix": error.suggested_fix,
        }
        if error.type in NEEDS_REGENERATION:
            message = error.error_message
            if error.suggested_fix:
                message = f"{message} Suggestion: {error.suggested_fix}"
            return SqlCorrectionRequired(
                message,
                error_code=error.error_code,
                severity=error.severity,
                recoverable=True,
                context=context,
            )
        if error.type == SqlErrorType.PERMISSION_DENIED:
            return DatabasePermissionError(error.error_message, context=context)
        if error.type == SqlErrorType.QUERY_TIMEOUT:
            return DatabaseTimeoutError(error.error_message, context=context)
        return super().create_exception(error)
