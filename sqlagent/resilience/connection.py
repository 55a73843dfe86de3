"""
Connection Handler

Retry plus a consecutive-failure circuit breaker around database
connectivity.

States:
    Closed  calls go through; failures increment the counter
    Open    after ``failure_threshold`` consecutive failures; calls fail fast
            without touching the database until ``reset_seconds`` pass

The Open -> Closed transition is lazy: the first call that arrives after
the reset window closes the circuit and attempts the operation again.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from sqlagent.models.errors import (
    AgentError,
    DatabaseConnectionError,
    DatabasePermissionError,
    DatabaseTimeoutError,
    SqlError,
    SqlErrorType,
)
from sqlagent.resilience.analyzer import SqlErrorAnalyzer
from sqlagent.resilience.base import BaseErrorHandler, Operation, T
from sqlagent.resilience.outcome import Outcome

logger = logging.getLogger(__name__)


class ConnectionHandler(BaseErrorHandler):
    """
    Database connection handler with circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit
        reset_seconds: How long the circuit stays open
        consecutive_failures: Current failure streak
        circuit_opened_at: Monotonic time the circuit opened (None = closed)
    """

    def __init__(
        self,
        analyzer: SqlErrorAnalyzer | None = None,
        failure_threshold: int = 5,
        reset_seconds: float = 60,
        wait_seconds: float = 5,
    ):
        super().__init__(name="ConnectionHandler", analyzer=analyzer, wait_seconds=wait_seconds)
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self.consecutive_failures = 0
        self.circuit_opened_at: float | None = None
        self._opened_wallclock: datetime | None = None

    async def handle_connection_error(self, operation: Operation[T], exc: Exception) -> T:
        """
        Retry an operation that failed with ``exc`` through the circuit breaker.

        Raises:
            DatabaseConnectionError: Circuit open, or retries exhausted
            DatabaseTimeoutError / DatabasePermissionError: Terminal failures
        """
        error = self.analyzer.analyze_error(str(exc))
        return await self.handle(operation, error)

    async def call(self, operation: Operation[T]) -> T:
        """Run an operation for the first time; failures go through the breaker."""
        self.guard()
        try:
            result = await operation()
        except Exception as exc:
            return await self.handle_connection_error(operation, exc)
        self.record_success()
        return result

    async def call_once(self, operation: Operation[T]) -> T:
        """
        Run an operation once behind the breaker, without retrying.

        A failure counts against the breaker and is raised as the typed
        exception for its classification.
        """
        self.guard()
        try:
            result = await operation()
        except Exception as exc:
            self._record_failure()
            raise self.create_exception(self.classify(exc)) from exc
        self.record_success()
        return result

    async def execute(self, operation: Operation[T], error: SqlError) -> Outcome[T]:
        self.guard()
        outcome = await super().execute(operation, error)
        if outcome.is_ok:
            self.record_success()
        else:
            self._record_failure()
        return outcome

    def create_exception(self, error: SqlError) -> AgentError:
        context = {"error_type": error.type.value, "suggested_fix": error.suggested_fix}
        if error.type == SqlErrorType.CONNECTION_TIMEOUT:
            return DatabaseTimeoutError(error.error_message, context=context)
        if error.type in {
            SqlErrorType.CONNECTION_FAILED,
            SqlErrorType.CONNECTION_REFUSED,
            SqlErrorType.NETWORK_ERROR,
        }:
            return DatabaseConnectionError(error.error_message, context=context)
        if error.type == SqlErrorType.DATABASE_ACCESS_DENIED:
            return DatabasePermissionError(error.error_message, context=context)
        return super().create_exception(error)

    # ========================================================================
    # Circuit breaker
    # ========================================================================

    @property
    def is_circuit_open(self) -> bool:
        if self.circuit_opened_at is None:
            return False
        return (self._now() - self.circuit_opened_at) < self.reset_seconds

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        """Snapshot of breaker state for diagnostics."""
        remaining = 0.0
        if self.is_circuit_open:
            remaining = self.reset_seconds - (self._now() - self.circuit_opened_at)
        return {
            "state": "open" if self.is_circuit_open else "closed",
            "consecutive_failures": self.consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "opened_at": self._opened_wallclock.isoformat() if self._opened_wallclock else None,
            "seconds_until_retry": round(max(remaining, 0.0), 1),
        }

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.circuit_opened_at = None
        self._opened_wallclock = None

    def guard(self) -> None:
        if self.circuit_opened_at is None:
            return
        if self.is_circuit_open:
            opened = self._opened_wallclock.isoformat() if self._opened_wallclock else "unknown"
            logger.warning(
                "Circuit open, failing fast",
                extra={"handler": self.name, "opened_at": opened},
            )
            raise DatabaseConnectionError(
                f"Circuit breaker is open since {opened}; database calls are suspended "
                f"for {self.reset_seconds:g}s after {self.failure_threshold} consecutive failures.",
                context={"opened_at": opened, "consecutive_failures": self.consecutive_failures},
            )
        logger.info("Circuit reset window elapsed, closing circuit", extra={"handler": self.name})
        self.reset()

    def record_success(self) -> None:
        """Close the circuit after the database answered a call."""
        if self.consecutive_failures:
            logger.info(
                "Connection recovered, resetting failure counter",
                extra={"handler": self.name, "previous_failures": self.consecutive_failures},
            )
        self.reset()

    def _record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.failure_threshold and self.circuit_opened_at is None:
            self.circuit_opened_at = self._now()
            self._opened_wallclock = datetime.now(timezone.utc)
            logger.error(
                f"Circuit opened after {self.consecutive_failures} consecutive failures",
                extra={"handler": self.name, "reset_seconds": self.reset_seconds},
            )

    @staticmethod
    def _now() -> float:
        return time.monotonic()
