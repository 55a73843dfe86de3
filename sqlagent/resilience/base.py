"""
Base Error Handler

Strategy-driven retry for a fallible async operation.

The caller has already seen one failure and classified it. The handler
re-runs the operation according to ``error.recommended_strategy``:

    NoRetry             raise immediately, never invoke the operation
    ImmediateRetry      up to max_retry_attempts attempts, no delay
    ExponentialBackoff  2^attempt seconds between attempts
    WaitAndRetry        fixed delay between attempts
    CircuitBreaker      subclass hook (base: exponential backoff)
    Fallback            subclass hook (base: terminal)

Each attempt yields an ``Ok``/``Err`` outcome; the loop branches on the
tag and stops as soon as an attempt's error is classified non-recoverable.
Exceptions are only raised at the public ``handle`` boundary.

Usage:
    handler = SqlHandler()
    error = handler.analyzer.analyze_error(str(exc), sql)
    rows = await handler.handle(lambda: connector.execute(sql), error)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlagent.models.errors import (
    AgentError,
    DatabaseConnectionError,
    DatabasePermissionError,
    DatabaseTimeoutError,
    ErrorCategory,
    LLMApiError,
    RetryStrategy,
    SqlError,
    SqlErrorType,
    VectorStoreError,
)
from sqlagent.resilience.analyzer import SqlErrorAnalyzer
from sqlagent.resilience.outcome import Err, Ok, Outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[], Awaitable[T]]

_CONNECTION_TYPES = {
    SqlErrorType.CONNECTION_FAILED,
    SqlErrorType.CONNECTION_REFUSED,
    SqlErrorType.NETWORK_ERROR,
}
_TIMEOUT_TYPES = {SqlErrorType.CONNECTION_TIMEOUT, SqlErrorType.QUERY_TIMEOUT}
_PERMISSION_TYPES = {
    SqlErrorType.PERMISSION_DENIED,
    SqlErrorType.INSUFFICIENT_PRIVILEGES,
    SqlErrorType.DATABASE_ACCESS_DENIED,
}


class BaseErrorHandler:
    """
    Retry driver shared by all resilience handlers.

    Attributes:
        name: Handler name used in log records
        analyzer: Classifier applied to failures seen during retries
        wait_seconds: Fixed delay for the WaitAndRetry strategy
    """

    def __init__(
        self,
        name: str = "ErrorHandler",
        analyzer: SqlErrorAnalyzer | None = None,
        wait_seconds: float = 5,
    ):
        self.name = name
        self.analyzer = analyzer or SqlErrorAnalyzer()
        self.wait_seconds = wait_seconds

    async def handle(self, operation: Operation[T], error: SqlError) -> T:
        """
        Re-run ``operation`` per the error's strategy.

        Returns:
            The operation's result once an attempt succeeds

        Raises:
            AgentError: Typed exception derived from the final error
        """
        outcome = await self.execute(operation, error)
        if outcome.is_ok:
            return outcome.unwrap()
        raise self.create_exception(outcome.error) from outcome.cause

    async def execute(self, operation: Operation[T], error: SqlError) -> Outcome[T]:
        """Run the retry strategy and return the tagged outcome without raising."""
        strategy = error.recommended_strategy
        started = time.perf_counter()

        logger.info(
            f"{self.name} handling {error.type.value}",
            extra={
                "handler": self.name,
                "error_type": error.type.value,
                "error_code": error.error_code,
                "strategy": strategy.value,
                "max_attempts": error.max_retry_attempts,
            },
        )

        if not error.is_recoverable or strategy == RetryStrategy.NO_RETRY:
            outcome: Outcome[T] = Err(error, terminal=True)
        elif strategy == RetryStrategy.IMMEDIATE_RETRY:
            outcome = await self._retry(operation, error, lambda attempt: 0)
        elif strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            outcome = await self._retry(operation, error, self._backoff_delay)
        elif strategy == RetryStrategy.WAIT_AND_RETRY:
            outcome = await self._wait_and_retry(operation, error)
        elif strategy == RetryStrategy.CIRCUIT_BREAKER:
            outcome = await self._circuit_breaker(operation, error)
        elif strategy == RetryStrategy.FALLBACK:
            outcome = await self._fallback(operation, error)
        else:  # pragma: no cover - exhaustive over RetryStrategy
            outcome = Err(error, terminal=True)

        duration_ms = (time.perf_counter() - started) * 1000
        if outcome.is_ok:
            logger.info(
                f"{self.name} recovered from {error.type.value}",
                extra={
                    "handler": self.name,
                    "attempts": outcome.attempts,
                    "duration_ms": duration_ms,
                },
            )
        else:
            logger.error(
                f"{self.name} gave up on {outcome.error.type.value}",
                extra={
                    "handler": self.name,
                    "error_code": outcome.error.error_code,
                    "attempts": outcome.attempts,
                    "terminal": outcome.terminal,
                    "duration_ms": duration_ms,
                },
            )
        return outcome

    def classify(self, exc: Exception) -> SqlError:
        """Classify a failure observed while retrying."""
        return self.analyzer.analyze_error(str(exc))

    def create_exception(self, error: SqlError) -> AgentError:
        """Build the typed exception raised when handling ends in failure."""
        context = {"error_type": error.type.value, "suggested_fix": error.suggested_fix}
        if error.type in _CONNECTION_TYPES:
            return DatabaseConnectionError(error.error_message, context=context)
        if error.type in _TIMEOUT_TYPES:
            return DatabaseTimeoutError(error.error_message, context=context)
        if error.type in _PERMISSION_TYPES:
            return DatabasePermissionError(error.error_message, context=context)
        if error.category == ErrorCategory.LLM:
            return LLMApiError(
                error.error_message,
                error_code=error.error_code,
                severity=error.severity,
                context=context,
            )
        if error.category == ErrorCategory.VECTOR_STORE:
            return VectorStoreError(error.error_message, context=context)
        return AgentError(
            error.error_message,
            error_code=error.error_code or None,
            severity=error.severity,
            recoverable=error.is_recoverable,
            context=context,
        )

    # ========================================================================
    # Strategies
    # ========================================================================

    async def _attempt(self, operation: Operation[T]) -> Outcome[T]:
        try:
            return Ok(await operation())
        except Exception as exc:
            return Err(self.classify(exc), cause=exc)

    async def _retry(
        self,
        operation: Operation[T],
        error: SqlError,
        delay_for: Callable[[int], float],
        max_attempts: int | None = None,
    ) -> Outcome[T]:
        limit = max_attempts if max_attempts is not None else error.max_retry_attempts
        last: Outcome[T] = Err(error)

        for attempt in range(1, limit + 1):
            outcome = await self._attempt(operation)
            if outcome.is_ok:
                return Ok(outcome.value, attempts=attempt)

            if not outcome.error.is_recoverable:
                logger.warning(
                    f"{self.name} attempt {attempt} hit a terminal error",
                    extra={"handler": self.name, "error_type": outcome.error.type.value},
                )
                return Err(outcome.error, cause=outcome.cause, attempts=attempt, terminal=True)

            last = Err(outcome.error, cause=outcome.cause, attempts=attempt)
            if attempt < limit:
                delay = delay_for(attempt)
                logger.warning(
                    f"{self.name} attempt {attempt}/{limit} failed, retrying in {delay}s",
                    extra={
                        "handler": self.name,
                        "error": outcome.error.error_message,
                        "delay": delay,
                    },
                )
                if delay:
                    await self._sleep(delay)

        return last

    async def _wait_and_retry(self, operation: Operation[T], error: SqlError) -> Outcome[T]:
        return await self._retry(operation, error, lambda attempt: self.wait_seconds)

    async def _circuit_breaker(self, operation: Operation[T], error: SqlError) -> Outcome[T]:
        return await self._retry(operation, error, self._backoff_delay)

    async def _fallback(self, operation: Operation[T], error: SqlError) -> Outcome[T]:
        return Err(error, terminal=True)

    @staticmethod
    def _backoff_delay(attempt: int) -> float:
        return float(2**attempt)

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
