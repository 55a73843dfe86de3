"""
LLM Handler

Retry policy for LLM API calls with a rate-limit cooldown shared by every
caller of one handler instance. When a provider answers 429, the handler
records a reset time; concurrent calls through the same instance wait for
that one clock instead of hammering the provider independently.

Quota and invalid-key failures are terminal and never retried.
"""

import asyncio
import logging
import time
from typing import Any

from sqlagent.models.errors import (
    AgentError,
    ErrorSeverity,
    LLMApiError,
    QuotaExceededError,
    RateLimitError,
    SqlError,
    SqlErrorType,
)
from sqlagent.resilience.analyzer import SqlErrorAnalyzer
from sqlagent.resilience.base import BaseErrorHandler, Operation, T
from sqlagent.resilience.outcome import Err, Outcome

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    SqlErrorType.LLM_RATE_LIMIT_EXCEEDED: 429,
    SqlErrorType.LLM_QUOTA_EXCEEDED: 403,
    SqlErrorType.LLM_INVALID_API_KEY: 401,
    SqlErrorType.LLM_SERVICE_UNAVAILABLE: 503,
    SqlErrorType.LLM_TIMEOUT: 408,
}


class LLMHandler(BaseErrorHandler):
    """
    LLM API error handler.

    Attributes:
        rate_limit_retry_after: Default cooldown in seconds after a 429
    """

    def __init__(
        self,
        analyzer: SqlErrorAnalyzer | None = None,
        rate_limit_retry_after: float = 60,
        wait_seconds: float = 5,
    ):
        super().__init__(name="LLMHandler", analyzer=analyzer, wait_seconds=wait_seconds)
        self.rate_limit_retry_after = rate_limit_retry_after
        self._rate_limit_reset_at: float | None = None
        self._cooldown_lock = asyncio.Lock()

    async def handle_llm_error(self, operation: Operation[T], exc: Exception) -> T:
        """
        Recover from a failed LLM call or raise a typed LLM exception.

        Raises:
            RateLimitError: Rate limit persists after the cooldown
            QuotaExceededError: Quota exhausted
            LLMApiError: Any other terminal failure
        """
        error = self.analyzer.analyze_llm_error(exc)

        if error.type == SqlErrorType.LLM_RATE_LIMIT_EXCEEDED:
            return await self._handle_rate_limit(operation, exc)
        if error.type == SqlErrorType.LLM_QUOTA_EXCEEDED:
            logger.error("LLM quota exceeded", extra={"handler": self.name, "error": str(exc)})
            raise QuotaExceededError(error.error_message) from exc
        if error.type == SqlErrorType.LLM_INVALID_API_KEY:
            logger.error("LLM API key rejected", extra={"handler": self.name})
            raise LLMApiError(
                error.error_message,
                status_code=401,
                error_code=error.error_code,
                severity=ErrorSeverity.CRITICAL,
            ) from exc

        return await self.handle(operation, error)

    async def wait_for_cooldown(self) -> None:
        """Sleep until any active rate-limit cooldown has passed."""
        remaining = self.cooldown_remaining()
        if remaining > 0:
            logger.info(
                f"LLM rate-limit cooldown active, waiting {remaining:.1f}s",
                extra={"handler": self.name, "wait": remaining},
            )
            await self._sleep(remaining)

    def cooldown_remaining(self) -> float:
        if self._rate_limit_reset_at is None:
            return 0.0
        return max(self._rate_limit_reset_at - self._now(), 0.0)

    def get_rate_limit_status(self) -> dict[str, Any]:
        """Snapshot of cooldown state for diagnostics."""
        remaining = self.cooldown_remaining()
        return {
            "in_cooldown": remaining > 0,
            "seconds_remaining": round(remaining, 1),
            "retry_after": self.rate_limit_retry_after,
        }

    def classify(self, exc: Exception) -> SqlError:
        return self.analyzer.analyze_llm_error(exc)

    def create_exception(self, error: SqlError) -> AgentError:
        if error.type == SqlErrorType.LLM_RATE_LIMIT_EXCEEDED:
            return RateLimitError(error.error_message, retry_after=self.rate_limit_retry_after)
        if error.type == SqlErrorType.LLM_QUOTA_EXCEEDED:
            return QuotaExceededError(error.error_message)
        return LLMApiError(
            error.error_message,
            status_code=_STATUS_CODES.get(error.type, 400),
            error_code=error.error_code or None,
            severity=error.severity,
            context={"error_type": error.type.value},
        )

    # ========================================================================
    # Strategies
    # ========================================================================

    async def _handle_rate_limit(self, operation: Operation[T], exc: Exception) -> T:
        retry_after = self._declared_retry_after(exc) or self.rate_limit_retry_after

        async with self._cooldown_lock:
            reset_at = self._now() + retry_after
            if self._rate_limit_reset_at is None or reset_at > self._rate_limit_reset_at:
                self._rate_limit_reset_at = reset_at

        wait = self.cooldown_remaining()
        logger.warning(
            f"LLM rate limit hit, cooling down for {wait:.1f}s",
            extra={"handler": self.name, "retry_after": retry_after},
        )
        await self._sleep(wait)

        outcome = await self._attempt(operation)
        if outcome.is_ok:
            async with self._cooldown_lock:
                if self.cooldown_remaining() <= 0:
                    self._rate_limit_reset_at = None
            return outcome.unwrap()

        raise RateLimitError(
            f"Rate limit persists after waiting {wait:.0f}s: {outcome.error.error_message}",
            retry_after=self.rate_limit_retry_after,
        ) from outcome.cause

    async def _wait_and_retry(self, operation: Operation[T], error: SqlError) -> Outcome[T]:
        return await self._retry(operation, error, lambda attempt: self.wait_seconds * attempt)

    async def _fallback(self, operation: Operation[T], error: SqlError) -> Outcome[T]:
        outcome = await self._retry(operation, error, self._backoff_delay)
        if outcome.is_ok:
            return outcome
        return Err(outcome.error, cause=outcome.cause, attempts=outcome.attempts, terminal=True)

    @staticmethod
    def _declared_retry_after(exc: Exception) -> float | None:
        value = getattr(exc, "retry_after", None)
        if value is None:
            response = getattr(exc, "response", None)
            headers = getattr(response, "headers", None) or {}
            value = headers.get("retry-after") if hasattr(headers, "get") else None
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _now() -> float:
        return time.monotonic()
