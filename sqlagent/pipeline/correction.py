"""
Self-Correction Loop

Execute, and on failure ask the SqlCorrector for a repaired statement,
strictly one attempt after another.

Bounds for a maximum of N attempts:
    - at most N executions
    - at most N - 1 correction calls

The loop stops early when the corrector fails, when the last two corrected
statements are identical (no convergence), when the error is not
recoverable, or when a corrected statement fails the safety validator.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlagent.agents.corrector import SqlCorrector
from sqlagent.agents.executor import SqlExecutor
from sqlagent.agents.generator import validate_sql
from sqlagent.models.query import CorrectionAttempt, IntentAnalysis, SqlExecutionResult
from sqlagent.models.schema import RetrievedSchemaContext

logger = logging.getLogger(__name__)


@dataclass
class CorrectionOutcome:
    """Final execution result, the corrections made, and the last SQL executed."""

    result: SqlExecutionResult
    sql: str
    history: list[CorrectionAttempt] = field(default_factory=list)

    @property
    def was_corrected(self) -> bool:
        return bool(self.history)


class SelfCorrectionLoop:
    """Bounded execute/correct loop."""

    def __init__(
        self,
        executor: SqlExecutor,
        corrector: SqlCorrector,
        max_attempts: int = 3,
        is_safe: Callable[[str], bool] = validate_sql,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.executor = executor
        self.corrector = corrector
        self.max_attempts = max_attempts
        self.is_safe = is_safe

    async def run(
        self,
        sql: str,
        context: RetrievedSchemaContext,
        intent: IntentAnalysis,
    ) -> CorrectionOutcome:
        history: list[CorrectionAttempt] = []
        current_sql = sql
        executions = 0

        while True:
            executions += 1
            logger.debug(f"Executing SQL (attempt {executions})")
            result = await self.executor.execute(current_sql)

            if result.success:
                if history:
                    logger.info(
                        f"SQL auto-corrected and executed after {len(history)} correction(s)",
                        extra={"executions": executions},
                    )
                return CorrectionOutcome(result=result, sql=current_sql, history=history)

            logger.warning(f"SQL error: {result.error_message}", extra={"attempt": executions})
            if executions >= self.max_attempts:
                logger.error(f"Max self-correction attempts reached ({self.max_attempts})")
                return CorrectionOutcome(result=result, sql=current_sql, history=history)

            attempt = await self.corrector.correct(
                current_sql,
                result.error_message or "Unknown error",
                context,
                intent,
                attempt_number=len(history) + 1,
            )
            history.append(attempt)

            if not self.should_retry(history):
                return CorrectionOutcome(result=result, sql=current_sql, history=history)
            if not self.is_safe(attempt.corrected_sql):
                logger.warning("Corrected SQL rejected by safety validator, stopping")
                return CorrectionOutcome(result=result, sql=current_sql, history=history)

            current_sql = attempt.corrected_sql
            logger.debug("Retrying with corrected SQL")

    def should_retry(self, history: list[CorrectionAttempt]) -> bool:
        """Stop-check applied after each correction."""
        if not history:
            return True
        last = history[-1]
        if not last.success:
            logger.warning("Unable to auto-correct SQL error")
            return False
        if not last.error.is_recoverable:
            logger.warning("Error not recoverable, stopping retry")
            return False
        if len(history) >= 2 and history[-2].corrected_sql == last.corrected_sql:
            logger.warning("Corrected SQL repeated, stopping retry")
            return False
        if len(history) >= self.max_attempts:
            logger.warning(f"Max attempts reached ({self.max_attempts})")
            return False
        return True
