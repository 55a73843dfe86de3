"""
SQL Corrector

Repairs a failed statement. The engine error is classified first; a
non-recoverable error yields an unsuccessful attempt without an LLM call.
Otherwise the LLM gets the failed SQL, the raw error, the exact column
listing and, for invalid-column errors, up to three similar existing
columns.

Every call returns a CorrectionAttempt. LLM quota/auth failures propagate
because they are terminal for the question; any other failure becomes an
unsuccessful attempt.
"""

import logging

from sqlagent.agents.base import BaseAgent
from sqlagent.llm.client import LLMClient
from sqlagent.models.errors import LLMApiError, SqlError, SqlErrorType
from sqlagent.models.query import CorrectionAttempt, IntentAnalysis
from sqlagent.models.schema import RetrievedSchemaContext
from sqlagent.prompts.loader import PromptLoader
from sqlagent.resilience.analyzer import SqlErrorAnalyzer
from sqlagent.utils.llm_output import clean_sql

logger = logging.getLogger(__name__)

MAX_SIMILAR_COLUMNS = 3
MAX_LISTED_CHANGES = 5


def find_similar_columns(invalid_column: str, context: RetrievedSchemaContext) -> list[str]:
    """Columns whose names contain (or are contained in) the invalid name, underscores ignored."""
    wanted = invalid_column.lower().replace("_", "")
    if not wanted:
        return []
    suggestions: list[str] = []
    for table in context.relevant_tables:
        for column in table.columns:
            candidate = column.name.lower().replace("_", "")
            if candidate and (wanted in candidate or candidate in wanted):
                suggestions.append(f"{table.name}.{column.name}")
    return suggestions[:MAX_SIMILAR_COLUMNS]


def find_changes(original: str, corrected: str) -> list[str]:
    """Word-by-word diff of two statements, at most five entries."""
    changes = [
        f"'{before}' -> '{after}'"
        for before, after in zip(original.split(), corrected.split())
        if before != after
    ]
    return changes[:MAX_LISTED_CHANGES]


def build_reasoning(error: SqlError, original_sql: str, corrected_sql: str) -> str:
    lines = [f"Error: {error.type.value}"]
    if error.invalid_element:
        lines.append(f"Invalid element: '{error.invalid_element}'")
    if error.suggested_fix:
        lines.append(f"Fix: {error.suggested_fix}")
    if original_sql != corrected_sql:
        changes = find_changes(original_sql, corrected_sql)
        if changes:
            lines.append("Changes made:")
            lines.extend(f"  - {change}" for change in changes)
    return "\n".join(lines)


class SqlCorrector(BaseAgent):
    """LLM-backed SQL repair."""

    def __init__(
        self,
        llm: LLMClient,
        analyzer: SqlErrorAnalyzer | None = None,
        prompts: PromptLoader | None = None,
        dialect: str = "sqlserver",
    ):
        super().__init__(name="SqlCorrector", llm=llm, prompts=prompts, dialect=dialect)
        self.analyzer = analyzer or SqlErrorAnalyzer()

    async def correct(
        self,
        original_sql: str,
        error_message: str,
        context: RetrievedSchemaContext,
        intent: IntentAnalysis,
        attempt_number: int,
    ) -> CorrectionAttempt:
        """Produce one correction attempt for a failed statement."""
        self._start()
        error = self.analyzer.analyze_error(error_message, original_sql)
        logger.info(
            f"Correcting SQL (attempt {attempt_number}): {error.type.value}",
            extra={"agent": self.name, "recoverable": error.is_recoverable},
        )

        if not error.is_recoverable:
            logger.warning(f"Error {error.type.value} is not auto-correctable")
            self._finish()
            return CorrectionAttempt(
                attempt_number=attempt_number,
                original_sql=original_sql,
                error=error,
                success=False,
                reasoning="Error cannot be automatically corrected.",
            )

        similar_columns: dict[str, list[str]] = {}
        if error.type == SqlErrorType.INVALID_COLUMN_NAME and error.invalid_element:
            suggestions = find_similar_columns(error.invalid_element, context)
            if suggestions:
                similar_columns[error.invalid_element] = suggestions

        first_filter = ""
        if intent.filters:
            f = intent.filters[0]
            first_filter = f"{f.field} {f.operator} {f.value}"

        try:
            system_prompt, user_prompt = self.prompts.render_pair(
                "sql_correction.md",
                dialect_label=self.dialect_label,
                failed_sql=original_sql,
                error_message=error_message,
                error=error,
                similar_columns=similar_columns,
                first_filter=first_filter,
                tables=context.relevant_tables,
                relationships=context.relevant_relationships,
                intent=intent,
            )
            corrected_sql = clean_sql(await self._complete(system_prompt, user_prompt))
        except LLMApiError as e:
            self._finish(e)
            raise
        except Exception as e:
            logger.error(f"Correction failed: {e}", extra={"agent": self.name}, exc_info=True)
            self._finish(e)
            return CorrectionAttempt(
                attempt_number=attempt_number,
                original_sql=original_sql,
                error=error,
                success=False,
                reasoning=f"Correction failed: {e}",
            )

        if not corrected_sql:
            self._finish()
            return CorrectionAttempt(
                attempt_number=attempt_number,
                original_sql=original_sql,
                error=error,
                success=False,
                reasoning="LLM returned no SQL.",
            )

        logger.debug(f"Corrected SQL: {corrected_sql}")
        self._finish()
        return CorrectionAttempt(
            attempt_number=attempt_number,
            original_sql=original_sql,
            error=error,
            corrected_sql=corrected_sql,
            success=True,
            reasoning=build_reasoning(error, original_sql, corrected_sql),
        )
