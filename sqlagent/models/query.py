"""
Query Models

Per-question models: normalized question, extracted intent, execution
results, correction history, and the final AgentResponse.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sqlagent.models.errors import SqlError


class NormalizedQuestion(BaseModel):
    """Question text after trimming, whitespace collapsing and abbreviation expansion."""

    original_text: str
    normalized_text: str
    language: str = Field(default="en", description="Detected language code")
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(frozen=True)


class QueryIntent(str, Enum):
    LIST = "LIST"
    COUNT = "COUNT"
    AGGREGATE = "AGGREGATE"
    DETAIL = "DETAIL"
    SCHEMA = "SCHEMA"
    UNKNOWN = "UNKNOWN"


class FilterCondition(BaseModel):
    """Single filter extracted from the question (field operator value)."""

    field: str
    operator: str = "="
    value: Any = None


class IntentAnalysis(BaseModel):
    """
    Structured meaning of a question.

    Accepts both the camelCase keys the LLM is asked to produce and the
    snake_case field names.
    """

    intent: QueryIntent = Field(default=QueryIntent.UNKNOWN)
    target: str = Field(default="", description="Target entity/table")
    metrics: list[str] = Field(default_factory=list)
    filters: list[FilterCondition] = Field(default_factory=list)
    needs_clarification: bool = Field(default=False, alias="needsClarification")
    clarification_question: str | None = Field(default=None, alias="clarificationQuestion")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("intent", mode="before")
    @classmethod
    def normalize_intent(cls, v: Any) -> Any:
        """Map case variants and unknown labels onto QueryIntent."""
        if isinstance(v, QueryIntent):
            return v
        label = str(v or "").strip().upper()
        return label if label in QueryIntent.__members__ else QueryIntent.UNKNOWN

    @field_validator("target", mode="before")
    @classmethod
    def normalize_target(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("metrics", mode="before")
    @classmethod
    def normalize_metrics(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v]


class SqlExecutionResult(BaseModel):
    """
    Outcome of running one SQL statement.

    ``error_message`` keeps the raw engine text so it can be classified;
    ``error_details`` holds the classified error and a user-facing message.
    """

    success: bool
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    error_message: str | None = None
    error_details: dict[str, Any] | None = None
    execution_time_ms: float = 0.0

    model_config = ConfigDict(frozen=True)

    @property
    def row_count(self) -> int:
        return len(self.rows)


class CorrectionAttempt(BaseModel):
    """One self-correction round."""

    attempt_number: int
    original_sql: str
    error: SqlError
    corrected_sql: str = ""
    reasoning: str = ""
    success: bool = False
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class AgentResponse(BaseModel):
    """Final answer for one question."""

    success: bool = False
    answer: str = ""
    sql_generated: str | None = None
    execution_result: SqlExecutionResult | None = None
    error_message: str | None = None
    processing_steps: list[str] = Field(default_factory=list)
    correction_history: list[CorrectionAttempt] = Field(default_factory=list)
    was_corrected: bool = False
    correction_attempts: int = 0
