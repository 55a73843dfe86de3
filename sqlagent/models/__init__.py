"""
sqlagent Models Module

Pydantic models for type-safe data validation throughout the package.

Available Models:
    Schema Models:
        - ColumnInfo, TableInfo, RelationshipInfo: Catalog metadata
        - DatabaseSchema: Full scanned schema snapshot
        - SchemaMatch: One similarity-search hit
        - RetrievedSchemaContext: Relevance-filtered schema view

    Query Models:
        - NormalizedQuestion: Cleaned question text
        - IntentAnalysis / QueryIntent / FilterCondition: Extracted intent
        - SqlExecutionResult: Outcome of one statement
        - CorrectionAttempt: One self-correction round
        - AgentResponse: Final answer

    Errors:
        - SqlError and its enums: Classified error taxonomy
        - AgentError and subclasses: Terminal failures
"""

from sqlagent.models.errors import (
    AgentError,
    DatabaseConnectionError,
    DatabasePermissionError,
    DatabaseTimeoutError,
    ErrorCategory,
    ErrorSeverity,
    LLMApiError,
    LLMResponseError,
    QuotaExceededError,
    RateLimitError,
    RetryStrategy,
    SchemaIndexError,
    SqlCorrectionRequired,
    SqlError,
    SqlErrorType,
    UnsupportedDatabaseError,
    VectorStoreError,
)
from sqlagent.models.query import (
    AgentResponse,
    CorrectionAttempt,
    FilterCondition,
    IntentAnalysis,
    NormalizedQuestion,
    QueryIntent,
    SqlExecutionResult,
)
from sqlagent.models.schema import (
    ColumnInfo,
    DatabaseSchema,
    RelationshipInfo,
    RetrievedSchemaContext,
    SchemaMatch,
    TableInfo,
)

__all__ = [
    # Schema
    "ColumnInfo",
    "TableInfo",
    "RelationshipInfo",
    "DatabaseSchema",
    "SchemaMatch",
    "RetrievedSchemaContext",
    # Query
    "NormalizedQuestion",
    "QueryIntent",
    "FilterCondition",
    "IntentAnalysis",
    "SqlExecutionResult",
    "CorrectionAttempt",
    "AgentResponse",
    # Errors
    "SqlErrorType",
    "ErrorSeverity",
    "ErrorCategory",
    "RetryStrategy",
    "SqlError",
    "AgentError",
    "DatabaseConnectionError",
    "DatabaseTimeoutError",
    "DatabasePermissionError",
    "SqlCorrectionRequired",
    "LLMApiError",
    "RateLimitError",
    "QuotaExceededError",
    "LLMResponseError",
    "SchemaIndexError",
    "VectorStoreError",
    "UnsupportedDatabaseError",
]
