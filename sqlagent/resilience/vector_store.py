"""
Vector Store Handler

Retry policy for the schema vector index and the embedding API.
Unavailability is retried with backoff and then surfaced as a
``VectorStoreError`` so callers can drop to a full-schema scan; a missing
collection is reported at once as ``SchemaIndexError``.
"""

import logging

from sqlagent.models.errors import (
    AgentError,
    ErrorCategory,
    ErrorSeverity,
    RetryStrategy,
    SchemaIndexError,
    SqlError,
    SqlErrorType,
    VectorStoreError,
)
from sqlagent.resilience.analyzer import SqlErrorAnalyzer
from sqlagent.resilience.base import BaseErrorHandler, Operation, T

logger = logging.getLogger(__name__)

_UNAVAILABLE_MARKERS = ("connection", "unavailable", "timeout", "refused")
_NOT_INDEXED_MARKERS = ("not found", "collection", "not indexed")
_EMBEDDING_MARKERS = ("embedding", "api", "gemini", "openai")


class VectorStoreHandler(BaseErrorHandler):
    """Vector index and embedding error handler."""

    def __init__(self, analyzer: SqlErrorAnalyzer | None = None, wait_seconds: float = 5):
        super().__init__(name="VectorStoreHandler", analyzer=analyzer, wait_seconds=wait_seconds)

    async def handle_vector_store_error(self, operation: Operation[T], exc: Exception) -> T:
        """
        Retry a failed vector-store or embedding call.

        Raises:
            VectorStoreError: Store or embedding API still failing
            SchemaIndexError: Collection missing / schema never indexed
        """
        return await self.handle(operation, self.classify(exc))

    async def call(self, operation: Operation[T]) -> T:
        """Run an operation for the first time; failures go through the handler."""
        try:
            return await operation()
        except Exception as exc:
            return await self.handle_vector_store_error(operation, exc)

    def classify(self, exc: Exception) -> SqlError:
        message = str(exc)
        lowered = message.lower()

        if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
            return SqlError(
                type=SqlErrorType.VECTOR_DB_UNAVAILABLE,
                severity=ErrorSeverity.HIGH,
                category=ErrorCategory.VECTOR_STORE,
                error_message=message,
                suggested_fix="Falling back to full schema scan.",
                is_recoverable=True,
                error_code="VDB_CONN_001",
                max_retry_attempts=3,
                recommended_strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
            )
        if any(marker in lowered for marker in _NOT_INDEXED_MARKERS):
            return SqlError(
                type=SqlErrorType.SCHEMA_NOT_INDEXED,
                category=ErrorCategory.VECTOR_STORE,
                error_message=message,
                suggested_fix="Index the schema before searching it.",
                is_recoverable=False,
                error_code="VDB_INDEX_001",
                recommended_strategy=RetryStrategy.NO_RETRY,
            )
        if any(marker in lowered for marker in _EMBEDDING_MARKERS):
            return SqlError(
                type=SqlErrorType.EMBEDDING_GENERATION_FAILED,
                category=ErrorCategory.VECTOR_STORE,
                error_message=message,
                suggested_fix="Check the embedding provider configuration.",
                is_recoverable=True,
                error_code="VDB_EMBED_001",
                max_retry_attempts=2,
                recommended_strategy=RetryStrategy.WAIT_AND_RETRY,
            )
        return SqlError(
            type=SqlErrorType.UNKNOWN,
            category=ErrorCategory.VECTOR_STORE,
            error_message=message,
            is_recoverable=False,
            error_code="VDB_001",
            recommended_strategy=RetryStrategy.NO_RETRY,
        )

    def create_exception(self, error: SqlError) -> AgentError:
        context = {"error_type": error.type.value}
        if error.type == SqlErrorType.SCHEMA_NOT_INDEXED:
            return SchemaIndexError(error.error_message, context=context)
        if error.type == SqlErrorType.VECTOR_DB_UNAVAILABLE:
            return VectorStoreError(
                f"Vector store unavailable: {error.error_message}. Falling back to full schema scan.",
                context=context,
            )
        return VectorStoreError(error.error_message, context=context)
