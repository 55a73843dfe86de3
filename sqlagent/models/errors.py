"""
Error Taxonomy

The classified error value (SqlError) that drives retry and self-correction
decisions, and the typed exceptions raised when a failure is terminal.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class SqlErrorType(str, Enum):
    """Every failure kind the analyzers can emit."""

    UNKNOWN = "Unknown"

    # SQL syntax/semantic
    INVALID_COLUMN_NAME = "InvalidColumnName"
    INVALID_TABLE_NAME = "InvalidTableName"
    SYNTAX_ERROR = "SyntaxError"
    INVALID_OBJECT_NAME = "InvalidObjectName"
    AMBIGUOUS_COLUMN_NAME = "AmbiguousColumnName"
    TYPE_MISMATCH = "TypeMismatch"
    PARAMETER_NOT_DECLARED = "ParameterNotDeclared"

    # Connection
    CONNECTION_TIMEOUT = "ConnectionTimeout"
    CONNECTION_FAILED = "ConnectionFailed"
    CONNECTION_REFUSED = "ConnectionRefused"
    NETWORK_ERROR = "NetworkError"

    # Permission
    PERMISSION_DENIED = "PermissionDenied"
    INSUFFICIENT_PRIVILEGES = "InsufficientPrivileges"
    DATABASE_ACCESS_DENIED = "DatabaseAccessDenied"

    # Execution
    QUERY_TIMEOUT = "QueryTimeout"
    DEADLOCK_DETECTED = "DeadlockDetected"
    TRANSACTION_ROLLBACK = "TransactionRollback"

    # LLM API
    LLM_RATE_LIMIT_EXCEEDED = "LLMRateLimitExceeded"
    LLM_QUOTA_EXCEEDED = "LLMQuotaExceeded"
    LLM_INVALID_API_KEY = "LLMInvalidApiKey"
    LLM_SERVICE_UNAVAILABLE = "LLMServiceUnavailable"
    LLM_TIMEOUT = "LLMTimeout"
    LLM_BAD_REQUEST = "LLMBadRequest"
    LLM_RESPONSE_PARSE = "LLMResponseParse"

    # Schema / vector store
    SCHEMA_NOT_INDEXED = "SchemaNotIndexed"
    VECTOR_DB_UNAVAILABLE = "VectorDBUnavailable"
    EMBEDDING_GENERATION_FAILED = "EmbeddingGenerationFailed"


class ErrorSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ErrorCategory(str, Enum):
    DATABASE = "Database"
    LLM = "LLM"
    NETWORK = "Network"
    CONFIGURATION = "Configuration"
    USER_INPUT = "UserInput"
    INTERNAL = "Internal"
    VECTOR_STORE = "VectorStore"


class RetryStrategy(str, Enum):
    NO_RETRY = "NoRetry"
    IMMEDIATE_RETRY = "ImmediateRetry"
    EXPONENTIAL_BACKOFF = "ExponentialBackoff"
    WAIT_AND_RETRY = "WaitAndRetry"
    CIRCUIT_BREAKER = "CircuitBreaker"
    FALLBACK = "Fallback"


class SqlError(BaseModel):
    """
    Classified error.

    A non-recoverable error always carries ``RetryStrategy.NO_RETRY``; the
    validator rejects any other pairing.
    """

    type: SqlErrorType = Field(default=SqlErrorType.UNKNOWN)
    severity: ErrorSeverity = Field(default=ErrorSeverity.MEDIUM)
    category: ErrorCategory = Field(default=ErrorCategory.DATABASE)
    error_message: str = Field(default="", description="Raw error text")
    invalid_element: str | None = Field(
        default=None, description="Offending identifier extracted from the message"
    )
    suggested_fix: str | None = Field(default=None)
    is_recoverable: bool = Field(default=True)
    error_code: str = Field(default="")
    max_retry_attempts: int = Field(default=3, ge=0)
    recommended_strategy: RetryStrategy = Field(default=RetryStrategy.NO_RETRY)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def check_strategy(self) -> "SqlError":
        """Reject a non-recoverable error paired with a retry strategy."""
        if not self.is_recoverable and self.recommended_strategy != RetryStrategy.NO_RETRY:
            raise ValueError(
                f"Non-recoverable error {self.type.value} cannot recommend "
                f"{self.recommended_strategy.value}"
            )
        return self


# ============================================================================
# Exceptions
# ============================================================================


class AgentError(Exception):
    """
    Base exception for terminal failures.

    Attributes:
        message: Error description
        error_code: Stable code (e.g. DB_CONN_001)
        severity: How bad the failure is
        recoverable: Whether a later, independent attempt may succeed
        context: Additional context for debugging
    """

    default_code = "AGENT_001"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        recoverable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.severity = severity
        self.recoverable = recoverable
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/API responses."""
        return {
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "context": self.context,
            "type": self.__class__.__name__,
        }


class DatabaseConnectionError(AgentError):
    """Database unreachable, refused, or circuit open."""

    default_code = "DB_CONN_001"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, severity=ErrorSeverity.HIGH, context=context)


class DatabaseTimeoutError(AgentError):
    """Statement or connection exceeded its timeout."""

    default_code = "DB_TIMEOUT_001"


class DatabasePermissionError(AgentError):
    """Missing privileges on the target database."""

    default_code = "DB_PERM_001"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, severity=ErrorSeverity.HIGH, context=context)


class SqlCorrectionRequired(AgentError):
    """SQL failed in a way that only regeneration can fix."""

    default_code = "SQL_CORRECT_001"


class LLMApiError(AgentError):
    """LLM provider call failed."""

    default_code = "LLM_API_001"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, error_code=error_code, severity=severity, context=context)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class RateLimitError(LLMApiError):
    """Provider rate limit hit; ``retry_after`` is the cooldown in seconds."""

    default_code = "LLM_RATE_001"

    def __init__(self, message: str, retry_after: float, context: dict[str, Any] | None = None):
        self.retry_after = retry_after
        super().__init__(message, status_code=429, context=context)


class QuotaExceededError(LLMApiError):
    """Provider quota exhausted. Terminal."""

    default_code = "LLM_QUOTA_001"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(
            message, status_code=403, severity=ErrorSeverity.CRITICAL, context=context
        )


class LLMResponseError(AgentError):
    """LLM reply could not be decoded into the expected structure."""

    default_code = "LLM_PARSE_001"

    def __init__(self, message: str, raw_response: str = "", context: dict[str, Any] | None = None):
        self.raw_response = raw_response
        super().__init__(message, recoverable=True, context=context)


class SchemaIndexError(AgentError):
    """Schema not indexed or not found in the vector store."""

    default_code = "SCHEMA_001"


class VectorStoreError(AgentError):
    """Vector store or embedding generation failed."""

    default_code = "VDB_001"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, severity=ErrorSeverity.HIGH, context=context)


class UnsupportedDatabaseError(AgentError):
    """No schema introspector exists for the requested engine."""

    default_code = "CONFIG_DB_001"
