"""
SQL Error Analyzer

Maps raw engine and LLM error text to a classified SqlError.

Recognizers run in a fixed order and the first match wins, so a syntax
error that happens to mention "timeout" in a literal is still a syntax
error. Everything here is pure: no I/O, no state.
"""

import re

from sqlagent.models.errors import (
    ErrorCategory,
    ErrorSeverity,
    RetryStrategy,
    SqlError,
    SqlErrorType,
)

_PARAMETER_PATTERN = re.compile(r'Must declare the scalar variable "(@\w+)"', re.IGNORECASE)
_INVALID_COLUMN_PATTERN = re.compile(r"Invalid column name '(.+?)'", re.IGNORECASE)
_INVALID_OBJECT_PATTERN = re.compile(r"Invalid object name '(.+?)'", re.IGNORECASE)
_SYNTAX_NEAR_PATTERN = re.compile(r"near '(.+?)'", re.IGNORECASE)
_AMBIGUOUS_COLUMN_PATTERN = re.compile(r"Ambiguous column name '(.+?)'", re.IGNORECASE)

_TYPE_MISMATCH_MARKERS = ("conversion failed", "type mismatch", "arithmetic overflow", "invalid cast")
_PERMISSION_MARKERS = ("permission", "denied", "unauthorized", "access is denied")
_CONNECTION_MARKERS = (
    ("connection", SqlErrorType.CONNECTION_FAILED),
    ("network", SqlErrorType.NETWORK_ERROR),
    ("refused", SqlErrorType.CONNECTION_REFUSED),
    ("cannot open database", SqlErrorType.DATABASE_ACCESS_DENIED),
)


class SqlErrorAnalyzer:
    """
    Classify database and LLM failures.

    Usage:
        analyzer = SqlErrorAnalyzer()
        error = analyzer.analyze_error("Invalid column name 'CustomerName'.", sql)
        error.type                   # SqlErrorType.INVALID_COLUMN_NAME
        error.recommended_strategy   # RetryStrategy.IMMEDIATE_RETRY
    """

    def analyze_error(self, error_message: str, failed_sql: str = "") -> SqlError:
        """
        Classify a raw engine error message.

        Args:
            error_message: Error text as reported by the driver
            failed_sql: SQL that produced the error (kept for context only)

        Returns:
            Classified SqlError
        """
        message = error_message or ""
        lowered = message.lower()

        for recognizer in (
            self._parameter_error,
            self._invalid_column,
            self._invalid_object,
            self._syntax_error,
            self._ambiguous_column,
        ):
            error = recognizer(message)
            if error is not None:
                return error

        if any(marker in lowered for marker in _TYPE_MISMATCH_MARKERS):
            return SqlError(
                type=SqlErrorType.TYPE_MISMATCH,
                error_message=message,
                suggested_fix=(
                    "Check that compared values match the column data types; "
                    "use CAST or CONVERT where needed."
                ),
                is_recoverable=False,
                error_code="SQL_TYPE_001",
                recommended_strategy=RetryStrategy.NO_RETRY,
            )

        if any(marker in lowered for marker in _PERMISSION_MARKERS):
            return SqlError(
                type=SqlErrorType.PERMISSION_DENIED,
                severity=ErrorSeverity.HIGH,
                category=ErrorCategory.CONFIGURATION,
                error_message=message,
                suggested_fix="Grant SELECT permission on the referenced objects to this login.",
                is_recoverable=False,
                error_code="SQL_PERM_001",
                recommended_strategy=RetryStrategy.NO_RETRY,
            )

        for marker, error_type in _CONNECTION_MARKERS:
            if marker in lowered:
                return SqlError(
                    type=error_type,
                    severity=ErrorSeverity.HIGH,
                    category=ErrorCategory.NETWORK,
                    error_message=message,
                    suggested_fix="Check that the database server is reachable and running.",
                    is_recoverable=True,
                    error_code="SQL_CONN_001",
                    max_retry_attempts=3,
                    recommended_strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
                )

        if "timeout" in lowered:
            return SqlError(
                type=SqlErrorType.QUERY_TIMEOUT,
                error_message=message,
                suggested_fix="Narrow the query with filters or add a row limit.",
                is_recoverable=False,
                error_code="SQL_TIMEOUT_001",
                recommended_strategy=RetryStrategy.NO_RETRY,
            )

        return SqlError(
            type=SqlErrorType.UNKNOWN,
            error_message=message,
            is_recoverable=False,
            error_code="SQL_UNKNOWN_001",
            recommended_strategy=RetryStrategy.NO_RETRY,
        )

    def analyze_llm_error(self, exc: BaseException) -> SqlError:
        """
        Classify a failed LLM API call by its message content.

        Args:
            exc: Exception raised by the provider client

        Returns:
            SqlError in the LLM category
        """
        message = str(exc)
        lowered = message.lower()

        if "rate limit" in lowered or "too many requests" in lowered or "429" in lowered:
            return self._llm_error(
                SqlErrorType.LLM_RATE_LIMIT_EXCEEDED,
                message,
                code="LLM_RATE_001",
                fix="Wait for the provider cooldown before retrying.",
                recoverable=True,
                strategy=RetryStrategy.WAIT_AND_RETRY,
                max_attempts=5,
            )
        if "quota" in lowered or "exceeded" in lowered or "403" in lowered:
            return self._llm_error(
                SqlErrorType.LLM_QUOTA_EXCEEDED,
                message,
                code="LLM_QUOTA_001",
                fix="Provider quota is exhausted; upgrade the plan or wait for the quota reset.",
                severity=ErrorSeverity.CRITICAL,
            )
        if "unauthorized" in lowered or ("invalid" in lowered and "key" in lowered) or "401" in lowered:
            return self._llm_error(
                SqlErrorType.LLM_INVALID_API_KEY,
                message,
                code="LLM_AUTH_001",
                fix="Check the configured LLM API key.",
                severity=ErrorSeverity.CRITICAL,
            )
        if "service unavailable" in lowered or "503" in lowered:
            return self._llm_error(
                SqlErrorType.LLM_SERVICE_UNAVAILABLE,
                message,
                code="LLM_SERVICE_001",
                fix="The provider is temporarily unavailable; retry shortly.",
                severity=ErrorSeverity.HIGH,
                recoverable=True,
                strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
                max_attempts=3,
            )
        if "timeout" in lowered or "timed out" in lowered:
            return self._llm_error(
                SqlErrorType.LLM_TIMEOUT,
                message,
                code="LLM_TIMEOUT_001",
                fix="Retry the request.",
                recoverable=True,
                strategy=RetryStrategy.IMMEDIATE_RETRY,
                max_attempts=2,
            )
        return self._llm_error(
            SqlErrorType.LLM_BAD_REQUEST,
            message,
            code="LLM_ERR_001",
            fix="Inspect the request sent to the provider.",
        )

    # ========================================================================
    # Recognizers
    # ========================================================================

    def _parameter_error(self, message: str) -> SqlError | None:
        match = _PARAMETER_PATTERN.search(message)
        if not match:
            return None
        variable = match.group(1)
        return SqlError(
            type=SqlErrorType.PARAMETER_NOT_DECLARED,
            error_message=message,
            invalid_element=variable,
            suggested_fix=(
                f"Replace the placeholder {variable} with a literal value; "
                "parameters are not supported."
            ),
            error_code="SQL_PARAM_001",
            recommended_strategy=RetryStrategy.IMMEDIATE_RETRY,
        )

    def _invalid_column(self, message: str) -> SqlError | None:
        match = _INVALID_COLUMN_PATTERN.search(message)
        if not match:
            return None
        column = match.group(1)
        return SqlError(
            type=SqlErrorType.INVALID_COLUMN_NAME,
            error_message=message,
            invalid_element=column,
            suggested_fix=f"Column '{column}' does not exist. Use a column listed in the schema.",
            error_code="SQL_COL_001",
            recommended_strategy=RetryStrategy.IMMEDIATE_RETRY,
        )

    def _invalid_object(self, message: str) -> SqlError | None:
        match = _INVALID_OBJECT_PATTERN.search(message)
        if not match:
            return None
        table = match.group(1)
        return SqlError(
            type=SqlErrorType.INVALID_OBJECT_NAME,
            error_message=message,
            invalid_element=table,
            suggested_fix=f"Table '{table}' does not exist. Use a table listed in the schema.",
            error_code="SQL_OBJ_001",
            recommended_strategy=RetryStrategy.IMMEDIATE_RETRY,
        )

    def _syntax_error(self, message: str) -> SqlError | None:
        if "incorrect syntax" not in message.lower():
            return None
        near = _SYNTAX_NEAR_PATTERN.search(message)
        return SqlError(
            type=SqlErrorType.SYNTAX_ERROR,
            error_message=message,
            invalid_element=near.group(1) if near else None,
            suggested_fix="Fix the SQL syntax near the reported token.",
            error_code="SQL_SYNTAX_001",
            recommended_strategy=RetryStrategy.IMMEDIATE_RETRY,
        )

    def _ambiguous_column(self, message: str) -> SqlError | None:
        match = _AMBIGUOUS_COLUMN_PATTERN.search(message)
        if not match:
            return None
        column = match.group(1)
        return SqlError(
            type=SqlErrorType.AMBIGUOUS_COLUMN_NAME,
            error_message=message,
            invalid_element=column,
            suggested_fix=f"Qualify '{column}' with its table name or alias.",
            error_code="SQL_AMBIG_001",
            recommended_strategy=RetryStrategy.IMMEDIATE_RETRY,
        )

    @staticmethod
    def _llm_error(
        error_type: SqlErrorType,
        message: str,
        *,
        code: str,
        fix: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        recoverable: bool = False,
        strategy: RetryStrategy = RetryStrategy.NO_RETRY,
        max_attempts: int = 3,
    ) -> SqlError:
        return SqlError(
            type=error_type,
            severity=severity,
            category=ErrorCategory.LLM,
            error_message=message,
            suggested_fix=fix,
            is_recoverable=recoverable,
            error_code=code,
            max_retry_attempts=max_attempts,
            recommended_strategy=strategy,
        )
