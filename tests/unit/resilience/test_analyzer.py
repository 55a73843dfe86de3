"""
Unit tests for SqlErrorAnalyzer.

Covers engine error classification, element extraction, LLM error
classification and the recoverable/strategy pairing.
"""

import pytest
from pydantic import ValidationError

from sqlagent.models.errors import (
    ErrorCategory,
    RetryStrategy,
    SqlError,
    SqlErrorType,
)
from sqlagent.resilience.analyzer import SqlErrorAnalyzer


@pytest.fixture
def analyzer():
    return SqlErrorAnalyzer()


# One message per recognizer, in analyzer order.
ENGINE_MESSAGES = [
    ('Must declare the scalar variable "@CustomerId".', SqlErrorType.PARAMETER_NOT_DECLARED),
    ("Invalid column name 'CustName'.", SqlErrorType.INVALID_COLUMN_NAME),
    ("Invalid object name 'Clients'.", SqlErrorType.INVALID_OBJECT_NAME),
    ("Incorrect syntax near 'FORM'.", SqlErrorType.SYNTAX_ERROR),
    ("Ambiguous column name 'Id'.", SqlErrorType.AMBIGUOUS_COLUMN_NAME),
    ("Conversion failed when converting the varchar value 'abc' to data type int.", SqlErrorType.TYPE_MISMATCH),
    ("The SELECT permission was denied on the object 'Orders'.", SqlErrorType.PERMISSION_DENIED),
    ("Connection reset by peer", SqlErrorType.CONNECTION_FAILED),
    ("A network-related error occurred while reaching the server", SqlErrorType.NETWORK_ERROR),
    ("Server refused the login attempt", SqlErrorType.CONNECTION_REFUSED),
    ('Cannot open database "Shop" requested by the login.', SqlErrorType.DATABASE_ACCESS_DENIED),
    ("Query timeout: execution exceeded 30s", SqlErrorType.QUERY_TIMEOUT),
    ("something odd happened", SqlErrorType.UNKNOWN),
]

# One message per LLM branch.
LLM_MESSAGES = [
    ("Error code: 429 - Rate limit reached", SqlErrorType.LLM_RATE_LIMIT_EXCEEDED),
    ("You exceeded your current quota", SqlErrorType.LLM_QUOTA_EXCEEDED),
    ("Error code: 401 - Incorrect API key provided", SqlErrorType.LLM_INVALID_API_KEY),
    ("503 Service Unavailable", SqlErrorType.LLM_SERVICE_UNAVAILABLE),
    ("Request timed out.", SqlErrorType.LLM_TIMEOUT),
    ("model exploded", SqlErrorType.LLM_BAD_REQUEST),
]


class TestAnalyzeError:
    """Engine error classification."""

    def test_invalid_column_extracts_name(self, analyzer):
        """Invalid column names are extracted and marked for immediate retry."""
        error = analyzer.analyze_error("Invalid column name 'CustomerName'.", "SELECT CustomerName")

        assert error.type == SqlErrorType.INVALID_COLUMN_NAME
        assert error.invalid_element == "CustomerName"
        assert error.is_recoverable is True
        assert error.recommended_strategy == RetryStrategy.IMMEDIATE_RETRY
        assert "CustomerName" in error.suggested_fix

    def test_invalid_object_extracts_table(self, analyzer):
        error = analyzer.analyze_error("Invalid object name 'dbo.Customer'.")

        assert error.type == SqlErrorType.INVALID_OBJECT_NAME
        assert error.invalid_element == "dbo.Customer"

    def test_syntax_error_with_near_token(self, analyzer):
        error = analyzer.analyze_error("Incorrect syntax near 'FORM'.")

        assert error.type == SqlErrorType.SYNTAX_ERROR
        assert error.invalid_element == "FORM"
        assert error.recommended_strategy == RetryStrategy.IMMEDIATE_RETRY

    def test_syntax_error_without_near_token(self, analyzer):
        error = analyzer.analyze_error("Incorrect syntax at end of statement.")

        assert error.type == SqlErrorType.SYNTAX_ERROR
        assert error.invalid_element is None

    def test_ambiguous_column(self, analyzer):
        error = analyzer.analyze_error("Ambiguous column name 'Id'.")

        assert error.type == SqlErrorType.AMBIGUOUS_COLUMN_NAME
        assert error.invalid_element == "Id"

    def test_undeclared_parameter(self, analyzer):
        error = analyzer.analyze_error('Must declare the scalar variable "@CustomerId".')

        assert error.type == SqlErrorType.PARAMETER_NOT_DECLARED
        assert error.invalid_element == "@CustomerId"
        assert error.is_recoverable is True

    def test_type_mismatch_is_not_recoverable(self, analyzer):
        error = analyzer.analyze_error(
            "Conversion failed when converting the varchar value 'abc' to data type int."
        )

        assert error.type == SqlErrorType.TYPE_MISMATCH
        assert error.is_recoverable is False
        assert error.recommended_strategy == RetryStrategy.NO_RETRY

    def test_permission_denied(self, analyzer):
        error = analyzer.analyze_error("The SELECT permission was denied on the object 'Orders'.")

        assert error.type == SqlErrorType.PERMISSION_DENIED
        assert error.category == ErrorCategory.CONFIGURATION
        assert error.is_recoverable is False

    def test_connection_failure_uses_backoff(self, analyzer):
        error = analyzer.analyze_error("A network-related error occurred: connection reset")

        assert error.type == SqlErrorType.CONNECTION_FAILED
        assert error.category == ErrorCategory.NETWORK
        assert error.recommended_strategy == RetryStrategy.EXPONENTIAL_BACKOFF

    def test_network_error(self, analyzer):
        error = analyzer.analyze_error("network unreachable")

        assert error.type == SqlErrorType.NETWORK_ERROR

    def test_cannot_open_database(self, analyzer):
        error = analyzer.analyze_error('Cannot open database "Shop" requested by the login.')

        assert error.type == SqlErrorType.DATABASE_ACCESS_DENIED

    def test_query_timeout(self, analyzer):
        error = analyzer.analyze_error("Query timeout: execution exceeded 30s")

        assert error.type == SqlErrorType.QUERY_TIMEOUT
        assert error.is_recoverable is False

    def test_unknown_error(self, analyzer):
        error = analyzer.analyze_error("something odd happened")

        assert error.type == SqlErrorType.UNKNOWN
        assert error.is_recoverable is False
        assert error.error_message == "something odd happened"

    def test_first_matching_recognizer_wins(self, analyzer):
        """A column error mentioning a timeout literal is still a column error."""
        error = analyzer.analyze_error("Invalid column name 'timeout_seconds'.")

        assert error.type == SqlErrorType.INVALID_COLUMN_NAME
        assert error.invalid_element == "timeout_seconds"


class TestAnalyzeLLMError:
    """LLM API error classification."""

    def test_rate_limit(self, analyzer):
        error = analyzer.analyze_llm_error(Exception("Error code: 429 - Rate limit reached"))

        assert error.type == SqlErrorType.LLM_RATE_LIMIT_EXCEEDED
        assert error.category == ErrorCategory.LLM
        assert error.recommended_strategy == RetryStrategy.WAIT_AND_RETRY
        assert error.max_retry_attempts == 5

    def test_quota_is_terminal(self, analyzer):
        error = analyzer.analyze_llm_error(Exception("You exceeded your current quota"))

        assert error.type == SqlErrorType.LLM_QUOTA_EXCEEDED
        assert error.is_recoverable is False

    def test_invalid_key(self, analyzer):
        error = analyzer.analyze_llm_error(Exception("Incorrect API key provided: invalid key"))

        assert error.type == SqlErrorType.LLM_INVALID_API_KEY
        assert error.is_recoverable is False

    def test_service_unavailable(self, analyzer):
        error = analyzer.analyze_llm_error(Exception("503 Service Unavailable"))

        assert error.type == SqlErrorType.LLM_SERVICE_UNAVAILABLE
        assert error.recommended_strategy == RetryStrategy.EXPONENTIAL_BACKOFF

    def test_timeout(self, analyzer):
        error = analyzer.analyze_llm_error(TimeoutError("Request timed out."))

        assert error.type == SqlErrorType.LLM_TIMEOUT
        assert error.recommended_strategy == RetryStrategy.IMMEDIATE_RETRY

    def test_other_errors_are_bad_requests(self, analyzer):
        error = analyzer.analyze_llm_error(ValueError("messages must not be empty"))

        assert error.type == SqlErrorType.LLM_BAD_REQUEST
        assert error.is_recoverable is False


class TestSqlErrorInvariant:
    """SqlError rejects non-recoverable errors paired with a retry strategy."""

    def test_non_recoverable_with_retry_strategy_rejected(self):
        with pytest.raises(ValidationError):
            SqlError(is_recoverable=False, recommended_strategy=RetryStrategy.IMMEDIATE_RETRY)

    def test_non_recoverable_with_no_retry_accepted(self):
        error = SqlError(is_recoverable=False, recommended_strategy=RetryStrategy.NO_RETRY)

        assert error.is_recoverable is False


class TestClassificationProperties:
    """Properties that hold for every recognizer and LLM branch."""

    @pytest.mark.parametrize("message, expected_type", ENGINE_MESSAGES)
    def test_engine_message_types(self, analyzer, message, expected_type):
        assert analyzer.analyze_error(message).type == expected_type

    @pytest.mark.parametrize("message, expected_type", LLM_MESSAGES)
    def test_llm_message_types(self, analyzer, message, expected_type):
        assert analyzer.analyze_llm_error(Exception(message)).type == expected_type

    @pytest.mark.parametrize("message, expected_type", ENGINE_MESSAGES)
    def test_engine_non_recoverable_never_retried(self, analyzer, message, expected_type):
        error = analyzer.analyze_error(message)

        if not error.is_recoverable:
            assert error.recommended_strategy == RetryStrategy.NO_RETRY

    @pytest.mark.parametrize("message, expected_type", LLM_MESSAGES)
    def test_llm_non_recoverable_never_retried(self, analyzer, message, expected_type):
        error = analyzer.analyze_llm_error(Exception(message))

        if not error.is_recoverable:
            assert error.recommended_strategy == RetryStrategy.NO_RETRY

    @pytest.mark.parametrize("message, expected_type", ENGINE_MESSAGES)
    def test_engine_classification_is_deterministic(self, analyzer, message, expected_type):
        first = analyzer.analyze_error(message, "SELECT 1")
        second = analyzer.analyze_error(message, "SELECT 1")

        assert first.model_dump(exclude={"timestamp"}) == second.model_dump(exclude={"timestamp"})

    @pytest.mark.parametrize("message, expected_type", LLM_MESSAGES)
    def test_llm_classification_is_deterministic(self, analyzer, message, expected_type):
        first = analyzer.analyze_llm_error(Exception(message))
        second = analyzer.analyze_llm_error(Exception(message))

        assert first.model_dump(exclude={"timestamp"}) == second.model_dump(exclude={"timestamp"})
