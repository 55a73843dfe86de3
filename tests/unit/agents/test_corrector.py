"""
Unit tests for SqlCorrector.
"""

from unittest.mock import AsyncMock

import pytest

from sqlagent.agents.corrector import (
    SqlCorrector,
    build_reasoning,
    find_changes,
    find_similar_columns,
)
from sqlagent.models.errors import QuotaExceededError, SqlError, SqlErrorType
from sqlagent.models.query import FilterCondition, IntentAnalysis, QueryIntent
from sqlagent.models.schema import RetrievedSchemaContext


@pytest.fixture
def context(sample_schema):
    return RetrievedSchemaContext.from_tables(
        [sample_schema.find_table("Customers"), sample_schema.find_table("Orders")],
        sample_schema.relationships[:1],
    )


@pytest.fixture
def intent():
    return IntentAnalysis(
        intent=QueryIntent.LIST,
        target="Customers",
        filters=[FilterCondition(field="Customers.City", value="Hanoi")],
    )


@pytest.fixture
def corrector(llm_client):
    return SqlCorrector(llm_client)


class TestHelpers:
    def test_similar_columns_by_containment(self, context):
        assert find_similar_columns("CustName", context) == ["Customers.Name"]

    def test_similar_columns_capped_at_three(self, context):
        assert len(find_similar_columns("d", context)) == 3

    def test_similar_columns_none(self, context):
        assert find_similar_columns("Zzz", context) == []

    def test_find_changes(self):
        assert find_changes("SELECT CustName FROM Customers", "SELECT Name FROM Customers") == [
            "'CustName' -> 'Name'"
        ]

    def test_reasoning_lists_changes(self):
        error = SqlError(
            type=SqlErrorType.INVALID_COLUMN_NAME,
            invalid_element="CustName",
            suggested_fix="Use a listed column.",
            recommended_strategy="ImmediateRetry",
        )

        reasoning = build_reasoning(error, "SELECT CustName FROM C", "SELECT Name FROM C")

        assert reasoning.splitlines() == [
            "Error: InvalidColumnName",
            "Invalid element: 'CustName'",
            "Fix: Use a listed column.",
            "Changes made:",
            "  - 'CustName' -> 'Name'",
        ]


class TestSqlCorrector:
    """Correction attempts."""

    @pytest.mark.asyncio
    async def test_successful_correction(self, corrector, mock_llm_provider, context, intent):
        mock_llm_provider.set_response("```sql\nSELECT Name FROM Customers WHERE City = 'Hanoi';\n```")

        attempt = await corrector.correct(
            "SELECT CustName FROM Customers WHERE City = 'Hanoi'",
            "Invalid column name 'CustName'.",
            context,
            intent,
            attempt_number=1,
        )

        assert attempt.success is True
        assert attempt.attempt_number == 1
        assert attempt.corrected_sql == "SELECT Name FROM Customers WHERE City = 'Hanoi'"
        assert attempt.error.type == SqlErrorType.INVALID_COLUMN_NAME
        assert "Changes made:" in attempt.reasoning

    @pytest.mark.asyncio
    async def test_prompt_carries_error_schema_and_filter(self, corrector, mock_llm_provider, context, intent):
        mock_llm_provider.set_response("SELECT Name FROM Customers")

        await corrector.correct(
            "SELECT customer_id FROM Orders",
            "Invalid column name 'customer_id'.",
            context,
            intent,
            attempt_number=2,
        )

        user = mock_llm_provider.requests[0].messages[1].content
        assert "Failed SQL:\nSELECT customer_id FROM Orders" in user
        assert "Problem element: customer_id" in user
        assert "customer_id: Customers.Id, Orders.Id, Orders.CustomerId" in user
        assert "Keep this filter from the original request: Customers.City = Hanoi" in user
        assert "Table dbo.Orders: Id, CustomerId, OrderDate, TotalAmount" in user

    @pytest.mark.asyncio
    async def test_non_recoverable_error_skips_llm(self, corrector, mock_llm_provider, context, intent):
        attempt = await corrector.correct(
            "SELECT * FROM Orders",
            "The SELECT permission was denied on the object 'Orders'.",
            context,
            intent,
            attempt_number=1,
        )

        assert attempt.success is False
        assert attempt.corrected_sql == ""
        mock_llm_provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_reply_is_unsuccessful(self, corrector, mock_llm_provider, context, intent):
        mock_llm_provider.set_response("```sql\n```")

        attempt = await corrector.correct(
            "SELECT Nme FROM Customers", "Invalid column name 'Nme'.", context, intent, attempt_number=1
        )

        assert attempt.success is False
        assert attempt.reasoning == "LLM returned no SQL."

    @pytest.mark.asyncio
    async def test_unexpected_failure_becomes_unsuccessful_attempt(self, corrector, context, intent):
        corrector.llm.complete = AsyncMock(side_effect=RuntimeError("boom"))

        attempt = await corrector.correct(
            "SELECT Nme FROM Customers", "Invalid column name 'Nme'.", context, intent, attempt_number=1
        )

        assert attempt.success is False
        assert "boom" in attempt.reasoning

    @pytest.mark.asyncio
    async def test_quota_failure_propagates(self, corrector, context, intent):
        corrector.llm.complete = AsyncMock(side_effect=QuotaExceededError("quota exhausted"))

        with pytest.raises(QuotaExceededError):
            await corrector.correct(
                "SELECT Nme FROM Customers", "Invalid column name 'Nme'.", context, intent, attempt_number=1
            )
