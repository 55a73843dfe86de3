"""
Pytest configuration and shared fixtures.

This module provides fixtures and configuration used across all tests.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from sqlagent.models.schema import ColumnInfo, DatabaseSchema, RelationshipInfo, TableInfo

# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """Capture sqlagent logs at DEBUG for every test."""
    caplog.set_level(logging.DEBUG)
    yield


# ============================================================================
# Environment and Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def mock_openai_api_key(monkeypatch, tmp_path):
    """
    Provide a fake OpenAI key and an isolated Chroma directory.

    Clears the settings cache before and after each test so environment
    changes made by a test never leak into the next one.
    """
    from sqlagent.config import get_settings

    get_settings.cache_clear()

    test_key = "sk-test-key-1234567890-abcdefghijklmnop"  # 20+ chars
    monkeypatch.setenv("LLM_OPENAI_API_KEY", test_key)
    monkeypatch.setenv("CHROMA_PERSIST_DIR", str(tmp_path / "chroma"))
    monkeypatch.setenv("SQLAGENT_ENV_SOURCE", "environment")
    yield test_key

    get_settings.cache_clear()


@pytest.fixture
def mock_database_url(monkeypatch, tmp_path):
    """Point DATABASE_URL at a SQLite file path under tmp_path."""
    db_url = f"sqlite:///{tmp_path / 'shop.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    yield db_url


# ============================================================================
# Mock LLM Provider
# ============================================================================


@pytest.fixture
def mock_llm_provider():
    """
    Mock LLM provider for testing agents.

    Usage:
        def test_agent(mock_llm_provider):
            mock_llm_provider.set_response("SELECT 1")
            mock_llm_provider.set_responses("not json", '{"intent": "COUNT"}')
    """
    from sqlagent.llm.models import LLMResponse, LLMUsage

    def make_response(content: str) -> LLMResponse:
        return LLMResponse(
            content=content,
            model="mock-model",
            usage=LLMUsage(prompt_tokens=1, completion_tokens=1),
            finish_reason="stop",
            provider="mock",
        )

    class MockLLMProvider:
        provider_name = "mock"

        def __init__(self):
            self.generate = AsyncMock()
            self.count_tokens = AsyncMock(return_value=100)

        def set_response(self, response: str):
            """Set the response that generate() will return."""
            self.generate.side_effect = None
            self.generate.return_value = make_response(response)

        def set_responses(self, *responses: str):
            """Return each response in turn on successive generate() calls."""
            self.generate.side_effect = [make_response(text) for text in responses]

        @property
        def requests(self):
            return [call.args[0] for call in self.generate.call_args_list]

    return MockLLMProvider()


@pytest.fixture
def llm_client(mock_llm_provider):
    """LLMClient over the mock provider with its own handler."""
    from sqlagent.llm.client import LLMClient
    from sqlagent.resilience.llm import LLMHandler

    return LLMClient(mock_llm_provider, handler=LLMHandler(wait_seconds=0))


# ============================================================================
# Schema Fixtures
# ============================================================================


@pytest.fixture
def customers_table() -> TableInfo:
    return TableInfo(
        schema="dbo",
        name="Customers",
        columns=[
            ColumnInfo(name="Id", data_type="int", is_nullable=False),
            ColumnInfo(name="Name", data_type="nvarchar", max_length=100),
            ColumnInfo(name="Email", data_type="nvarchar", max_length=255),
            ColumnInfo(name="City", data_type="nvarchar", max_length=100),
        ],
        primary_keys=["Id"],
    )


@pytest.fixture
def orders_table() -> TableInfo:
    return TableInfo(
        schema="dbo",
        name="Orders",
        columns=[
            ColumnInfo(name="Id", data_type="int", is_nullable=False),
            ColumnInfo(name="CustomerId", data_type="int", is_nullable=False),
            ColumnInfo(name="OrderDate", data_type="datetime"),
            ColumnInfo(name="TotalAmount", data_type="decimal"),
        ],
        primary_keys=["Id"],
    )


@pytest.fixture
def sample_schema(customers_table, orders_table) -> DatabaseSchema:
    """Shop schema: Customers, Orders, Products, OrderItems and their foreign keys."""
    products = TableInfo(
        schema="dbo",
        name="Products",
        columns=[
            ColumnInfo(name="Id", data_type="int", is_nullable=False),
            ColumnInfo(name="ProductName", data_type="nvarchar", max_length=200),
            ColumnInfo(name="Price", data_type="decimal"),
        ],
        primary_keys=["Id"],
    )
    order_items = TableInfo(
        schema="dbo",
        name="OrderItems",
        columns=[
            ColumnInfo(name="OrderId", data_type="int", is_nullable=False),
            ColumnInfo(name="ProductId", data_type="int", is_nullable=False),
            ColumnInfo(name="Quantity", data_type="int"),
        ],
        primary_keys=["OrderId", "ProductId"],
    )
    return DatabaseSchema(
        database_name="Shop",
        tables=[customers_table, orders_table, products, order_items],
        relationships=[
            RelationshipInfo(
                from_table="Orders", from_column="CustomerId", to_table="Customers", to_column="Id"
            ),
            RelationshipInfo(
                from_table="OrderItems", from_column="OrderId", to_table="Orders", to_column="Id"
            ),
            RelationshipInfo(
                from_table="OrderItems", from_column="ProductId", to_table="Products", to_column="Id"
            ),
        ],
    )


@pytest.fixture
def mock_introspector(sample_schema):
    """
    Mock SchemaIntrospector for the SQL Server dialect.

    Usage:
        def test_query(mock_introspector):
            mock_introspector.execute.return_value = QueryResult(...)
    """
    introspector = MagicMock()
    introspector.dialect = "sqlserver"
    introspector.scan = AsyncMock(return_value=sample_schema)
    introspector.execute = AsyncMock()
    introspector.test_connection = AsyncMock(return_value=True)
    introspector.is_transient_error = MagicMock(return_value=False)
    return introspector
