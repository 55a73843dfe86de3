"""
Unit tests for QueryOrchestrator.

The real agents run against a mock LLM provider and a mock introspector;
retrieval and indexing are mocked. Scenarios:
- Happy path (COUNT)
- Self-correction after an invalid column
- Unsafe SQL rejected before execution
- Clarification requests
- Retrieval miss and unusable index -> fallback context
- Schema scan failures
- Schema caching and cache clearing
- Unexpected errors inside a step
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from sqlagent.agents.corrector import SqlCorrector
from sqlagent.agents.executor import SqlExecutor
from sqlagent.agents.generator import SqlGenerator
from sqlagent.agents.intent import IntentExtractor
from sqlagent.connectors.base import ConnectionError as ConnectorConnectionError
from sqlagent.connectors.base import QueryError, QueryResult, SchemaError
from sqlagent.models.schema import RetrievedSchemaContext
from sqlagent.pipeline.orchestrator import (
    CONNECTION_FAILED_MESSAGE,
    PERMISSION_DENIED_MESSAGE,
    UNSAFE_SQL_MESSAGE,
    QueryOrchestrator,
)
from sqlagent.resilience.connection import ConnectionHandler

COUNT_INTENT = '{"intent": "COUNT", "target": "Customers", "needsClarification": false}'
LIST_INTENT = '{"intent": "LIST", "target": "Customers", "needsClarification": false}'

HAPPY_STEPS = [
    "Normalize question",
    "Resolve schema index namespace",
    "Scan database schema",
    "Index schema into vector database",
    "Retrieve relevant schema",
    "Analyze intent",
    "Generate SQL",
    "Validate SQL",
    "Execute SQL with self-correction",
    "Interpret results",
]


def query_result(rows: list[dict]) -> QueryResult:
    return QueryResult(rows=rows, row_count=len(rows), columns=list(rows[0].keys()) if rows else [], execution_time_ms=2.0)


@pytest.fixture
def shared_index():
    return SimpleNamespace(collection_name="schema_default")


@pytest.fixture
def retriever(shared_index, sample_schema):
    r = MagicMock()
    r.index = shared_index
    r.retrieve = AsyncMock(
        return_value=RetrievedSchemaContext.from_tables([sample_schema.find_table("Customers")], [])
    )
    return r


@pytest.fixture
def indexer(shared_index):
    i = MagicMock()
    i.index = shared_index
    i.is_indexed = AsyncMock(return_value=False)
    i.index_schema = AsyncMock(return_value=21)
    i.clear_index = AsyncMock()
    return i


@pytest.fixture
def build_orchestrator(llm_client, mock_introspector, retriever, indexer):
    def _build(**kwargs) -> QueryOrchestrator:
        connection_handler = ConnectionHandler()
        connection_handler._sleep = AsyncMock()
        executor = SqlExecutor(mock_introspector, connection_handler=connection_handler, command_timeout=5)
        executor.sql_handler._sleep = AsyncMock()
        options = {
            "introspector": mock_introspector,
            "intent_extractor": IntentExtractor(llm_client),
            "generator": SqlGenerator(llm_client, default_row_limit=100),
            "corrector": SqlCorrector(llm_client),
            "executor": executor,
            "retriever": retriever,
            "indexer": indexer,
            "connection_handler": connection_handler,
            "max_correction_attempts": 3,
        }
        options.update(kwargs)
        return QueryOrchestrator(**options)

    return _build


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_count_question(self, build_orchestrator, mock_llm_provider, mock_introspector, indexer):
        mock_llm_provider.set_responses(COUNT_INTENT, "SELECT COUNT(*) AS Total FROM Customers")
        mock_introspector.execute.return_value = query_result([{"Total": 42}])
        orchestrator = build_orchestrator()

        response = await orchestrator.process_query("How many customers are there?")

        assert response.success is True
        assert response.answer == "Count: 42 records."
        assert response.sql_generated == "SELECT COUNT(*) AS Total FROM Customers"
        assert response.execution_result.rows == [{"Total": 42}]
        assert response.was_corrected is False
        assert response.processing_steps == HAPPY_STEPS
        indexer.index_schema.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_row_cap_added_before_execution(self, build_orchestrator, mock_llm_provider, mock_introspector):
        mock_llm_provider.set_responses(LIST_INTENT, "SELECT Name FROM Customers")
        mock_introspector.execute.return_value = query_result([{"Name": "An"}, {"Name": "Binh"}])
        orchestrator = build_orchestrator()

        response = await orchestrator.process_query("List customers")

        assert response.answer == "Found 2 results."
        assert response.sql_generated == "SELECT TOP 100 Name FROM Customers"
        mock_introspector.execute.assert_awaited_once_with("SELECT TOP 100 Name FROM Customers", timeout=5)

    @pytest.mark.asyncio
    async def test_no_rows(self, build_orchestrator, mock_llm_provider, mock_introspector):
        mock_llm_provider.set_responses(LIST_INTENT, "SELECT TOP 10 Name FROM Customers WHERE 1 = 0")
        mock_introspector.execute.return_value = query_result([])

        response = await build_orchestrator().process_query("List nobody")

        assert response.success is True
        assert response.answer == "No results found."


class TestSelfCorrection:
    @pytest.mark.asyncio
    async def test_invalid_column_corrected(self, build_orchestrator, mock_llm_provider, mock_introspector):
        mock_llm_provider.set_responses(LIST_INTENT, "SELECT Nme FROM Customers", "SELECT Name FROM Customers")
        mock_introspector.execute.side_effect = [
            QueryError("Invalid column name 'Nme'."),
            query_result([{"Name": "An"}, {"Name": "Binh"}]),
        ]

        response = await build_orchestrator().process_query("List customer names")

        assert response.success is True
        assert response.answer == "SQL was auto-corrected 1 time(s).\nFound 2 results."
        assert response.sql_generated == "SELECT Name FROM Customers"
        assert response.was_corrected is True
        assert response.correction_attempts == 1
        assert response.correction_history[0].original_sql == "SELECT TOP 100 Nme FROM Customers"

    @pytest.mark.asyncio
    async def test_unrecoverable_execution_failure(self, build_orchestrator, mock_llm_provider, mock_introspector):
        mock_llm_provider.set_responses(COUNT_INTENT, "SELECT COUNT(*) FROM Customers")
        mock_introspector.execute.side_effect = QueryError(
            "The SELECT permission was denied on the object 'Customers'."
        )

        response = await build_orchestrator().process_query("How many customers?")

        assert response.success is False
        assert response.error_message == "The SELECT permission was denied on the object 'Customers'."
        assert response.sql_generated == "SELECT COUNT(*) FROM Customers"
        assert response.correction_attempts == 1
        assert mock_introspector.execute.await_count == 1
        assert mock_llm_provider.generate.await_count == 2


class TestGuards:
    @pytest.mark.asyncio
    async def test_unsafe_sql_never_executed(self, build_orchestrator, mock_llm_provider, mock_introspector):
        mock_llm_provider.set_responses(LIST_INTENT, "DELETE FROM Customers")

        response = await build_orchestrator().process_query("Remove all customers")

        assert response.success is False
        assert response.error_message == UNSAFE_SQL_MESSAGE
        assert response.sql_generated == "DELETE FROM Customers"
        assert response.processing_steps[-1] == "Validate SQL"
        mock_introspector.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clarification_ends_run(self, build_orchestrator, mock_llm_provider, mock_introspector):
        mock_llm_provider.set_response(
            '{"intent": "UNKNOWN", "target": "", "needsClarification": true, '
            '"clarificationQuestion": "Which customers do you mean?"}'
        )

        response = await build_orchestrator().process_query("Show me the stuff")

        assert response.success is False
        assert response.answer == "Which customers do you mean?"
        assert response.sql_generated is None
        assert mock_llm_provider.generate.await_count == 1
        mock_introspector.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clarification_without_question_uses_default(self, build_orchestrator, mock_llm_provider):
        mock_llm_provider.set_response('{"intent": "UNKNOWN", "needsClarification": true}')

        response = await build_orchestrator().process_query("Hmm?")

        assert response.answer == "Question is unclear."


class TestFallback:
    @pytest.mark.asyncio
    async def test_retrieval_miss_uses_target_and_neighbours(
        self, build_orchestrator, mock_llm_provider, mock_introspector, retriever
    ):
        retriever.retrieve.return_value = RetrievedSchemaContext()
        mock_llm_provider.set_responses(
            '{"intent": "COUNT", "target": "Orders"}', "SELECT COUNT(*) AS N FROM Orders"
        )
        mock_introspector.execute.return_value = query_result([{"N": 7}])

        response = await build_orchestrator().process_query("How many orders?")

        assert response.success is True
        assert "Analyze intent with full schema" in response.processing_steps
        assert "Build fallback schema context" in response.processing_steps
        assert "Analyze intent" not in response.processing_steps

        intent_prompt = mock_llm_provider.requests[0].messages[1].content
        for table in ("Customers", "Orders", "Products", "OrderItems"):
            assert f"- {table}" in intent_prompt

        sql_prompt = mock_llm_provider.requests[1].messages[1].content
        assert "Table dbo.Orders:" in sql_prompt
        assert "Table dbo.Customers:" in sql_prompt
        assert "Table dbo.OrderItems:" in sql_prompt
        assert "Table dbo.Products:" not in sql_prompt

    @pytest.mark.asyncio
    async def test_index_failure_skips_retrieval(
        self, build_orchestrator, mock_llm_provider, mock_introspector, retriever, indexer
    ):
        indexer.is_indexed.side_effect = Exception("vector store unavailable")
        mock_llm_provider.set_responses(COUNT_INTENT, "SELECT COUNT(*) FROM Customers")
        mock_introspector.execute.return_value = query_result([{"n": 3}])

        response = await build_orchestrator().process_query("How many customers?")

        assert response.success is True
        assert response.answer == "Count: 3 records."
        retriever.retrieve.assert_not_awaited()
        assert "Build fallback schema context" in response.processing_steps


class TestSchemaScan:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, expected",
        [
            (ConnectorConnectionError("connection refused"), CONNECTION_FAILED_MESSAGE),
            (SchemaError("permission denied for relation pg_class"), PERMISSION_DENIED_MESSAGE),
            (SchemaError("catalog exploded"), "Failed to scan database schema: catalog exploded"),
        ],
    )
    async def test_scan_failures(self, build_orchestrator, mock_llm_provider, mock_introspector, error, expected):
        mock_introspector.scan.side_effect = error

        response = await build_orchestrator().process_query("How many customers?")

        assert response.success is False
        assert response.error_message == expected
        assert response.processing_steps[-1] == "Scan database schema"
        mock_llm_provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_schema_cached_between_questions(
        self, build_orchestrator, mock_llm_provider, mock_introspector, indexer
    ):
        mock_llm_provider.set_responses(
            COUNT_INTENT, "SELECT COUNT(*) FROM Customers", COUNT_INTENT, "SELECT COUNT(*) FROM Customers"
        )
        mock_introspector.execute.return_value = query_result([{"n": 1}])
        orchestrator = build_orchestrator()

        await orchestrator.process_query("How many customers?")
        second = await orchestrator.process_query("How many customers?")

        assert mock_introspector.scan.await_count == 1
        assert indexer.index_schema.await_count == 1
        assert "Use cached schema" in second.processing_steps
        assert "Index schema into vector database" not in second.processing_steps

    @pytest.mark.asyncio
    async def test_clear_schema_cache_forces_rescan(self, build_orchestrator, mock_llm_provider, mock_introspector):
        mock_llm_provider.set_responses(
            COUNT_INTENT, "SELECT COUNT(*) FROM Customers", COUNT_INTENT, "SELECT COUNT(*) FROM Customers"
        )
        mock_introspector.execute.return_value = query_result([{"n": 1}])
        orchestrator = build_orchestrator()

        await orchestrator.process_query("How many customers?")
        await orchestrator.clear_schema_cache()
        second = await orchestrator.process_query("How many customers?")

        assert mock_introspector.scan.await_count == 2
        assert "Scan database schema" in second.processing_steps

    @pytest.mark.asyncio
    async def test_existing_index_not_rewritten(self, build_orchestrator, mock_llm_provider, mock_introspector, indexer):
        indexer.is_indexed.return_value = True
        mock_llm_provider.set_responses(COUNT_INTENT, "SELECT COUNT(*) FROM Customers")
        mock_introspector.execute.return_value = query_result([{"n": 1}])

        await build_orchestrator().process_query("How many customers?")

        indexer.index_schema.assert_not_awaited()


class TestErrors:
    @pytest.mark.asyncio
    async def test_empty_question(self, build_orchestrator, mock_introspector):
        response = await build_orchestrator().process_query("   ")

        assert response.success is False
        assert response.error_message == "Error: Question cannot be empty"
        assert response.processing_steps == ["Normalize question"]
        mock_introspector.scan.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_llm_failure_inside_step(self, build_orchestrator, mock_llm_provider):
        mock_llm_provider.generate.side_effect = Exception("model exploded")

        response = await build_orchestrator().process_query("How many customers?")

        assert response.success is False
        assert response.error_message == "Error: model exploded"
        assert response.processing_steps[-1] == "Analyze intent"


class TestNamespaceAndIndex:
    @pytest.mark.asyncio
    async def test_collection_named_after_database(
        self, build_orchestrator, mock_llm_provider, mock_introspector, shared_index
    ):
        mock_llm_provider.set_responses(COUNT_INTENT, "SELECT COUNT(*) FROM Customers")
        mock_introspector.execute.return_value = query_result([{"n": 1}])

        await build_orchestrator(database_url="sqlite:///data/shop.db").process_query("How many customers?")

        assert shared_index.collection_name == "schema_shop"

    @pytest.mark.asyncio
    async def test_default_namespace_without_url(self, build_orchestrator, shared_index):
        shared_index.collection_name = "schema_other"

        await build_orchestrator().process_query("   ")

        assert shared_index.collection_name == "schema_default"

    @pytest.mark.asyncio
    async def test_rebuild_index(self, build_orchestrator, mock_introspector, indexer, sample_schema):
        orchestrator = build_orchestrator()

        written = await orchestrator.rebuild_index()

        assert written == 21
        mock_introspector.scan.assert_awaited_once()
        indexer.clear_index.assert_awaited_once()
        indexer.index_schema.assert_awaited_once_with(sample_schema)
        assert orchestrator.cache.get() is sample_schema
        assert orchestrator.cache.retrieval_available is True


class TestFromSettings:
    def test_wires_sqlite_target(self, tmp_path):
        orchestrator = QueryOrchestrator.from_settings(database_url=f"sqlite:///{tmp_path / 'shop.db'}")

        assert orchestrator.introspector.dialect == "sqlite"
        assert orchestrator.generator.dialect == "sqlite"
        assert orchestrator.retriever.index is orchestrator.indexer.index
        assert orchestrator.connection_handler is orchestrator.executor.connection_handler
        assert orchestrator.correction_loop.max_attempts == 3

    def test_requires_database_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ValueError, match="DATABASE_URL"):
            QueryOrchestrator.from_settings()
