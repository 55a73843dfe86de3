"""
Query Orchestrator

LangGraph state machine that answers one question at a time:

    normalize -> schema -> retrieve -+-> intent ----+-> generate -> validate -> execute -> answer
                                     +-> fallback --+

- normalize: clean the question and pick the schema index namespace
- schema: scan once per session (cached) and index it; indexing failures
  are non-fatal and switch the session to full-schema operation
- retrieve: similarity search; a miss routes to the fallback branch
- fallback: intent over every table name, then the target table plus its
  one-hop foreign-key neighbours as context (intent is not re-extracted)
- validate: safety check, then the default row cap
- execute: bounded self-correction loop

Any node may end the run early by placing a response in the state
(clarification, unsafe SQL, scan failure). An exception inside a node is
recorded as the run's error and ends the run; ``process_query`` turns
either into an AgentResponse. Cancellation always propagates.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypedDict

from langgraph.graph import END, StateGraph

from sqlagent.agents.corrector import SqlCorrector
from sqlagent.agents.executor import SqlExecutor
from sqlagent.agents.generator import SqlGenerator
from sqlagent.agents.intent import IntentExtractor
from sqlagent.agents.normalizer import QuestionNormalizer
from sqlagent.config import Settings, get_settings
from sqlagent.connectors.base import SchemaIntrospector
from sqlagent.connectors.factory import (
    create_introspector,
    database_namespace,
    effective_database_type,
)
from sqlagent.knowledge.embeddings import create_embedding_provider
from sqlagent.knowledge.indexer import SchemaIndexer
from sqlagent.knowledge.retriever import SchemaRetriever, related_relationships
from sqlagent.knowledge.vectors import SchemaVectorIndex, collection_name_for
from sqlagent.llm.client import LLMClient
from sqlagent.llm.factory import LLMProviderFactory
from sqlagent.models.errors import (
    AgentError,
    DatabaseConnectionError,
    DatabasePermissionError,
    SchemaIndexError,
    VectorStoreError,
)
from sqlagent.models.query import (
    AgentResponse,
    IntentAnalysis,
    NormalizedQuestion,
    QueryIntent,
    SqlExecutionResult,
)
from sqlagent.models.schema import DatabaseSchema, RetrievedSchemaContext, last_segment
from sqlagent.pipeline.cache import SchemaCache
from sqlagent.pipeline.correction import CorrectionOutcome, SelfCorrectionLoop
from sqlagent.prompts.loader import PromptLoader
from sqlagent.resilience.analyzer import SqlErrorAnalyzer
from sqlagent.resilience.connection import ConnectionHandler
from sqlagent.resilience.llm import LLMHandler
from sqlagent.resilience.sql import SqlHandler
from sqlagent.resilience.vector_store import VectorStoreHandler

logger = logging.getLogger(__name__)

CONNECTION_FAILED_MESSAGE = "Cannot connect to database. Please check your connection string."
PERMISSION_DENIED_MESSAGE = (
    "Insufficient database permissions. Please grant SELECT on the catalog views."
)
UNSAFE_SQL_MESSAGE = "Unsafe SQL detected"
UNCLEAR_QUESTION_MESSAGE = "Question is unclear."


# ============================================================================
# Pipeline State Schema
# ============================================================================


class PipelineState(TypedDict, total=False):
    """State carried through the graph for one question."""

    # Input
    question: str

    # Intermediate outputs
    normalized: NormalizedQuestion | None
    schema: DatabaseSchema | None
    context: RetrievedSchemaContext | None
    intent: IntentAnalysis | None
    sql: str | None
    correction: CorrectionOutcome | None

    # Pipeline metadata
    steps: list[str]
    response: AgentResponse | None
    error: str | None


# ============================================================================
# Helpers
# ============================================================================


def build_fallback_context(
    target: str,
    schema: DatabaseSchema,
    max_tables: int = 10,
) -> RetrievedSchemaContext:
    """
    Context around ``target``: the table itself plus tables one foreign key away.

    At most ``max_tables`` tables in total. When the target is not a known
    table, the first ``max_tables`` tables of the schema are used instead.
    """
    table = schema.find_table(target) if target else None
    if table is None:
        logger.warning(
            f"Fallback target '{target}' not found, using first {max_tables} tables",
            extra={"tables": len(schema.tables)},
        )
        tables = schema.tables[:max_tables]
    else:
        key = last_segment(table.name)
        tables = [table]
        for rel in schema.relationships:
            if len(tables) >= max_tables:
                break
            if last_segment(rel.from_table) == key:
                other = schema.find_table(rel.to_table)
            elif last_segment(rel.to_table) == key:
                other = schema.find_table(rel.from_table)
            else:
                continue
            if other is not None and other not in tables:
                tables.append(other)

    return RetrievedSchemaContext.from_tables(
        tables, related_relationships(tables, schema.relationships)
    )


def format_answer(intent: IntentAnalysis, result: SqlExecutionResult, corrections: int = 0) -> str:
    """Natural-language summary of a successful execution."""
    answer = f"SQL was auto-corrected {corrections} time(s).\n" if corrections else ""
    if result.row_count == 0:
        return answer + "No results found."

    count = result.row_count
    if intent.intent == QueryIntent.COUNT:
        first_row = result.rows[0]
        value = next(iter(first_row.values())) if first_row else count
        return answer + f"Count: {value} records."
    if intent.intent == QueryIntent.LIST:
        return answer + f"Found {count} results."
    if intent.intent == QueryIntent.SCHEMA and intent.target.upper() == "TABLES":
        return answer + f"Database contains {count} tables."
    if intent.intent == QueryIntent.AGGREGATE:
        return answer + f"Analysis result: {count} groups."
    if intent.intent == QueryIntent.DETAIL:
        return answer + f"Detail info: {count} records."
    return answer + f"Query successful, returned {count} results."


# ============================================================================
# Query Orchestrator
# ============================================================================


class QueryOrchestrator:
    """
    Question -> AgentResponse pipeline.

    Usage:
        orchestrator = QueryOrchestrator.from_settings()
        response = await orchestrator.process_query("How many customers are there?")
        print(response.answer, response.sql_generated)
    """

    def __init__(
        self,
        introspector: SchemaIntrospector,
        intent_extractor: IntentExtractor,
        generator: SqlGenerator,
        corrector: SqlCorrector,
        executor: SqlExecutor,
        retriever: SchemaRetriever,
        indexer: SchemaIndexer,
        normalizer: QuestionNormalizer | None = None,
        connection_handler: ConnectionHandler | None = None,
        cache: SchemaCache | None = None,
        database_url: str | None = None,
        database_type: str | None = None,
        collection_prefix: str = "schema",
        default_namespace: str = "default",
        max_correction_attempts: int = 3,
        max_context_tables: int = 10,
    ):
        self.introspector = introspector
        self.intent_extractor = intent_extractor
        self.generator = generator
        self.corrector = corrector
        self.executor = executor
        self.retriever = retriever
        self.indexer = indexer
        self.normalizer = normalizer or QuestionNormalizer()
        self.connection_handler = connection_handler or executor.connection_handler
        self.cache = cache or SchemaCache()
        self.database_url = database_url
        self.database_type = database_type
        self.collection_prefix = collection_prefix
        self.default_namespace = default_namespace
        self.max_context_tables = max_context_tables
        self.correction_loop = SelfCorrectionLoop(
            executor=executor,
            corrector=corrector,
            max_attempts=max_correction_attempts,
        )

        self.graph = self._build_graph()
        logger.info(
            "QueryOrchestrator initialized",
            extra={"dialect": introspector.dialect, "max_attempts": max_correction_attempts},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        database_url: str | None = None,
    ) -> "QueryOrchestrator":
        """Wire every collaborator from configuration."""
        settings = settings or get_settings()
        url = database_url or settings.database.url
        if not url:
            raise ValueError("DATABASE_URL must be set or provided to create an orchestrator.")

        introspector = create_introspector(
            database_url=url,
            database_type=effective_database_type(url, settings.database.db_type),
            timeout=settings.database.command_timeout,
        )
        dialect = introspector.dialect

        analyzer = SqlErrorAnalyzer()
        llm_handler = LLMHandler(
            analyzer=analyzer,
            rate_limit_retry_after=settings.llm.rate_limit_cooldown,
            wait_seconds=settings.resilience.wait_and_retry_seconds,
        )
        connection_handler = ConnectionHandler(
            analyzer=analyzer,
            failure_threshold=settings.resilience.circuit_failure_threshold,
            reset_seconds=settings.resilience.circuit_reset_seconds,
            wait_seconds=settings.resilience.wait_and_retry_seconds,
        )
        vector_handler = VectorStoreHandler(
            analyzer=analyzer, wait_seconds=settings.resilience.wait_and_retry_seconds
        )

        def client_for(agent: str) -> LLMClient:
            provider = LLMProviderFactory.create_agent_provider(agent, settings.llm)
            return LLMClient(provider, handler=llm_handler)

        prompts = PromptLoader()
        embedder = create_embedding_provider(settings.embeddings, settings.llm)
        index = SchemaVectorIndex(
            persist_directory=settings.chroma.persist_dir,
            collection_name=collection_name_for(
                settings.chroma.collection_prefix, settings.chroma.default_namespace
            ),
        )

        return cls(
            introspector=introspector,
            intent_extractor=IntentExtractor(client_for("intent"), prompts=prompts, dialect=dialect),
            generator=SqlGenerator(
                client_for("sql"),
                prompts=prompts,
                dialect=dialect,
                default_row_limit=settings.database.default_row_limit,
            ),
            corrector=SqlCorrector(
                client_for("corrector"), analyzer=analyzer, prompts=prompts, dialect=dialect
            ),
            executor=SqlExecutor(
                introspector,
                sql_handler=SqlHandler(
                    analyzer=analyzer,
                    wait_seconds=settings.resilience.wait_and_retry_seconds,
                    is_transient=introspector.is_transient_error,
                    max_retry_attempts=settings.database.max_retry_attempts,
                ),
                connection_handler=connection_handler,
                command_timeout=settings.database.command_timeout,
            ),
            retriever=SchemaRetriever(
                embedder,
                index,
                handler=vector_handler,
                top_k=settings.retrieval.top_k,
                min_score=settings.retrieval.min_score,
                max_context_tables=settings.retrieval.max_context_tables,
            ),
            indexer=SchemaIndexer(
                embedder,
                index,
                handler=vector_handler,
                batch_size=settings.retrieval.index_batch_size,
            ),
            connection_handler=connection_handler,
            database_url=url,
            database_type=dialect,
            collection_prefix=settings.chroma.collection_prefix,
            default_namespace=settings.chroma.default_namespace,
            max_correction_attempts=settings.resilience.max_self_correction_attempts,
            max_context_tables=settings.retrieval.max_context_tables,
        )

    # ========================================================================
    # Public API
    # ========================================================================

    async def process_query(self, question: str) -> AgentResponse:
        """
        Answer one question. Never raises for pipeline failures.

        Raises:
            asyncio.CancelledError: The caller cancelled the question
        """
        steps: list[str] = []
        initial_state: PipelineState = {
            "question": question,
            "normalized": None,
            "schema": None,
            "context": None,
            "intent": None,
            "sql": None,
            "correction": None,
            "steps": steps,
            "response": None,
            "error": None,
        }

        logger.info(f"Processing question: {question[:100]}")
        start_time = time.perf_counter()
        try:
            final_state = await self.graph.ainvoke(initial_state)
        except Exception as e:
            logger.error(f"Error processing query: {e}", exc_info=True)
            return AgentResponse(
                success=False,
                error_message=f"Error: {e}",
                processing_steps=list(steps),
            )

        response = self._build_response(final_state)
        logger.info(
            f"Question processed in {(time.perf_counter() - start_time) * 1000:.1f}ms",
            extra={"success": response.success, "corrections": response.correction_attempts},
        )
        return response

    async def clear_schema_cache(self) -> None:
        """Forget the scanned schema; the next question re-scans and re-indexes."""
        await self.cache.clear()

    async def rebuild_index(self) -> int:
        """
        Re-scan the database and rebuild its schema index from scratch.

        Returns:
            Number of schema documents written

        Raises:
            AgentError: Scan or indexing failed
        """
        self._use_namespace(self._resolve_namespace())
        await self.cache.clear()
        async with self.cache:
            schema = await self.connection_handler.call_once(self.introspector.scan)
            self.cache.set(schema)
            await self.indexer.clear_index()
            written = await self.indexer.index_schema(schema)
            self.cache.mark_indexed(True)
        return written

    # ========================================================================
    # Graph
    # ========================================================================

    def _build_graph(self):
        workflow = StateGraph(PipelineState)

        workflow.add_node("normalize", self._guarded(self._run_normalize))
        workflow.add_node("schema", self._guarded(self._run_schema))
        workflow.add_node("retrieve", self._guarded(self._run_retrieve))
        workflow.add_node("fallback", self._guarded(self._run_fallback))
        workflow.add_node("intent", self._guarded(self._run_intent))
        workflow.add_node("generate", self._guarded(self._run_generate))
        workflow.add_node("validate", self._guarded(self._run_validate))
        workflow.add_node("execute", self._guarded(self._run_execute))
        workflow.add_node("answer", self._guarded(self._run_answer))

        workflow.set_entry_point("normalize")

        for node, following in (
            ("normalize", "schema"),
            ("schema", "retrieve"),
            ("fallback", "generate"),
            ("intent", "generate"),
            ("generate", "validate"),
            ("validate", "execute"),
            ("execute", "answer"),
        ):
            workflow.add_conditional_edges(
                node, self._should_continue, {"continue": following, "end": END}
            )

        workflow.add_conditional_edges(
            "retrieve",
            self._route_after_retrieval,
            {"fallback": "fallback", "intent": "intent", "end": END},
        )
        workflow.add_edge("answer", END)

        return workflow.compile()

    def _guarded(
        self, node: Callable[[PipelineState], Awaitable[PipelineState]]
    ) -> Callable[[PipelineState], Awaitable[PipelineState]]:
        async def run(state: PipelineState) -> PipelineState:
            try:
                return await node(state)
            except Exception as e:
                logger.error(
                    f"Pipeline step {node.__name__} failed: {e}",
                    exc_info=True,
                    extra={"error_type": type(e).__name__},
                )
                state["error"] = str(e)
                return state

        return run

    # ========================================================================
    # Nodes
    # ========================================================================

    async def _run_normalize(self, state: PipelineState) -> PipelineState:
        self._mark(state, "Normalize question")
        state["normalized"] = self.normalizer.normalize(state["question"])

        self._mark(state, "Resolve schema index namespace")
        self._use_namespace(self._resolve_namespace())
        return state

    async def _run_schema(self, state: PipelineState) -> PipelineState:
        async with self.cache:
            schema = self.cache.get()
            if schema is None:
                self._mark(state, "Scan database schema")
                try:
                    schema = await self.connection_handler.call_once(self.introspector.scan)
                except DatabaseConnectionError as e:
                    logger.error(f"Cannot connect to database: {e}")
                    return self._stop(state, error_message=CONNECTION_FAILED_MESSAGE)
                except DatabasePermissionError as e:
                    logger.error(f"Insufficient database permissions: {e}")
                    return self._stop(state, error_message=PERMISSION_DENIED_MESSAGE)
                except AgentError as e:
                    logger.error(f"Failed to scan database schema: {e}")
                    return self._stop(
                        state, error_message=f"Failed to scan database schema: {e.message}"
                    )
                self.cache.set(schema)
            else:
                self._mark(state, "Use cached schema")
                logger.debug("Using cached schema")

            if not self.cache.indexed:
                self._mark(state, "Index schema into vector database")
                self.cache.mark_indexed(await self._try_index(schema))

        state["schema"] = schema
        return state

    async def _run_retrieve(self, state: PipelineState) -> PipelineState:
        self._mark(state, "Retrieve relevant schema")
        if not self.cache.retrieval_available:
            logger.info("Schema index unavailable, using full schema")
            state["context"] = RetrievedSchemaContext()
            return state

        try:
            context = await self.retriever.retrieve(
                state["normalized"].normalized_text, state["schema"]
            )
        except (VectorStoreError, SchemaIndexError) as e:
            logger.warning(f"Retrieval failed, using full schema: {e}")
            context = RetrievedSchemaContext()

        logger.debug(
            f"Retrieved {len(context.relevant_tables)} tables, "
            f"{len(context.relevant_relationships)} relationships"
        )
        state["context"] = context
        return state

    async def _run_fallback(self, state: PipelineState) -> PipelineState:
        self._mark(state, "Analyze intent with full schema")
        logger.warning("Retrieval found no tables, falling back to full schema")

        schema = state["schema"]
        intent = await self.intent_extractor.extract(
            state["normalized"].normalized_text, schema.table_names
        )
        state["intent"] = intent
        if self._needs_clarification(state, intent):
            return state

        self._mark(state, "Build fallback schema context")
        context = build_fallback_context(intent.target, schema, self.max_context_tables)
        logger.info(
            f"Fallback schema: {len(context.relevant_tables)} tables",
            extra={"target": intent.target, "tables": context.table_names},
        )
        state["context"] = context
        return state

    async def _run_intent(self, state: PipelineState) -> PipelineState:
        self._mark(state, "Analyze intent")
        intent = await self.intent_extractor.extract(
            state["normalized"].normalized_text, state["context"].table_names
        )
        state["intent"] = intent
        self._needs_clarification(state, intent)
        return state

    async def _run_generate(self, state: PipelineState) -> PipelineState:
        self._mark(state, "Generate SQL")
        state["sql"] = await self.generator.generate(
            state["normalized"].normalized_text, state["intent"], state["context"]
        )
        return state

    async def _run_validate(self, state: PipelineState) -> PipelineState:
        self._mark(state, "Validate SQL")
        sql = state["sql"]
        if not self.generator.validate_sql(sql):
            logger.warning("Unsafe SQL rejected before execution", extra={"sql": sql})
            return self._stop(state, error_message=UNSAFE_SQL_MESSAGE, sql_generated=sql)

        state["sql"] = self.generator.ensure_limit(sql)
        return state

    async def _run_execute(self, state: PipelineState) -> PipelineState:
        self._mark(state, "Execute SQL with self-correction")
        outcome = await self.correction_loop.run(state["sql"], state["context"], state["intent"])
        state["correction"] = outcome
        state["sql"] = outcome.sql

        if not outcome.result.success:
            return self._stop(
                state,
                error_message=outcome.result.error_message,
                sql_generated=outcome.sql,
                execution_result=outcome.result,
                correction_history=outcome.history,
                was_corrected=outcome.was_corrected,
                correction_attempts=len(outcome.history),
            )
        return state

    async def _run_answer(self, state: PipelineState) -> PipelineState:
        self._mark(state, "Interpret results")
        outcome = state["correction"]
        state["response"] = AgentResponse(
            success=True,
            answer=format_answer(state["intent"], outcome.result, len(outcome.history)),
            sql_generated=outcome.sql,
            execution_result=outcome.result,
            correction_history=outcome.history,
            was_corrected=outcome.was_corrected,
            correction_attempts=len(outcome.history),
        )
        logger.info("Processing complete")
        return state

    # ========================================================================
    # Conditional Edge Logic
    # ========================================================================

    def _should_continue(self, state: PipelineState) -> str:
        if state.get("response") is not None or state.get("error"):
            return "end"
        return "continue"

    def _route_after_retrieval(self, state: PipelineState) -> str:
        if self._should_continue(state) == "end":
            return "end"
        context = state.get("context")
        if context is None or context.is_empty:
            return "fallback"
        return "intent"

    # ========================================================================
    # Internals
    # ========================================================================

    def _mark(self, state: PipelineState, label: str) -> None:
        state["steps"].append(label)
        logger.info(f"Step: {label}", extra={"step": len(state["steps"])})

    def _stop(self, state: PipelineState, **fields) -> PipelineState:
        state["response"] = AgentResponse(success=False, **fields)
        return state

    def _needs_clarification(self, state: PipelineState, intent: IntentAnalysis) -> bool:
        if not intent.needs_clarification:
            return False
        logger.info("Question needs clarification", extra={"target": intent.target})
        self._stop(state, answer=intent.clarification_question or UNCLEAR_QUESTION_MESSAGE)
        return True

    def _resolve_namespace(self) -> str:
        try:
            namespace = database_namespace(self.database_url or "", self.database_type)
        except Exception as e:
            logger.warning(
                f"Cannot derive database name from connection descriptor, using default: {e}"
            )
            return self.default_namespace
        return namespace or self.default_namespace

    def _use_namespace(self, namespace: str) -> None:
        name = collection_name_for(self.collection_prefix, namespace)
        indexes = [self.retriever.index]
        if self.indexer.index is not self.retriever.index:
            indexes.append(self.indexer.index)
        for index in indexes:
            if index.collection_name != name:
                logger.info(f"Using schema collection {name}")
                index.collection_name = name

    async def _try_index(self, schema: DatabaseSchema) -> bool:
        """Index the schema if its collection is empty; False when the index is unusable."""
        try:
            if await self.indexer.is_indexed():
                logger.info("Schema already indexed")
            else:
                logger.info("Indexing schema into vector database")
                await self.indexer.index_schema(schema)
            return True
        except Exception as e:
            logger.warning(
                f"Schema indexing failed, using full schema: {e}",
                extra={"error_type": type(e).__name__},
            )
            return False

    def _build_response(self, state: PipelineState) -> AgentResponse:
        steps = list(state.get("steps") or [])
        response = state.get("response")
        if response is not None:
            return response.model_copy(update={"processing_steps": steps})

        error = state.get("error") or "Pipeline ended without a response"
        return AgentResponse(
            success=False,
            error_message=f"Error: {error}",
            sql_generated=state.get("sql"),
            processing_steps=steps,
        )
