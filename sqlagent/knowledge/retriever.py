"""
Schema Retriever

Selects the part of the schema relevant to one question:

1. Embed the question
2. Similarity-search the schema index (top_k, min_score)
3. Collect table names from table, column and relationship hits (capped)
4. Resolve names against the full schema (last dotted segment, case-insensitive)
5. Attach every foreign key whose both ends are in the resolved set

An empty result means a retrieval miss; the orchestrator then builds a
fallback context around the intent's target table.
"""

import logging
from functools import partial

from sqlagent.knowledge.embeddings import BaseEmbeddingProvider
from sqlagent.knowledge.vectors import SchemaVectorIndex, VectorHit
from sqlagent.models.schema import (
    DatabaseSchema,
    RelationshipInfo,
    RetrievedSchemaContext,
    SchemaMatch,
    TableInfo,
    last_segment,
)
from sqlagent.resilience.vector_store import VectorStoreHandler

logger = logging.getLogger(__name__)


class SchemaRetriever:
    """Retrieval-augmented schema selection."""

    def __init__(
        self,
        embedder: BaseEmbeddingProvider,
        index: SchemaVectorIndex,
        handler: VectorStoreHandler | None = None,
        top_k: int = 5,
        min_score: float = 0.3,
        max_context_tables: int = 10,
    ):
        self.embedder = embedder
        self.index = index
        self.handler = handler or VectorStoreHandler()
        self.top_k = top_k
        self.min_score = min_score
        self.max_context_tables = max_context_tables

    async def retrieve(self, question: str, full_schema: DatabaseSchema) -> RetrievedSchemaContext:
        """
        Build the relevant-schema context for ``question``.

        Raises:
            VectorStoreError: Embedding or search kept failing
            SchemaIndexError: The index does not exist
        """
        vector = await self.handler.call(partial(self.embedder.embed, question))
        hits = await self.handler.call(
            partial(self.index.search, vector, limit=self.top_k, min_score=self.min_score)
        )
        logger.debug(f"Found {len(hits)} relevant schema elements")

        context = self.build_context(hits, full_schema)
        logger.info(
            f"Retrieved {len(context.relevant_tables)} tables, "
            f"{len(context.relevant_relationships)} relationships",
            extra={"tables": context.table_names},
        )
        return context

    def build_context(self, hits: list[VectorHit], full_schema: DatabaseSchema) -> RetrievedSchemaContext:
        table_names: list[str] = []
        hit_relationships: list[RelationshipInfo] = []
        matches: list[SchemaMatch] = []

        def remember(name: str) -> None:
            if name and name not in table_names and len(table_names) < self.max_context_tables:
                table_names.append(name)

        for hit in hits:
            meta = hit.metadata
            kind = str(meta.get("type", ""))
            content = str(meta.get("content") or hit.document)

            if kind == "relationship":
                from_table = str(meta.get("from_table", ""))
                to_table = str(meta.get("to_table", ""))
                remember(from_table)
                remember(to_table)
                hit_relationships.append(
                    RelationshipInfo(
                        from_table=from_table,
                        from_column=str(meta.get("from_column", "")),
                        to_table=to_table,
                        to_column=str(meta.get("to_column", "")),
                    )
                )
                matches.append(SchemaMatch(type=kind, table_name=from_table, score=hit.score, content=content))
            elif kind in ("table", "column"):
                table_name = str(meta.get("table_name", ""))
                remember(table_name)
                matches.append(
                    SchemaMatch(
                        type=kind,
                        table_name=table_name,
                        column_name=meta.get("column_name") if kind == "column" else None,
                        score=hit.score,
                        content=content,
                    )
                )

        tables: list[TableInfo] = []
        for name in table_names:
            table = full_schema.find_table(name)
            if table is not None and table not in tables:
                tables.append(table)

        relationships = related_relationships(tables, hit_relationships + full_schema.relationships)
        return RetrievedSchemaContext.from_tables(tables, relationships, matches)


def related_relationships(
    tables: list[TableInfo],
    candidates: list[RelationshipInfo],
) -> list[RelationshipInfo]:
    """Relationships whose both ends are in ``tables``, de-duplicated by endpoint tuple."""
    names = {last_segment(table.name) for table in tables}
    seen: set[tuple[str, str, str, str]] = set()
    result: list[RelationshipInfo] = []
    for rel in candidates:
        if last_segment(rel.from_table) not in names or last_segment(rel.to_table) not in names:
            continue
        if rel.key in seen:
            continue
        seen.add(rel.key)
        result.append(rel)
    return result
