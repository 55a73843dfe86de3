"""
Schema Indexer

Turns a scanned DatabaseSchema into searchable text documents (one per
table, column and foreign key), embeds them in batches and upserts them into
the schema vector index.

Document text examples:
    Table Customers in schema dbo has columns: Id (int, PK), Name (nvarchar)
    Column Email in table Customers is of type nvarchar and stores email address
    Orders.CustomerId references Customers.Id, linking orders to customers
"""

import logging
from functools import partial
from typing import Any, Literal

from pydantic import BaseModel, Field

from sqlagent.knowledge.embeddings import BaseEmbeddingProvider
from sqlagent.knowledge.vectors import SchemaVectorIndex
from sqlagent.models.schema import ColumnInfo, DatabaseSchema, RelationshipInfo, TableInfo
from sqlagent.resilience.vector_store import VectorStoreHandler

logger = logging.getLogger(__name__)

# Checked in order; first substring hit wins
_COLUMN_PURPOSES: list[tuple[tuple[str, ...], str]] = [
    (("name",), "name information"),
    (("email",), "email address"),
    (("phone",), "phone number"),
    (("address",), "address information"),
    (("date",), "date information"),
    (("amount", "price"), "monetary value"),
    (("quantity", "count"), "quantity or count"),
    (("status",), "status information"),
    (("description",), "description text"),
]


class SchemaDocument(BaseModel):
    """Text representation of one schema element, ready for embedding."""

    id: str
    type: Literal["table", "column", "relationship"]
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


def guess_column_purpose(column_name: str) -> str:
    """Short natural-language hint about what a column holds."""
    lowered = column_name.lower()
    if lowered == "id":
        return "unique identifier"
    for markers, purpose in _COLUMN_PURPOSES:
        if any(marker in lowered for marker in markers):
            return purpose
    return lowered


def build_schema_documents(schema: DatabaseSchema) -> list[SchemaDocument]:
    """Build table, column and relationship documents for a schema."""
    documents: list[SchemaDocument] = []
    point_id = 0

    for table in schema.tables:
        documents.append(
            SchemaDocument(
                id=f"table_{point_id}",
                type="table",
                content=_table_content(table),
                metadata={
                    "type": "table",
                    "table_name": table.name,
                    "schema": table.schema_name,
                    "column_count": len(table.columns),
                },
            )
        )
        point_id += 1

        for column in table.columns:
            documents.append(
                SchemaDocument(
                    id=f"column_{point_id}",
                    type="column",
                    content=_column_content(table, column),
                    metadata={
                        "type": "column",
                        "table_name": table.name,
                        "column_name": column.name,
                        "data_type": column.data_type,
                        "is_primary_key": column.is_primary_key,
                        "is_foreign_key": column.is_foreign_key,
                    },
                )
            )
            point_id += 1

    for rel in schema.relationships:
        documents.append(
            SchemaDocument(
                id=f"relationship_{point_id}",
                type="relationship",
                content=_relationship_content(rel),
                metadata={
                    "type": "relationship",
                    "from_table": rel.from_table,
                    "from_column": rel.from_column,
                    "to_table": rel.to_table,
                    "to_column": rel.to_column,
                },
            )
        )
        point_id += 1

    return documents


def _table_content(table: TableInfo) -> str:
    columns = ", ".join(
        f"{col.name} ({col.data_type}{', PK' if col.is_primary_key else ''}"
        f"{', FK' if col.is_foreign_key else ''})"
        for col in table.columns
    )
    schema_part = f" in schema {table.schema_name}" if table.schema_name else ""
    return f"Table {table.name}{schema_part} has columns: {columns}"


def _column_content(table: TableInfo, column: ColumnInfo) -> str:
    keys = ""
    if column.is_primary_key:
        keys += " (Primary Key)"
    if column.is_foreign_key:
        keys += " (Foreign Key)"
    return (
        f"Column {column.name} in table {table.name} is of type {column.data_type}{keys} "
        f"and stores {guess_column_purpose(column.name)}"
    )


def _relationship_content(rel: RelationshipInfo) -> str:
    return (
        f"{rel.from_table}.{rel.from_column} references {rel.to_table}.{rel.to_column}, "
        f"linking {rel.from_table.lower()} to {rel.to_table.lower()}"
    )


class SchemaIndexer:
    """Embeds schema documents and writes them to the vector index."""

    def __init__(
        self,
        embedder: BaseEmbeddingProvider,
        index: SchemaVectorIndex,
        handler: VectorStoreHandler | None = None,
        batch_size: int = 10,
    ):
        self.embedder = embedder
        self.index = index
        self.handler = handler or VectorStoreHandler()
        self.batch_size = batch_size

    async def is_indexed(self) -> bool:
        """True when the collection exists and holds at least one point."""
        if not await self.handler.call(self.index.collection_exists):
            return False
        return await self.handler.call(self.index.count) > 0

    async def index_schema(self, schema: DatabaseSchema) -> int:
        """
        Index every table, column and relationship of ``schema``.

        Returns:
            Number of documents written

        Raises:
            VectorStoreError: Embedding or index writes kept failing
        """
        logger.info(
            f"Indexing schema {schema.database_name or '<unnamed>'}",
            extra={"tables": len(schema.tables), "collection": self.index.collection_name},
        )
        await self.handler.call(self.index.ensure_collection)

        documents = build_schema_documents(schema)
        total_batches = (len(documents) + self.batch_size - 1) // self.batch_size
        written = 0
        for batch_number, start in enumerate(range(0, len(documents), self.batch_size), start=1):
            batch = documents[start : start + self.batch_size]
            logger.debug(f"Embedding batch {batch_number}/{total_batches}")
            embeddings = await self.handler.call(
                partial(self.embedder.embed_batch, [doc.content for doc in batch])
            )
            written += await self.handler.call(
                partial(
                    self.index.upsert,
                    [doc.id for doc in batch],
                    embeddings,
                    [doc.content for doc in batch],
                    [{**doc.metadata, "content": doc.content} for doc in batch],
                )
            )

        logger.info(f"Indexed {written} schema documents into {self.index.collection_name}")
        return written

    async def clear_index(self) -> None:
        logger.info(f"Clearing schema index {self.index.collection_name}")
        await self.handler.call(self.index.delete_collection)
