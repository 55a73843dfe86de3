"""
Schema Cache

Session-scoped holder for the scanned schema and the indexed flag.

Population is single-flight: the orchestrator holds the cache (``async
with cache:``) while it checks, scans and indexes, so concurrent questions
against one orchestrator wait for the first scan instead of repeating it.
"""

import asyncio
import logging

from sqlagent.models.schema import DatabaseSchema

logger = logging.getLogger(__name__)


class SchemaCache:
    """
    Cached schema plus indexing state.

    Attributes:
        indexed: Indexing was attempted for the cached schema
        retrieval_available: Indexing succeeded, so similarity search is usable
    """

    def __init__(self):
        self._schema: DatabaseSchema | None = None
        self.indexed = False
        self.retrieval_available = False
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "SchemaCache":
        await self._lock.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._lock.release()

    def get(self) -> DatabaseSchema | None:
        return self._schema

    def set(self, schema: DatabaseSchema) -> None:
        """Replace the cached schema wholesale; indexing state starts over."""
        self._schema = schema
        self.indexed = False
        self.retrieval_available = False
        logger.info(
            f"Cached schema with {len(schema.tables)} tables",
            extra={"relationships": len(schema.relationships)},
        )

    def mark_indexed(self, retrieval_available: bool) -> None:
        self.indexed = True
        self.retrieval_available = retrieval_available

    async def clear(self) -> None:
        """Drop the schema and indexed flag; waits for an in-flight population."""
        async with self._lock:
            self._schema = None
            self.indexed = False
            self.retrieval_available = False
        logger.info("Schema cache cleared")

    @property
    def is_empty(self) -> bool:
        return self._schema is None
