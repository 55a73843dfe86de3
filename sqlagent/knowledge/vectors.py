"""
Schema Vector Index

Chroma-backed store for schema document embeddings. Each database gets its
own collection (``{prefix}_{namespace}``) so switching connections never
mixes schemas. Vectors are computed by the caller; the collection is created
without an embedding function.

The chromadb client is synchronous, so every call runs via asyncio.to_thread.
A collection with zero points is reported as not indexed.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings
from pydantic import BaseModel, Field

from sqlagent.models.errors import VectorStoreError

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]+")


class VectorHit(BaseModel):
    """One similarity-search result with its stored payload."""

    id: str
    score: float = Field(..., description="Cosine similarity (1.0 = identical)")
    document: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


def collection_name_for(prefix: str, namespace: str) -> str:
    """Build a Chroma-safe collection name (3-63 chars, alphanumeric ends)."""
    raw = f"{prefix}_{namespace}".lower()
    name = _INVALID_NAME_CHARS.sub("_", raw).strip("_-")
    if len(name) < 3:
        name = f"{name}_idx"
    return name[:63].rstrip("_-")


class SchemaVectorIndex:
    """
    Vector index for one schema namespace.

    Usage:
        index = SchemaVectorIndex(persist_directory="./chroma_data", collection_name="schema_shop")
        if not await index.collection_exists() or await index.count() == 0:
            await index.ensure_collection()
            await index.upsert(ids, embeddings, documents, metadatas)
        hits = await index.search(query_vector, limit=5, min_score=0.3)
    """

    def __init__(self, persist_directory: str | Path, collection_name: str):
        self.persist_directory = Path(persist_directory)
        self.collection_name = collection_name
        self.client: chromadb.ClientAPI | None = None

        logger.info(
            f"SchemaVectorIndex initialized: collection={self.collection_name}, "
            f"persist_dir={self.persist_directory}"
        )

    async def collection_exists(self) -> bool:
        try:
            return await asyncio.to_thread(self._collection_exists_sync)
        except Exception as e:
            logger.error(f"Failed to list collections: {e}")
            raise VectorStoreError(f"Vector store unavailable: {e}") from e

    async def ensure_collection(self) -> None:
        """Create the collection if missing (cosine distance)."""
        try:
            await asyncio.to_thread(self._get_or_create_sync)
        except Exception as e:
            logger.error(f"Failed to create collection {self.collection_name}: {e}")
            raise VectorStoreError(f"Failed to create collection: {e}") from e

    async def delete_collection(self) -> None:
        try:
            if await asyncio.to_thread(self._collection_exists_sync):
                client = await asyncio.to_thread(self._get_client)
                await asyncio.to_thread(client.delete_collection, name=self.collection_name)
                logger.info(f"Deleted collection {self.collection_name}")
        except Exception as e:
            logger.error(f"Failed to delete collection {self.collection_name}: {e}")
            raise VectorStoreError(f"Failed to delete collection: {e}") from e

    async def count(self) -> int:
        """Number of stored points (0 when the collection does not exist)."""
        try:
            if not await asyncio.to_thread(self._collection_exists_sync):
                return 0
            collection = await asyncio.to_thread(self._get_or_create_sync)
            return await asyncio.to_thread(collection.count)
        except Exception as e:
            logger.error(f"Failed to get count: {e}")
            raise VectorStoreError(f"Failed to get count: {e}") from e

    async def upsert(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> int:
        if not ids:
            logger.warning("No points to upsert")
            return 0
        try:
            collection = await asyncio.to_thread(self._get_or_create_sync)
            await asyncio.to_thread(
                collection.upsert,
                ids=ids,
                embeddings=embeddings,
                documents=documents,
                metadatas=[self._clean_metadata(meta) for meta in metadatas],
            )
            logger.debug(f"Upserted {len(ids)} points into {self.collection_name}")
            return len(ids)
        except Exception as e:
            logger.error(f"Failed to upsert points: {e}")
            raise VectorStoreError(f"Failed to upsert points: {e}") from e

    async def search(
        self,
        vector: list[float],
        limit: int = 5,
        min_score: float = 0.0,
    ) -> list[VectorHit]:
        """
        Return up to ``limit`` hits scoring at least ``min_score``, best first.

        Raises:
            VectorStoreError: If the query fails
        """
        try:
            collection = await asyncio.to_thread(self._get_or_create_sync)
            if await asyncio.to_thread(collection.count) == 0:
                return []
            results = await asyncio.to_thread(
                collection.query,
                query_embeddings=[vector],
                n_results=limit,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            logger.error(f"Search failed: {e}")
            raise VectorStoreError(f"Search failed: {e}") from e

        hits: list[VectorHit] = []
        if results["ids"] and results["ids"][0]:
            for i, point_id in enumerate(results["ids"][0]):
                distance = results["distances"][0][i] if results["distances"] else 1.0
                score = 1.0 - float(distance)
                if score < min_score:
                    continue
                hits.append(
                    VectorHit(
                        id=point_id,
                        score=score,
                        document=results["documents"][0][i] if results["documents"] else "",
                        metadata=dict(results["metadatas"][0][i] or {})
                        if results["metadatas"]
                        else {},
                    )
                )

        hits.sort(key=lambda hit: hit.score, reverse=True)
        logger.debug(f"Search returned {len(hits)} hits above {min_score}")
        return hits

    def _get_client(self) -> chromadb.ClientAPI:
        if self.client is None:
            self.persist_directory.mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(
                path=str(self.persist_directory),
                settings=Settings(
                    anonymized_telemetry=False,
                    allow_reset=True,
                ),
            )
        return self.client

    def _collection_exists_sync(self) -> bool:
        # list_collections returns names on newer chromadb and objects on older
        names = [
            item if isinstance(item, str) else item.name
            for item in self._get_client().list_collections()
        ]
        return self.collection_name in names

    def _get_or_create_sync(self):
        return self._get_client().get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )

    @staticmethod
    def _clean_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
        # Chroma only accepts scalar values
        cleaned: dict[str, Any] = {}
        for key, value in metadata.items():
            if value is None:
                continue
            cleaned[key] = value if isinstance(value, (str, int, float, bool)) else str(value)
        return cleaned
