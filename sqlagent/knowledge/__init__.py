"""
Knowledge Module

Schema retrieval: embedding providers, the Chroma-backed schema index,
the indexer that fills it and the retriever that queries it.
"""

from sqlagent.knowledge.embeddings import (
    BaseEmbeddingProvider,
    GoogleEmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_embedding_provider,
)
from sqlagent.knowledge.indexer import SchemaDocument, SchemaIndexer, build_schema_documents
from sqlagent.knowledge.retriever import SchemaRetriever, related_relationships
from sqlagent.knowledge.vectors import SchemaVectorIndex, VectorHit, collection_name_for

__all__ = [
    "BaseEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "GoogleEmbeddingProvider",
    "create_embedding_provider",
    "SchemaDocument",
    "SchemaIndexer",
    "build_schema_documents",
    "SchemaRetriever",
    "related_relationships",
    "SchemaVectorIndex",
    "VectorHit",
    "collection_name_for",
]
