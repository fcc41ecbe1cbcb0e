"""Storage and vector database components."""

from fastener_search.storage.vector_store import NoOpEmbeddingFunction, VectorStore

__all__ = [
    "NoOpEmbeddingFunction",
    "VectorStore",
]
