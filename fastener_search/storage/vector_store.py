"""Vector database storage using ChromaDB."""

import logging
from typing import Any

from fastener_search.models.chunk import EmbeddedChunk
from fastener_search.models.search import CandidateMetadata, SearchCandidate, SearchFilters
from fastener_search.retrieval.hybrid_search import normalize_metadata_tags

logger = logging.getLogger(__name__)


class NoOpEmbeddingFunction:
    """No-op embedding function to prevent Chroma from downloading default model."""

    def __call__(self, input: Any) -> Any:
        return []

    def name(self) -> str:
        """Return the name of this embedding function."""
        return "noop"


class VectorStore:
    """Catalogue chunk embeddings in a ChromaDB collection.

    Metadata is stored with normalized product tags (see
    ``normalize_metadata_tags``) so that search filters can be plain
    equality predicates.
    """

    def __init__(
        self,
        persist_directory: str = "./data/vectordb",
        collection_name: str = "catalogue_chunks",
    ):
        """Initialize vector store.

        Args:
            persist_directory: Directory for persistent storage
            collection_name: Name of the collection
        """
        import chromadb
        from chromadb.config import Settings as ChromaSettings

        self.persist_directory = persist_directory
        self.collection_name = collection_name

        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=ChromaSettings(
                anonymized_telemetry=False,
                allow_reset=True,
            ),
        )

        # Embeddings come from OpenAI; the no-op function keeps Chroma from
        # downloading its default SentenceTransformer model.
        self._collection = self._get_or_create_collection()

        logger.info(
            f"Initialized VectorStore with collection '{collection_name}' at '{persist_directory}'"
        )

    def _get_or_create_collection(self):
        return self._client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=NoOpEmbeddingFunction(),
        )

    async def add_chunks(self, embedded_chunks: list[EmbeddedChunk]) -> int:
        """Store chunk embeddings with their metadata.

        Writes are upserts keyed by chunk ID, so re-indexing a chunk
        replaces it instead of duplicating it.

        Args:
            embedded_chunks: Chunks with their embedding vectors

        Returns:
            int: Number of chunks written

        Raises:
            ValueError: If the list is empty
        """
        if not embedded_chunks:
            raise ValueError("Cannot add empty chunk list")

        ids = []
        documents = []
        metadatas = []
        embedding_vectors = []

        for embedded in embedded_chunks:
            chunk = embedded.chunk
            ids.append(chunk.chunk_id)
            documents.append(chunk.content)
            # ChromaDB accepts only str, int, float and bool values (no None)
            metadatas.append(normalize_metadata_tags(chunk.candidate_metadata()).to_dict())
            embedding_vectors.append(embedded.embedding)

        try:
            self._collection.upsert(
                ids=ids,
                embeddings=embedding_vectors,
                documents=documents,
                metadatas=metadatas,
            )
        except Exception as e:
            logger.error(f"Failed to add {len(ids)} chunks: {e}")
            raise

        logger.info(f"Added {len(ids)} chunks to collection '{self.collection_name}'")
        return len(ids)

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 10,
        filters: SearchFilters | None = None,
    ) -> list[SearchCandidate]:
        """Perform similarity search.

        Args:
            query_embedding: Query embedding vector
            top_k: Number of results to return
            filters: Optional metadata filters (AND of equalities)

        Returns:
            list[SearchCandidate]: Candidates ordered by similarity, score in [0, 1]

        Raises:
            ValueError: If query_embedding is empty or top_k is invalid
        """
        if not query_embedding:
            raise ValueError("Query embedding cannot be empty")
        if top_k < 1:
            raise ValueError("top_k must be at least 1")

        where = filters.to_where() if filters is not None else None

        try:
            results = self._collection.query(
                query_embeddings=[query_embedding],
                n_results=top_k,
                where=where,
            )
        except Exception as e:
            logger.error(f"Search failed (where={where}): {e}")
            raise

        candidates = []
        if results["ids"] and results["ids"][0]:
            for i, chunk_id in enumerate(results["ids"][0]):
                distance = results["distances"][0][i]
                # ChromaDB cosine distance = 1 - cosine_similarity
                candidates.append(
                    SearchCandidate.from_raw(
                        id=chunk_id,
                        score=1.0 - distance,
                        content=results["documents"][0][i],
                        metadata=results["metadatas"][0][i],
                    )
                )

        logger.info(
            f"Vector search returned {len(candidates)} results (top_k={top_k}, where={where})"
        )
        return candidates

    async def get_chunk(self, chunk_id: str) -> SearchCandidate | None:
        """Retrieve a stored chunk by ID (score is 1.0)."""
        results = self._collection.get(ids=[chunk_id], include=["documents", "metadatas"])
        if not results["ids"]:
            return None
        return SearchCandidate.from_raw(
            id=chunk_id,
            score=1.0,
            content=results["documents"][0],
            metadata=results["metadatas"][0],
        )

    async def get_all_chunks(self) -> list[SearchCandidate]:
        """Every stored chunk, used to rebuild the keyword index."""
        results = self._collection.get(include=["documents", "metadatas"])
        return [
            SearchCandidate(
                id=chunk_id,
                score=1.0,
                content=results["documents"][i] or "",
                metadata=CandidateMetadata.from_mapping(results["metadatas"][i]),
            )
            for i, chunk_id in enumerate(results["ids"])
        ]

    async def delete_document(self, document_id: str) -> int:
        """Remove all chunks of a catalogue document.

        Returns:
            int: Number of chunks deleted (0 when none existed)
        """
        try:
            results = self._collection.get(where={"document_id": document_id})
            if results["ids"]:
                self._collection.delete(ids=results["ids"])
                logger.info(f"Deleted {len(results['ids'])} chunks for document '{document_id}'")
            else:
                logger.info(f"No chunks found for document '{document_id}'")
            return len(results["ids"])
        except Exception as e:
            logger.error(f"Failed to delete document '{document_id}': {e}")
            raise

    async def count_chunks(self, document_id: str | None = None) -> int:
        """Count chunks, optionally for one document."""
        if document_id:
            results = self._collection.get(where={"document_id": document_id})
            return len(results["ids"])
        return self._collection.count()

    def reset(self) -> None:
        """Delete all data in the collection.

        WARNING: This is destructive and should only be used for testing.
        """
        self._client.delete_collection(name=self.collection_name)
        self._collection = self._get_or_create_collection()
        logger.warning(f"Reset collection '{self.collection_name}'")
