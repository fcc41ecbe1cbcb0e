"""Chunk models written to the search indexes."""

from typing import Any

from pydantic import BaseModel, Field

from fastener_search.models.search import CandidateMetadata


class CatalogueChunk(BaseModel):
    """A piece of supplier catalogue text ready to be indexed.

    Produced by the ingestion pipeline. ``metadata`` carries the product
    tags (product type, material, thread, standard) extracted from the page.
    """

    chunk_id: str = Field(min_length=1)
    document_id: str = Field(min_length=1)
    document_name: str | None = None
    supplier: str | None = None
    content: str = Field(min_length=1)
    page_number: int | None = Field(default=None, ge=0, description="Page number (non-negative)")
    chunk_index: int = Field(default=0, ge=0, description="Chunk index (non-negative)")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def candidate_metadata(self) -> CandidateMetadata:
        """Typed metadata; explicit fields win over tags in ``metadata``."""
        tags = CandidateMetadata.from_mapping(self.metadata)
        explicit = CandidateMetadata.from_mapping(
            {
                "document_id": self.document_id,
                "document_name": self.document_name,
                "supplier": self.supplier,
                "page_number": self.page_number,
                "chunk_index": self.chunk_index,
            }
        )
        return CandidateMetadata(**{**tags.to_dict(), **explicit.to_dict()})


class EmbeddedChunk(BaseModel):
    """Chunk with embedding vector."""

    chunk: CatalogueChunk
    embedding: list[float]
