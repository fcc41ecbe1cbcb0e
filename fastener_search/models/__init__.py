"""Core types and API models of the fastener search system."""

from fastener_search.models.chunk import CatalogueChunk, EmbeddedChunk
from fastener_search.models.error import ErrorResponse
from fastener_search.models.query import (
    ChatRequest,
    ChatResponse,
    CompatibilityRequest,
    CompatibilityResponse,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
    StandardSuggestionResponse,
)
from fastener_search.models.search import (
    CandidateMetadata,
    MaterialSpec,
    QueryAnalysis,
    QueryType,
    RankedResult,
    SearchCandidate,
    SearchFilters,
    StandardCode,
    StandardRecord,
    StandardSuggestion,
    ThreadSpec,
)

__all__ = [
    # Core types
    "StandardCode",
    "StandardRecord",
    "StandardSuggestion",
    "ThreadSpec",
    "MaterialSpec",
    "QueryType",
    "QueryAnalysis",
    "CandidateMetadata",
    "SearchCandidate",
    "SearchFilters",
    "RankedResult",
    # Chunk models
    "CatalogueChunk",
    "EmbeddedChunk",
    # API models
    "SearchRequest",
    "SearchResponse",
    "SearchResultItem",
    "ChatRequest",
    "ChatResponse",
    "CompatibilityRequest",
    "CompatibilityResponse",
    "StandardSuggestionResponse",
    # Error models
    "ErrorResponse",
]
