"""Request and response models of the search, chat and compatibility API."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from fastener_search.models.search import SearchFilters


class SearchRequest(BaseModel):
    """Catalogue search request."""

    query: str = Field(description="Free-text query, e.g. 'DIN 933 M8 A2'")
    limit: int | None = Field(default=None, ge=1, description="Maximum number of results")
    threshold: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Minimum vector similarity (0-1)"
    )
    supplier: str | None = Field(default=None, description="Restrict to one supplier")
    product_type: str | None = Field(default=None, description="Restrict to a product type")
    material: str | None = Field(default=None, description="Restrict to a material code")
    thread_type: str | None = Field(default=None, description="Restrict to a thread size")

    @field_validator("supplier", "product_type", "material", "thread_type")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    def filters(self) -> SearchFilters:
        """Explicit filters of the request (raw values, normalized by the service)."""
        return SearchFilters(
            product_type=self.product_type,
            material=self.material,
            thread_type=self.thread_type,
            supplier=self.supplier,
        )


class DocumentRef(BaseModel):
    """Catalogue a result comes from."""

    id: str | None = None
    filename: str | None = None
    supplier: str | None = None


class SearchResultItem(BaseModel):
    """One ranked search result."""

    id: str
    rank: int = Field(ge=1, description="Position in the result list, starting at 1")
    content: str
    snippet: str
    score: float = Field(ge=0.0, description="Hybrid score on the API scale (0-100)")
    vector_score: float = Field(ge=0.0, le=1.0, description="Raw vector similarity (0-1)")
    exact_match: bool = Field(description="Carries the query standard or an equivalent")
    matched_on: list[str] = Field(default_factory=list)
    page_number: int | None = None
    document: DocumentRef
    product_type: str | None = None
    material: str | None = None
    thread_type: str | None = None
    head_type: str | None = None
    standard: str | None = None


class ClassificationSummary(BaseModel):
    """How the query was read."""

    query_type: str
    standard: str | None = None
    thread: str | None = None
    material: str | None = None
    product_type: str | None = None
    head_type: str | None = None
    supplier: str | None = None
    requires_exact_match: bool = False
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    detected_language: Literal["en", "es", "mixed"] = "en"


class SearchSuggestions(BaseModel):
    """Related standards worth offering to the user."""

    equivalent_standards: list[str] = Field(default_factory=list)
    similar_standards: list[str] = Field(default_factory=list)


class SearchMetrics(BaseModel):
    """Candidate counts and timing of one search."""

    vector_result_count: int = Field(ge=0)
    keyword_result_count: int = Field(ge=0)
    fused_result_count: int = Field(ge=0)
    filters_widened: bool = False
    execution_time_ms: float = Field(ge=0.0)


class SearchResponse(BaseModel):
    """Search response."""

    results: list[SearchResultItem]
    query: str
    total_results: int = Field(ge=0)
    classification: ClassificationSummary
    suggestions: SearchSuggestions | None = None
    metrics: SearchMetrics


class ChatMessage(BaseModel):
    """Earlier turn of a chat conversation."""

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Question to the catalogue assistant."""

    message: str = Field(min_length=1, description="User question")
    language: Literal["en", "es"] = Field(default="en", description="Answer language")
    history: list[ChatMessage] = Field(
        default_factory=list, description="Earlier turns, oldest first"
    )

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message cannot be blank")
        return v.strip()


class ChatSource(BaseModel):
    """Catalogue chunk the answer was based on."""

    id: str
    document_name: str | None = None
    supplier: str | None = None
    page_number: int | None = None
    score: float = Field(ge=0.0)
    snippet: str


class ChatResponse(BaseModel):
    """Assistant answer with its sources."""

    answer: str
    sources: list[ChatSource] = Field(default_factory=list)
    classification: ClassificationSummary
    processing_time: float = Field(ge=0.0, description="Processing time in seconds")


class CompatibilityRequest(BaseModel):
    """Find products that fit together with the queried one."""

    query: str
    product_type: str | None = None
    thread_type: str | None = None
    material: str | None = None
    limit: int = Field(default=10, ge=1, le=50)


class SourceProduct(BaseModel):
    """The product compatibility was computed for."""

    id: str
    snippet: str
    product_type: str | None = None
    thread_type: str | None = None
    material: str | None = None
    document_name: str | None = None


class CompatibleProduct(BaseModel):
    """A product that goes with the source product."""

    id: str
    content: str
    snippet: str
    compatibility_score: int = Field(ge=0, le=100)
    semantic_score: int = Field(ge=0, le=100)
    document: DocumentRef
    product_type: str | None = None
    material: str | None = None
    thread_type: str | None = None
    head_type: str | None = None
    standard: str | None = None
    reasons: list[str] = Field(default_factory=list)


class CompatibilityResponse(BaseModel):
    """Compatibility response."""

    source_product: SourceProduct | None = None
    compatible_products: list[CompatibleProduct] = Field(default_factory=list)
    total_results: int = Field(ge=0)
    message: str | None = None


class StandardSuggestionResponse(BaseModel):
    """Known standard with its equivalents."""

    code: str
    description: str
    product_type: str
    equivalents: list[str] = Field(default_factory=list)
    similar: list[str] = Field(default_factory=list)
