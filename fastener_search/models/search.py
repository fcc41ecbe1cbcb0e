"""Core search types shared by the classifier, the reranker and the stores.

These are plain frozen dataclasses: they are created per request, never
mutated, and never persisted. HTTP request/response shapes live in
``fastener_search.models.query``.
"""

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


def format_number(value: float) -> str:
    """Render 8.0 as "8" and 1.25 as "1.25"."""
    return f"{value:g}"


class QueryType(str, Enum):
    """Primary intent of a search query."""

    EXACT_STANDARD = "exact_standard"
    THREAD_SPEC = "thread_spec"
    MATERIAL = "material"
    DESCRIPTIVE = "descriptive"


@dataclass(frozen=True)
class StandardCode:
    """Normalized fastener standard reference, e.g. DIN 933 or ISO 898-1.

    Attributes:
        org: Standards body tag, uppercase (DIN, ISO, EN, ANSI, ...)
        number: Numeric code with optional letter suffix, uppercase
        part: Optional part number (the "1" of ISO 898-1)
    """

    org: str
    number: str
    part: str | None = None

    @property
    def key(self) -> str:
        """Lookup key without spaces: "DIN933", "ISO898-1"."""
        suffix = f"-{self.part}" if self.part else ""
        return f"{self.org}{self.number}{suffix}"

    @property
    def display(self) -> str:
        """Canonical human-readable form: "DIN 933", "ISO 898-1"."""
        suffix = f"-{self.part}" if self.part else ""
        return f"{self.org} {self.number}{suffix}"

    def __str__(self) -> str:
        return self.display


@dataclass(frozen=True)
class StandardRecord:
    """Static catalogue entry for a known standard."""

    code: StandardCode
    description: str
    product_type: str
    similar: tuple[StandardCode, ...] = ()
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class ThreadSpec:
    """Metric thread designation such as M8, M8x40 or M10x1.25x50."""

    diameter: float
    length: float | None = None
    pitch: float | None = None

    @property
    def designation(self) -> str:
        parts = [f"M{format_number(self.diameter)}"]
        if self.pitch is not None:
            parts.append(format_number(self.pitch))
        if self.length is not None:
            parts.append(format_number(self.length))
        return "X".join(parts)

    def matches(self, other: "ThreadSpec") -> bool:
        """Same diameter, and no conflicting pitch or length."""
        if self.diameter != other.diameter:
            return False
        if self.length is not None and other.length is not None and self.length != other.length:
            return False
        if self.pitch is not None and other.pitch is not None and self.pitch != other.pitch:
            return False
        return True

    def __str__(self) -> str:
        return self.designation


@dataclass(frozen=True)
class MaterialSpec:
    """Material or property class recognized in text.

    Attributes:
        code: Short material code (A2, A4, 8.8, brass, stainless, ...)
        base: Material family (stainless, steel, brass, ...)
        grade: Full grade when the text carried one (A2-70, A4-80)
    """

    code: str
    base: str | None = None
    grade: str | None = None

    def matches(self, other: "MaterialSpec") -> bool:
        """Same code, or one side names only the family the other belongs to."""
        if self.code == other.code:
            return True
        if self.code == self.base and self.base == other.base:
            return True
        return other.code == other.base and other.base == self.base

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class QueryAnalysis:
    """Structured reading of one free-text query.

    ``extracted_*`` fields hold what the query text says. The product type
    a known standard implies is kept apart in ``inferred_product_type``: it
    ranks results but never filters them.
    """

    query: str
    query_type: QueryType = QueryType.DESCRIPTIVE
    extracted_standard: StandardCode | None = None
    standard_raw: str | None = None
    extracted_thread: ThreadSpec | None = None
    extracted_material: MaterialSpec | None = None
    extracted_product_type: str | None = None
    extracted_head_type: str | None = None
    extracted_supplier: str | None = None
    inferred_product_type: str | None = None
    equivalent_standards: tuple[StandardCode, ...] = ()
    requires_exact_match: bool = False
    confidence: float = 0.5
    detected_language: str = "en"

    @property
    def standard_display(self) -> str | None:
        return self.extracted_standard.display if self.extracted_standard else None

    @property
    def product_type(self) -> str | None:
        """Product type named in the query, else the one its standard implies."""
        return self.extracted_product_type or self.inferred_product_type

    def summary(self) -> dict[str, Any]:
        """Flat description used for logging and the API classification block."""
        return {
            "query_type": self.query_type.value,
            "standard": self.standard_display,
            "thread": self.extracted_thread.designation if self.extracted_thread else None,
            "material": self.extracted_material.code if self.extracted_material else None,
            "product_type": self.product_type,
            "head_type": self.extracted_head_type,
            "supplier": self.extracted_supplier,
            "requires_exact_match": self.requires_exact_match,
            "confidence": self.confidence,
            "detected_language": self.detected_language,
        }


# Producers (ingestion jobs, older index entries) write camelCase keys
_METADATA_ALIASES = {
    "documentId": "document_id",
    "doc_id": "document_id",
    "documentName": "document_name",
    "filename": "document_name",
    "pageNumber": "page_number",
    "page": "page_number",
    "chunkIndex": "chunk_index",
    "productType": "product_type",
    "threadType": "thread_type",
    "headType": "head_type",
}


@dataclass(frozen=True)
class CandidateMetadata:
    """Known metadata fields of an indexed catalogue chunk.

    Every field is optional; a chunk without a tag simply does not take
    part in that kind of matching.
    """

    document_id: str | None = None
    document_name: str | None = None
    supplier: str | None = None
    page_number: int | None = None
    chunk_index: int | None = None
    product_type: str | None = None
    material: str | None = None
    thread_type: str | None = None
    head_type: str | None = None
    standard: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "CandidateMetadata":
        """Build metadata from a loosely typed dict.

        Unknown keys are ignored and values of the wrong shape are dropped.
        """
        if not isinstance(raw, Mapping):
            return cls()

        values: dict[str, Any] = {}
        for key, value in raw.items():
            name = _METADATA_ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__ or value is None or name in values:
                continue
            if name in ("page_number", "chunk_index"):
                if isinstance(value, bool):
                    continue
                if isinstance(value, (int, float)) and math.isfinite(value):
                    values[name] = int(value)
                elif isinstance(value, str) and value.strip().isdecimal():
                    values[name] = int(value.strip())
            elif isinstance(value, str):
                if value.strip():
                    values[name] = value.strip()
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                values[name] = str(value)
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Non-empty fields only (vector stores reject None values)."""
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class SearchCandidate:
    """One hit returned by the vector or keyword search."""

    id: str
    score: float
    content: str = ""
    metadata: CandidateMetadata = field(default_factory=CandidateMetadata)

    @classmethod
    def from_raw(
        cls,
        id: str,
        score: float,
        content: str | None,
        metadata: Mapping[str, Any] | None,
    ) -> "SearchCandidate":
        """Build a candidate from collaborator output, clamping score to [0, 1]."""
        try:
            score = float(score)
        except (TypeError, ValueError):
            score = 0.0
        if math.isnan(score):
            score = 0.0
        return cls(
            id=str(id),
            score=max(0.0, min(1.0, score)),
            content=content if isinstance(content, str) else "",
            metadata=CandidateMetadata.from_mapping(metadata),
        )


@dataclass(frozen=True)
class RankedResult:
    """A candidate with its final ranking score."""

    candidate: SearchCandidate
    hybrid_score: float
    vector_score: float
    exact_standard_match: bool = False
    matched_on: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def content(self) -> str:
        return self.candidate.content

    @property
    def metadata(self) -> CandidateMetadata:
        return self.candidate.metadata


FilterValue = str | tuple[str, ...]


@dataclass(frozen=True)
class SearchFilters:
    """Equality constraints on chunk metadata for the vector search.

    Fields left as None impose no constraint. A tuple value admits any of
    its members (DIN 933 or its equivalent ISO 4017).
    """

    product_type: FilterValue | None = None
    material: FilterValue | None = None
    thread_type: FilterValue | None = None
    standard: FilterValue | None = None
    supplier: FilterValue | None = None

    def as_dict(self) -> dict[str, FilterValue]:
        return {k: v for k, v in asdict(self).items() if v is not None and v != ()}

    def is_empty(self) -> bool:
        return not self.as_dict()

    def merge(self, override: "SearchFilters") -> "SearchFilters":
        """Combine with another filter set; values in ``override`` win."""
        return SearchFilters(**{**self.as_dict(), **override.as_dict()})

    def to_where(self) -> dict[str, Any] | None:
        """Render as a ChromaDB ``where`` clause (AND of equalities)."""
        clauses = []
        for key, value in self.as_dict().items():
            if isinstance(value, tuple):
                values = list(dict.fromkeys(value))
                clauses.append({key: values[0]} if len(values) == 1 else {key: {"$in": values}})
            else:
                clauses.append({key: value})
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}


@dataclass(frozen=True)
class StandardSuggestion:
    """Equivalence hint for a standard, for UI display."""

    code: str
    description: str
    product_type: str
    equivalents: tuple[str, ...] = ()
    similar: tuple[str, ...] = ()
