"""Hybrid reranking of search candidates around fastener standards.

Vector similarity alone ranks a DIN 931 page next to a DIN 933 page because
the two read almost the same. The reranker adds the structure extracted by
the query classifier on top of the similarity score:

- exact standard matches (the query code or a declared equivalent) get a
  boost larger than any similarity gap, so they always rank first;
- the query code itself ranks above its equivalents;
- a similar but different standard (DIN 931 for DIN 933) loses a little;
- thread, material, product type, head type and supplier matches get small
  secondary boosts.

Everything here is synchronous and free of I/O. The search service owns the
vector store and keyword index calls.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from fastener_search.config import Settings
from fastener_search.models.search import (
    CandidateMetadata,
    QueryAnalysis,
    QueryType,
    RankedResult,
    SearchCandidate,
    SearchFilters,
    StandardCode,
    StandardSuggestion,
    ThreadSpec,
)
from fastener_search.retrieval.query_classifier import (
    extract_head_type,
    extract_material,
    extract_product_type,
    extract_supplier,
    extract_thread,
)
from fastener_search.retrieval.standards import (
    DEFAULT_STANDARD_TABLE,
    StandardTable,
    extract_standard_codes,
)

logger = logging.getLogger(__name__)

# Material codes that belong to a family named on its own ("stainless steel")
MATERIAL_FAMILIES: dict[str, tuple[str, ...]] = {
    "stainless": ("A2", "A4"),
    "steel": ("4.8", "8.8", "10.9", "12.9", "zinc"),
}

# Below this classification confidence the query is read semantically
VECTOR_SEARCH_CONFIDENCE = 0.7


@dataclass(frozen=True)
class RankingWeights:
    """Additive boosts of the hybrid score.

    Raises:
        ValueError: If an exact-match boost could be overtaken by a
            candidate with perfect similarity and every attribute boost
    """

    exact_match_boost: float = 2.0
    direct_match_boost: float = 1.5
    thread_match_boost: float = 0.1
    material_match_boost: float = 0.05
    product_type_match_boost: float = 0.05
    head_type_match_boost: float = 0.05
    supplier_match_boost: float = 0.05
    wrong_standard_penalty: float = 0.15

    def __post_init__(self):
        ceiling = 1.0 + self.max_secondary_boost
        if self.exact_match_boost <= ceiling:
            raise ValueError(
                f"exact_match_boost ({self.exact_match_boost}) must be greater than {ceiling:.2f}"
            )
        if self.direct_match_boost <= ceiling:
            raise ValueError(
                f"direct_match_boost ({self.direct_match_boost}) must be greater than {ceiling:.2f}"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RankingWeights":
        return cls(
            exact_match_boost=settings.exact_match_boost,
            direct_match_boost=settings.direct_match_boost,
            thread_match_boost=settings.thread_match_boost,
            material_match_boost=settings.material_match_boost,
            product_type_match_boost=settings.product_type_match_boost,
            head_type_match_boost=settings.head_type_match_boost,
            supplier_match_boost=settings.supplier_match_boost,
            wrong_standard_penalty=settings.wrong_standard_penalty,
        )

    @property
    def max_secondary_boost(self) -> float:
        return (
            self.thread_match_boost
            + self.material_match_boost
            + self.product_type_match_boost
            + self.head_type_match_boost
            + self.supplier_match_boost
        )

    @property
    def max_score(self) -> float:
        """Highest reachable hybrid score."""
        return 1.0 + self.max_secondary_boost + self.exact_match_boost + self.direct_match_boost


def thread_filter_value(thread: ThreadSpec) -> str:
    """Thread tag used for filtering: the diameter designation ("M8")."""
    return ThreadSpec(diameter=thread.diameter).designation


def normalize_metadata_tags(metadata: CandidateMetadata) -> CandidateMetadata:
    """Rewrite free-form tags to the canonical values filters compare against.

    The standard tag becomes its display form ("DIN 933"), the material tag
    its code ("A2"), the thread tag its diameter designation ("M8"), and
    product type, head type and supplier their vocabulary names. Tags that
    cannot be parsed are kept as written.
    """
    changes = {}

    if metadata.standard:
        codes = extract_standard_codes(metadata.standard)
        if codes:
            changes["standard"] = codes[0].display
    if metadata.material:
        material = extract_material(metadata.material)
        if material:
            changes["material"] = material.code
    if metadata.thread_type:
        thread = extract_thread(metadata.thread_type)
        if thread:
            changes["thread_type"] = thread_filter_value(thread)
    if metadata.product_type:
        changes["product_type"] = (
            extract_product_type(metadata.product_type)
            or metadata.product_type.strip().lower().replace(" ", "_")
        )
    if metadata.head_type:
        changes["head_type"] = extract_head_type(metadata.head_type) or metadata.head_type.strip().lower()
    if metadata.supplier:
        changes["supplier"] = extract_supplier(metadata.supplier) or metadata.supplier.strip().lower()

    if not changes:
        return metadata
    return CandidateMetadata(**{**metadata.to_dict(), **changes})


def build_search_filters(analysis: QueryAnalysis) -> SearchFilters:
    """Metadata filters for the vector search, from the query text only.

    Standard filters admit the query code and its declared equivalents, and
    a material family admits its member grades. The product type a standard
    implies is not a filter: an ISO 4017 chunk tagged "hexagon head screw"
    must still reach a "DIN 933" search. It only boosts in the reranker.
    """
    standard = None
    if analysis.extracted_standard is not None:
        standard = tuple(
            code.display
            for code in (analysis.extracted_standard, *analysis.equivalent_standards)
        )

    material = None
    if analysis.extracted_material is not None:
        spec = analysis.extracted_material
        if spec.code == spec.base:
            material = (spec.code, *MATERIAL_FAMILIES.get(spec.code, ()))
        elif spec.base:
            material = (spec.code, spec.base)
        else:
            material = spec.code

    thread = None
    if analysis.extracted_thread is not None:
        thread = thread_filter_value(analysis.extracted_thread)

    return SearchFilters(
        product_type=analysis.extracted_product_type,
        material=material,
        thread_type=thread,
        standard=standard,
        supplier=analysis.extracted_supplier,
    )


def should_use_exact_match(analysis: QueryAnalysis) -> bool:
    """Whether results must be post-filtered on the query standard."""
    return analysis.requires_exact_match and analysis.extracted_standard is not None


def should_use_vector_search(analysis: QueryAnalysis) -> bool:
    """Whether the query needs semantic search.

    Descriptive and low-confidence queries do. Confident code queries
    ("DIN 933 M8", "M8x40", "A4-80") are served by the keyword search when
    it finds anything; the search service falls back to vector search when
    it does not.
    """
    if not analysis.query or not analysis.query.strip():
        return False
    return (
        analysis.query_type == QueryType.DESCRIPTIVE
        or analysis.confidence < VECTOR_SEARCH_CONFIDENCE
    )


def should_use_keyword_search(analysis: QueryAnalysis) -> bool:
    """Keyword search pays off when the query carries literal codes."""
    return (
        should_use_exact_match(analysis)
        or analysis.extracted_thread is not None
        or analysis.extracted_material is not None
    )


def similarity_threshold(
    analysis: QueryAnalysis,
    requested: float,
    exact_threshold: float,
) -> float:
    """Vector similarity cutoff for this query.

    Exact-standard queries search with the looser of the two thresholds;
    the exact-standard filter restores precision afterwards.
    """
    if should_use_exact_match(analysis):
        return min(requested, exact_threshold)
    return requested


class HybridReranker:
    """Scores candidates against a ``QueryAnalysis``.

    Args:
        table: Standard table used to resolve equivalents and similar standards
        weights: Boost weights (defaults to ``RankingWeights()``)
    """

    def __init__(
        self,
        table: StandardTable = DEFAULT_STANDARD_TABLE,
        weights: RankingWeights | None = None,
    ):
        self.table = table
        self.weights = weights or RankingWeights()

    def _accepted_keys(self, analysis: QueryAnalysis) -> set[str]:
        target = analysis.extracted_standard
        accepted = {target.key}
        accepted.update(code.key for code in analysis.equivalent_standards)
        accepted.update(code.key for code in self.table.get_equivalents_fast(target))
        return accepted

    def match_standard(
        self,
        candidate: SearchCandidate,
        analysis: QueryAnalysis,
    ) -> tuple[str | None, bool]:
        """Check a candidate against the query standard.

        The standard tag decides when the chunk has one: a tag naming another
        standard is no match, whatever the text mentions. Only untagged
        chunks are matched on their content.

        Returns:
            (reason, direct): reason is "standard", "equivalent_standard" or
            "standard_content" (None when nothing matched); direct is True
            when the candidate carries the query code itself
        """
        target = analysis.extracted_standard
        if target is None:
            return None, False

        accepted = self._accepted_keys(analysis)
        tag_keys = {code.key for code in extract_standard_codes(candidate.metadata.standard)}
        if tag_keys:
            if target.key in tag_keys:
                return "standard", True
            if tag_keys & accepted:
                return "equivalent_standard", False
            return None, False

        content_keys = {code.key for code in extract_standard_codes(candidate.content)}
        if target.key in content_keys:
            return "standard_content", True
        if content_keys & accepted:
            return "standard_content", False
        return None, False

    def is_similar_standard(self, candidate: SearchCandidate, analysis: QueryAnalysis) -> bool:
        """Whether the candidate is tagged with a look-alike of the query standard.

        Similar standards are the ``similar`` entries of the query code and of
        its equivalents (DIN 931 and ISO 4014 for DIN 933).
        """
        target = analysis.extracted_standard
        if target is None:
            return False
        tag_keys = {code.key for code in extract_standard_codes(candidate.metadata.standard)}
        if not tag_keys or tag_keys & self._accepted_keys(analysis):
            return False

        similar = set()
        for code in (target, *analysis.equivalent_standards):
            similar.update(c.key for c in self.table.find_similar(code))
        return bool(tag_keys & similar)

    def _attribute_matches(
        self,
        metadata: CandidateMetadata,
        analysis: QueryAnalysis,
    ) -> list[tuple[str, float]]:
        matches = []

        if analysis.extracted_thread is not None:
            thread = extract_thread(metadata.thread_type)
            if thread is not None and analysis.extracted_thread.matches(thread):
                matches.append(("thread", self.weights.thread_match_boost))

        if analysis.extracted_material is not None:
            material = extract_material(metadata.material)
            if material is not None and analysis.extracted_material.matches(material):
                matches.append(("material", self.weights.material_match_boost))

        if analysis.product_type is not None and metadata.product_type:
            product_type = extract_product_type(metadata.product_type) or metadata.product_type.lower()
            if product_type == analysis.product_type:
                matches.append(("product_type", self.weights.product_type_match_boost))

        if analysis.extracted_head_type is not None and metadata.head_type:
            head_type = extract_head_type(metadata.head_type) or metadata.head_type.lower()
            if head_type == analysis.extracted_head_type:
                matches.append(("head_type", self.weights.head_type_match_boost))

        if analysis.extracted_supplier is not None and metadata.supplier:
            supplier = extract_supplier(metadata.supplier) or metadata.supplier.strip().lower()
            if supplier == analysis.extracted_supplier:
                matches.append(("supplier", self.weights.supplier_match_boost))

        return matches

    def score(self, candidate: SearchCandidate, analysis: QueryAnalysis) -> RankedResult:
        """Compute the hybrid score of one candidate (never below 0)."""
        vector_score = candidate.score
        hybrid_score = vector_score
        matched_on: list[str] = []

        reason, direct = self.match_standard(candidate, analysis)
        is_exact = reason is not None
        if is_exact:
            matched_on.append(reason)
            if analysis.requires_exact_match:
                hybrid_score += self.weights.exact_match_boost
                if direct:
                    hybrid_score += self.weights.direct_match_boost
        elif self.is_similar_standard(candidate, analysis):
            hybrid_score -= self.weights.wrong_standard_penalty

        for name, boost in self._attribute_matches(candidate.metadata, analysis):
            matched_on.append(name)
            hybrid_score += boost

        return RankedResult(
            candidate=candidate,
            hybrid_score=max(hybrid_score, 0.0),
            vector_score=vector_score,
            exact_standard_match=is_exact,
            matched_on=tuple(matched_on),
        )

    def rerank_results(
        self,
        candidates: Iterable[SearchCandidate],
        analysis: QueryAnalysis,
    ) -> list[RankedResult]:
        """Score and order candidates.

        Order is hybrid score descending, then vector score descending, then
        the input order.

        Args:
            candidates: Candidates in retrieval order
            analysis: Classification of the query

        Returns:
            Ranked results, one per candidate
        """
        ranked = [self.score(candidate, analysis) for candidate in candidates]
        # sorted() is stable, so equal scores keep the input order
        ranked = sorted(ranked, key=lambda r: (-r.hybrid_score, -r.vector_score))

        if ranked:
            exact_count = sum(1 for r in ranked if r.exact_standard_match)
            logger.debug(
                f"Reranked {len(ranked)} candidates ({exact_count} exact) | "
                f"top={ranked[0].id} hybrid={ranked[0].hybrid_score:.4f}"
            )
        return ranked


def filter_by_exact_standard(
    ranked: list[RankedResult],
    analysis: QueryAnalysis,
    min_exact_matches: int = 3,
    max_fallback: int = 5,
) -> list[RankedResult]:
    """Drop non-exact results when there are enough exact ones.

    With no exact match the list is returned unchanged, so a query for an
    unindexed standard still shows its nearest neighbours. With fewer than
    ``min_exact_matches`` exact results, the best ``max_fallback`` non-exact
    results are kept behind them.
    """
    if not should_use_exact_match(analysis):
        return list(ranked)

    exact = [r for r in ranked if r.exact_standard_match]
    if not exact:
        return list(ranked)
    if len(exact) >= min_exact_matches:
        return exact

    others = [r for r in ranked if not r.exact_standard_match]
    return exact + others[:max_fallback]


def apply_similarity_threshold(ranked: list[RankedResult], threshold: float) -> list[RankedResult]:
    """Keep exact matches and results whose vector score reaches ``threshold``."""
    return [r for r in ranked if r.exact_standard_match or r.vector_score >= threshold]


def get_standard_suggestions(
    code: StandardCode | str,
    table: StandardTable = DEFAULT_STANDARD_TABLE,
) -> StandardSuggestion | None:
    """Equivalents and related standards of ``code`` for UI hints."""
    return table.get_standard_suggestions(code)


def normalize_filters(filters: SearchFilters) -> SearchFilters:
    """Bring user-supplied filter values to the canonical tag values.

    "A2-70" becomes "A2", "M8x40" becomes "M8", "Würth" becomes "wurth".
    Tuple values are left alone.
    """
    values = {k: v for k, v in filters.as_dict().items() if isinstance(v, str)}
    if not values:
        return filters
    normalized = normalize_metadata_tags(CandidateMetadata(**values)).to_dict()
    return SearchFilters(**{**filters.as_dict(), **normalized})


def matches_filters(metadata: CandidateMetadata, filters: SearchFilters) -> bool:
    """Apply ``filters`` to already-normalized metadata, as the vector store would."""
    for key, expected in filters.as_dict().items():
        actual = getattr(metadata, key)
        allowed = expected if isinstance(expected, tuple) else (expected,)
        if actual not in allowed:
            return False
    return True
