"""Compatible product lookup: nuts and washers for a bolt, bolts for a nut."""

import logging
from dataclasses import dataclass

from fastener_search.models.search import CandidateMetadata, SearchCandidate, SearchFilters
from fastener_search.retrieval.hybrid_search import thread_filter_value
from fastener_search.retrieval.query_classifier import extract_material, extract_thread

logger = logging.getLogger(__name__)

COMPATIBLE_TYPES: dict[str, tuple[str, ...]] = {
    "bolt": ("nut", "washer"),
    "screw": ("nut", "washer"),
    "nut": ("bolt", "screw", "threaded_rod", "washer"),
    "washer": ("bolt", "nut", "screw"),
    "threaded_rod": ("nut", "washer"),
}

DEFAULT_PRODUCT_TYPE = "bolt"

THREAD_MATCH_POINTS = 20
STAINLESS_PAIR_POINTS = 15
SAME_MATERIAL_POINTS = 10
MAX_COMPATIBILITY_SCORE = 100


@dataclass(frozen=True)
class CompatibilityMatch:
    """A candidate that fits together with the source product."""

    candidate: SearchCandidate
    compatibility_score: int
    semantic_score: int
    reasons: tuple[str, ...]


def compatible_product_types(product_type: str | None) -> tuple[str, ...]:
    """Product types that mate with ``product_type`` (empty when unknown)."""
    return COMPATIBLE_TYPES.get(product_type or "", ())


def compatibility_filters(product_type: str | None, thread_type: str | None) -> SearchFilters:
    """Vector search filters for products compatible with the source."""
    thread = extract_thread(thread_type)
    targets = compatible_product_types(product_type)
    return SearchFilters(
        product_type=targets or None,
        thread_type=thread_filter_value(thread) if thread else None,
    )


def _is_stainless(tag: str | None) -> bool:
    material = extract_material(tag)
    return material is not None and material.base == "stainless"


def score_compatibility(
    source: CandidateMetadata,
    candidate: SearchCandidate,
    thread_type: str | None = None,
) -> CompatibilityMatch:
    """Score how well ``candidate`` goes with the source product.

    The base is semantic similarity on a 0-100 scale. Matching attributes
    add the ``*_POINTS`` constants on top, capped at 100.

    Args:
        source: Metadata of the source product
        candidate: Possible companion product
        thread_type: Thread of the source when its metadata has none
    """
    target = candidate.metadata
    score = candidate.score * 100
    reasons = []

    source_thread = extract_thread(source.thread_type or thread_type)
    target_thread = extract_thread(target.thread_type)
    if source_thread and target_thread and source_thread.matches(target_thread):
        score += THREAD_MATCH_POINTS
        reasons.append(f"Matching thread type: {source_thread.designation}")

    if source.material and target.material:
        source_material = extract_material(source.material)
        target_material = extract_material(target.material)
        same = (
            source_material.code == target_material.code
            if source_material and target_material
            else source.material.lower() == target.material.lower()
        )
        both_stainless = _is_stainless(source.material) and _is_stainless(target.material)
        if both_stainless:
            score += STAINLESS_PAIR_POINTS
        if same:
            score += SAME_MATERIAL_POINTS
            reasons.append(f"Same material: {source.material}")
        elif both_stainless:
            reasons.append("Compatible stainless steel materials")

    if target.standard:
        reasons.append(f"Standard: {target.standard}")

    if not reasons:
        reasons.append("Semantically similar product")

    return CompatibilityMatch(
        candidate=candidate,
        compatibility_score=min(round(score), MAX_COMPATIBILITY_SCORE),
        semantic_score=round(candidate.score * 100),
        reasons=tuple(reasons),
    )


def rank_compatible(
    source: CandidateMetadata,
    candidates: list[SearchCandidate],
    thread_type: str | None = None,
    source_id: str | None = None,
) -> list[CompatibilityMatch]:
    """Score candidates and order them by compatibility score (stable).

    The source chunk itself (``source_id``) is never returned.
    """
    matches = [
        score_compatibility(source, candidate, thread_type)
        for candidate in candidates
        if candidate.id != source_id
    ]
    matches.sort(key=lambda m: m.compatibility_score, reverse=True)
    logger.debug(f"Ranked {len(matches)} compatible products")
    return matches
