"""Reciprocal Rank Fusion (RRF) for combining vector and keyword candidate lists."""

import dataclasses
from collections import defaultdict

from fastener_search.models.search import SearchCandidate


def reciprocal_rank_fusion(
    ranked_lists: list[list],
    weights: list[float] | None = None,
    k: int = 60,
    id_fn=lambda item: item.id,
) -> dict[str, float]:
    """Compute RRF scores from multiple ranked lists.

    RRF score for item d: sum over all rankings of weight_i / (k + rank(d))

    Args:
        ranked_lists: List of ranked result lists
        weights: Optional per-list weights (default: equal weights of 1.0)
        k: RRF smoothing constant (default 60)
        id_fn: Function to extract unique ID from an item

    Returns:
        Dict mapping item ID to RRF score
    """
    if weights is None:
        weights = [1.0] * len(ranked_lists)

    rrf_scores: dict[str, float] = defaultdict(float)

    for ranked_list, weight in zip(ranked_lists, weights):
        for rank, item in enumerate(ranked_list):
            item_id = id_fn(item)
            rrf_scores[item_id] += weight / (k + rank + 1)

    return dict(rrf_scores)


def merge_candidates(
    vector_candidates: list[SearchCandidate],
    keyword_candidates: list[SearchCandidate],
    vector_weight: float = 1.0,
    keyword_weight: float = 1.0,
    k: int = 60,
) -> list[SearchCandidate]:
    """Fuse vector and keyword hits into one deduplicated list in RRF order.

    Vector hits keep their similarity score. Hits found only by keyword
    search have no similarity and enter with score 0.0; they can still rank
    through exact-standard and attribute boosts.

    Args:
        vector_candidates: Hits from the vector store, best first
        keyword_candidates: Hits from the BM25 index, best first
        vector_weight: RRF weight of the vector list
        keyword_weight: RRF weight of the keyword list
        k: RRF smoothing constant

    Returns:
        Candidates ordered by fused rank (ties keep vector order first)
    """
    if not keyword_candidates:
        return list(vector_candidates)

    rrf_scores = reciprocal_rank_fusion(
        [vector_candidates, keyword_candidates],
        weights=[vector_weight, keyword_weight],
        k=k,
    )

    by_id: dict[str, SearchCandidate] = {}
    for candidate in vector_candidates:
        by_id.setdefault(candidate.id, candidate)
    for candidate in keyword_candidates:
        if candidate.id not in by_id:
            by_id[candidate.id] = dataclasses.replace(candidate, score=0.0)

    return sorted(by_id.values(), key=lambda c: rrf_scores[c.id], reverse=True)
