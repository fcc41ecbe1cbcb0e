"""Query classification, standard equivalences and hybrid reranking."""

from fastener_search.retrieval.bm25_index import BM25Index
from fastener_search.retrieval.hybrid_search import HybridReranker, RankingWeights
from fastener_search.retrieval.query_classifier import QueryClassifier, classify_query
from fastener_search.retrieval.standards import (
    DEFAULT_STANDARD_TABLE,
    StandardTable,
    find_standard,
    get_equivalents_fast,
    normalize_standard_code,
)

__all__ = [
    "BM25Index",
    "DEFAULT_STANDARD_TABLE",
    "HybridReranker",
    "QueryClassifier",
    "RankingWeights",
    "StandardTable",
    "classify_query",
    "find_standard",
    "get_equivalents_fast",
    "normalize_standard_code",
]
