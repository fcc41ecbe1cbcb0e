"""Tests for hybrid reranking around fastener standards.

Covers exact-match dominance, the direct-over-equivalent ordering, the
no-starvation fallback and stable ordering.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fastener_search.config import Settings
from fastener_search.models.search import (
    CandidateMetadata,
    RankedResult,
    SearchCandidate,
    SearchFilters,
    ThreadSpec,
)
from fastener_search.retrieval.hybrid_search import (
    HybridReranker,
    RankingWeights,
    apply_similarity_threshold,
    build_search_filters,
    filter_by_exact_standard,
    get_standard_suggestions,
    matches_filters,
    normalize_filters,
    normalize_metadata_tags,
    should_use_exact_match,
    should_use_keyword_search,
    should_use_vector_search,
    similarity_threshold,
    thread_filter_value,
)
from fastener_search.retrieval.query_classifier import classify_query

scores = st.floats(min_value=0.0, max_value=1.0, allow_nan=False)


def candidate(id: str, score: float, content: str = "", **metadata) -> SearchCandidate:
    return SearchCandidate(id=id, score=score, content=content, metadata=CandidateMetadata(**metadata))


def ranked(id: str, exact: bool, vector_score: float = 0.5) -> RankedResult:
    return RankedResult(
        candidate=candidate(id, vector_score),
        hybrid_score=vector_score + (2.0 if exact else 0.0),
        vector_score=vector_score,
        exact_standard_match=exact,
    )


@pytest.fixture
def reranker():
    return HybridReranker()


class TestHybridRerankerProperties:
    """Property-based tests for the hybrid score."""

    @settings(max_examples=200, deadline=None)
    @given(exact_score=scores, other_score=scores)
    def test_exact_match_dominates_similarity(self, exact_score, other_score):
        """An equivalent-standard match with any similarity beats a non-exact
        result with any similarity and every attribute boost."""
        analysis = classify_query("DIN 933 M8 A2 bolt")
        exact = candidate("exact", exact_score, standard="ISO 4017")
        other = candidate(
            "other",
            other_score,
            standard="DIN 931",
            thread_type="M8",
            material="A2",
            product_type="bolt",
        )

        results = HybridReranker().rerank_results([other, exact], analysis)

        assert [r.id for r in results] == ["exact", "other"]
        assert results[0].hybrid_score > results[1].hybrid_score

    @settings(max_examples=200, deadline=None)
    @given(direct_score=scores, equivalent_score=scores)
    def test_direct_code_outranks_equivalent(self, direct_score, equivalent_score):
        analysis = classify_query("DIN 933 M8")
        direct = candidate("direct", direct_score, standard="DIN 933")
        equivalent = candidate("equivalent", equivalent_score, standard="ISO 4017", thread_type="M8")

        results = HybridReranker().rerank_results([equivalent, direct], analysis)

        assert results[0].id == "direct"

    @settings(max_examples=100, deadline=None)
    @given(vector_scores=st.lists(scores, min_size=1, max_size=20))
    def test_no_starvation_without_exact_matches(self, vector_scores):
        """With zero exact matches the reranked list comes back unchanged."""
        analysis = classify_query("DIN 933 M8")
        candidates = [
            candidate(f"c{i}", s, standard="DIN 931") for i, s in enumerate(vector_scores)
        ]
        results = HybridReranker().rerank_results(candidates, analysis)

        filtered = filter_by_exact_standard(results, analysis)

        assert filtered == results

    @settings(max_examples=100, deadline=None)
    @given(score=scores, count=st.integers(min_value=2, max_value=10))
    def test_ties_keep_input_order(self, score, count):
        analysis = classify_query("A2 stainless bolt")
        candidates = [candidate(f"c{i}", score, material="A2") for i in range(count)]

        results = HybridReranker().rerank_results(candidates, analysis)

        assert [r.id for r in results] == [c.id for c in candidates]

    @settings(max_examples=100, deadline=None)
    @given(vector_scores=st.lists(scores, max_size=20))
    def test_results_sorted_by_hybrid_score(self, vector_scores):
        analysis = classify_query("DIN 933 M8")
        candidates = [
            candidate(f"c{i}", s, standard="DIN 933" if i % 3 == 0 else None)
            for i, s in enumerate(vector_scores)
        ]
        results = HybridReranker().rerank_results(candidates, analysis)

        assert len(results) == len(candidates)
        hybrid = [r.hybrid_score for r in results]
        assert hybrid == sorted(hybrid, reverse=True)


class TestHybridRerankerUnit:
    """Unit tests for the hybrid score."""

    def test_din_933_m8_scenario(self, reranker):
        """DIN 933 beats its equivalent ISO 4017 despite lower similarity."""
        analysis = classify_query("DIN 933 M8")
        c1 = candidate("c1", 0.4, standard="ISO 4017")
        c2 = candidate("c2", 0.3, standard="DIN 933")

        results = reranker.rerank_results([c1, c2], analysis)

        assert [r.id for r in results] == ["c2", "c1"]
        assert results[0].exact_standard_match and results[1].exact_standard_match
        assert results[0].matched_on == ("standard",)
        assert results[1].matched_on == ("equivalent_standard",)
        assert results[0].hybrid_score == pytest.approx(0.3 + 2.0 + 1.5)
        assert results[1].hybrid_score == pytest.approx(0.4 + 2.0)

    def test_attribute_boosts(self, reranker):
        analysis = classify_query("M8 A2 bolt")
        c = candidate("c", 0.5, thread_type="M8x40", material="A2-70", product_type="hex bolt")

        result = reranker.score(c, analysis)

        assert result.matched_on == ("thread", "material", "product_type")
        assert result.hybrid_score == pytest.approx(0.5 + 0.1 + 0.05 + 0.05)
        assert result.exact_standard_match is False

    def test_thread_mismatch_gets_no_boost(self, reranker):
        analysis = classify_query("M8x40")
        result = reranker.score(candidate("c", 0.5, thread_type="M8x50"), analysis)
        assert result.hybrid_score == pytest.approx(0.5)
        assert result.matched_on == ()

    def test_family_material_matches_grade(self, reranker):
        analysis = classify_query("stainless washer")
        result = reranker.score(candidate("c", 0.5, material="A4"), analysis)
        assert "material" in result.matched_on

    def test_standard_found_in_content(self, reranker):
        analysis = classify_query("DIN 933")
        result = reranker.score(candidate("c", 0.2, content="Hexagon bolt DIN 933 A2"), analysis)
        assert result.exact_standard_match
        assert result.matched_on[0] == "standard_content"
        assert result.hybrid_score == pytest.approx(0.2 + 2.0 + 1.5)

    def test_equivalent_in_content(self, reranker):
        analysis = classify_query("DIN 933")
        result = reranker.score(candidate("c", 0.2, content="Hexagon screw ISO 4017"), analysis)
        assert result.exact_standard_match
        assert result.hybrid_score == pytest.approx(0.2 + 2.0)

    def test_tag_decides_over_content(self, reranker):
        """A DIN 931 chunk that mentions DIN 933 in passing is not a match."""
        analysis = classify_query("DIN 933")
        cross_ref = candidate("cross_ref", 0.9, content="Partial thread, see DIN 933", standard="DIN 931")
        equivalent = candidate("equivalent", 0.1, standard="ISO 4017")

        results = reranker.rerank_results([cross_ref, equivalent], analysis)

        assert [r.id for r in results] == ["equivalent", "cross_ref"]
        assert results[1].exact_standard_match is False
        assert results[1].matched_on == ()
        assert filter_by_exact_standard(results, analysis, min_exact_matches=1) == results[:1]

    def test_similar_standard_is_penalized(self, reranker):
        analysis = classify_query("DIN 933")
        similar = candidate("similar", 0.5, standard="DIN 931")
        unrelated = candidate("unrelated", 0.5, standard="DIN 125")

        results = reranker.rerank_results([similar, unrelated], analysis)

        assert [r.id for r in results] == ["unrelated", "similar"]
        assert results[0].hybrid_score == pytest.approx(0.5)
        assert results[1].hybrid_score == pytest.approx(0.5 - 0.15)

    def test_penalty_never_goes_below_zero(self, reranker):
        result = reranker.score(candidate("c", 0.1, standard="ISO 4014"), classify_query("DIN 933"))
        assert result.hybrid_score == 0.0

    def test_supplier_boost(self, reranker):
        analysis = classify_query("A2 bolt wurth")
        result = reranker.score(candidate("c", 0.5, material="A2", supplier="Würth"), analysis)
        assert result.matched_on == ("material", "supplier")
        assert result.hybrid_score == pytest.approx(0.5 + 0.05 + 0.05)

    def test_head_type_boost(self, reranker):
        analysis = classify_query("hex bolt")
        result = reranker.score(candidate("c", 0.5, product_type="bolt", head_type="Hexagon"), analysis)
        assert result.matched_on == ("product_type", "head_type")
        assert result.hybrid_score == pytest.approx(0.5 + 0.05 + 0.05)

        other = reranker.score(candidate("d", 0.5, head_type="countersunk"), analysis)
        assert "head_type" not in other.matched_on

    def test_no_standard_boost_for_descriptive_query(self, reranker):
        analysis = classify_query("A2 stainless bolt")
        result = reranker.score(candidate("c", 0.6, standard="DIN 933"), analysis)
        assert result.exact_standard_match is False
        assert result.hybrid_score == pytest.approx(0.6)

    def test_empty_candidates(self, reranker):
        assert reranker.rerank_results([], classify_query("DIN 933")) == []

    def test_equal_hybrid_scores_break_on_vector_score(self):
        weights = RankingWeights(
            thread_match_boost=0.25, material_match_boost=0.0, product_type_match_boost=0.0
        )
        analysis = classify_query("M8 bolt")
        with_thread = candidate("a", 0.5, thread_type="M8")
        higher_vector = candidate("b", 0.75)

        results = HybridReranker(weights=weights).rerank_results([with_thread, higher_vector], analysis)

        assert results[0].hybrid_score == pytest.approx(results[1].hybrid_score)
        assert [r.id for r in results] == ["b", "a"]


class TestRankingWeightsUnit:
    """Unit tests for boost validation."""

    def test_defaults(self):
        weights = RankingWeights()
        assert weights.max_secondary_boost == pytest.approx(0.3)
        assert weights.max_score == pytest.approx(4.8)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"exact_match_boost": 1.0},
            {"direct_match_boost": 1.2},
            {"thread_match_boost": 1.0},
        ],
    )
    def test_dominance_is_enforced(self, kwargs):
        with pytest.raises(ValueError, match="must be greater than"):
            RankingWeights(**kwargs)

    def test_from_settings(self):
        settings = Settings(_env_file=None, exact_match_boost=3.0, direct_match_boost=2.0)
        weights = RankingWeights.from_settings(settings)
        assert weights.exact_match_boost == 3.0
        assert weights.direct_match_boost == 2.0
        assert weights.max_score == pytest.approx(settings.max_hybrid_score)


class TestExactStandardFilterUnit:
    """Unit tests for exact-standard post-filtering and thresholds."""

    def test_enough_exact_matches_drop_the_rest(self):
        analysis = classify_query("DIN 933")
        results = [ranked(f"e{i}", True) for i in range(3)] + [ranked("n", False)]
        filtered = filter_by_exact_standard(results, analysis, min_exact_matches=3)
        assert [r.id for r in filtered] == ["e0", "e1", "e2"]

    def test_few_exact_matches_keep_fallback(self):
        analysis = classify_query("DIN 933")
        results = [ranked("e", True)] + [ranked(f"n{i}", False) for i in range(8)]
        filtered = filter_by_exact_standard(results, analysis, min_exact_matches=3, max_fallback=5)
        assert [r.id for r in filtered] == ["e", "n0", "n1", "n2", "n3", "n4"]

    def test_non_exact_query_is_untouched(self):
        analysis = classify_query("hex bolt")
        results = [ranked("a", False), ranked("b", True)]
        assert filter_by_exact_standard(results, analysis) == results

    def test_threshold_keeps_exact_matches(self):
        results = [ranked("e", True, 0.1), ranked("hi", False, 0.8), ranked("lo", False, 0.2)]
        kept = apply_similarity_threshold(results, 0.5)
        assert [r.id for r in kept] == ["e", "hi"]

    def test_similarity_threshold(self):
        assert similarity_threshold(classify_query("DIN 933"), 0.5, 0.3) == 0.3
        assert similarity_threshold(classify_query("DIN 933"), 0.2, 0.3) == 0.2
        assert similarity_threshold(classify_query("hex bolt"), 0.5, 0.3) == 0.5

    def test_search_mode_predicates(self):
        assert should_use_exact_match(classify_query("DIN 933"))
        assert not should_use_exact_match(classify_query("M8 bolt"))
        assert should_use_keyword_search(classify_query("M8 bolt"))
        assert should_use_keyword_search(classify_query("A2"))
        assert not should_use_keyword_search(classify_query("hex bolt"))
        assert should_use_vector_search(classify_query("hex bolt"))
        assert not should_use_vector_search(classify_query(""))
        assert not should_use_vector_search(classify_query("DIN 933 M8"))
        assert not should_use_vector_search(classify_query("A4-80"))
        assert should_use_vector_search(classify_query("something shiny"))


class TestSearchFiltersUnit:
    """Unit tests for filter construction and tag normalization."""

    def test_filters_from_exact_query(self):
        """The product type the standard implies is left out."""
        filters = build_search_filters(classify_query("DIN 933 M8x40 A2"))
        assert filters == SearchFilters(
            material=("A2", "stainless"),
            thread_type="M8",
            standard=("DIN 933", "ISO 4017"),
        )

    def test_product_word_in_query_filters(self):
        filters = build_search_filters(classify_query("DIN 933 screw"))
        assert filters == SearchFilters(product_type="screw", standard=("DIN 933", "ISO 4017"))

    def test_equivalent_with_own_product_wording_passes(self):
        metadata = normalize_metadata_tags(
            CandidateMetadata(standard="ISO 4017", product_type="hexagon head screw")
        )
        assert matches_filters(metadata, build_search_filters(classify_query("DIN 933")))

    def test_filters_from_thread_query(self):
        filters = build_search_filters(classify_query("M8x40 A2 hex bolt reyher"))
        assert filters == SearchFilters(
            product_type="bolt",
            material=("A2", "stainless"),
            thread_type="M8",
            supplier="reyher",
        )

    def test_family_material_admits_members(self):
        filters = build_search_filters(classify_query("stainless washer"))
        assert filters.material == ("stainless", "A2", "A4")
        assert filters.product_type == "washer"

    def test_descriptive_query_has_no_filters(self):
        assert build_search_filters(classify_query("something shiny")).is_empty()

    def test_where_clause(self):
        where = build_search_filters(classify_query("DIN 933")).to_where()
        assert where == {"standard": {"$in": ["DIN 933", "ISO 4017"]}}

        where = build_search_filters(classify_query("DIN 933 M8")).to_where()
        assert where == {
            "$and": [
                {"thread_type": "M8"},
                {"standard": {"$in": ["DIN 933", "ISO 4017"]}},
            ]
        }

        where = build_search_filters(classify_query("M8 A4 bolt")).to_where()
        assert where == {
            "$and": [
                {"product_type": "bolt"},
                {"material": {"$in": ["A4", "stainless"]}},
                {"thread_type": "M8"},
            ]
        }

    def test_single_clause_is_not_wrapped(self):
        assert SearchFilters(supplier="reyher").to_where() == {"supplier": "reyher"}
        assert SearchFilters().to_where() is None

    def test_merge_prefers_override(self):
        merged = SearchFilters(material=("A2", "stainless"), thread_type="M8").merge(
            SearchFilters(material="A4")
        )
        assert merged == SearchFilters(material="A4", thread_type="M8")

    def test_normalize_metadata_tags(self):
        metadata = normalize_metadata_tags(
            CandidateMetadata(
                document_id="doc",
                standard="din933",
                material="A2-70",
                thread_type="M8x40",
                product_type="Hex Bolt",
                supplier="Würth",
            )
        )
        assert metadata == CandidateMetadata(
            document_id="doc",
            standard="DIN 933",
            material="A2",
            thread_type="M8",
            product_type="bolt",
            supplier="wurth",
        )

    def test_unparsed_tags_are_kept(self):
        metadata = normalize_metadata_tags(
            CandidateMetadata(standard="house spec", material="unobtainium", product_type="Special Thing")
        )
        assert metadata.standard == "house spec"
        assert metadata.material == "unobtainium"
        assert metadata.product_type == "special_thing"

    def test_head_type_tags(self):
        assert normalize_metadata_tags(CandidateMetadata(head_type="Allen")).head_type == "socket"
        assert normalize_metadata_tags(CandidateMetadata(head_type=" Oval ")).head_type == "oval"

    def test_normalize_filters(self):
        filters = normalize_filters(
            SearchFilters(material="a4-80", thread_type="m10x1.25", standard=("DIN 933",))
        )
        assert filters == SearchFilters(material="A4", thread_type="M10", standard=("DIN 933",))

    def test_matches_filters(self):
        metadata = CandidateMetadata(standard="ISO 4017", thread_type="M8")
        assert matches_filters(metadata, SearchFilters(standard=("DIN 933", "ISO 4017")))
        assert matches_filters(metadata, SearchFilters(thread_type="M8"))
        assert not matches_filters(metadata, SearchFilters(thread_type="M10"))
        assert not matches_filters(metadata, SearchFilters(material="A2"))
        assert matches_filters(metadata, SearchFilters())

    def test_thread_filter_value(self):
        assert thread_filter_value(ThreadSpec(diameter=10, pitch=1.25, length=50)) == "M10"

    def test_standard_suggestions(self):
        suggestion = get_standard_suggestions("DIN 933")
        assert suggestion.equivalents == ("ISO 4017",)
        assert "DIN 931" in suggestion.similar
        assert get_standard_suggestions("DIN 99999") is None
