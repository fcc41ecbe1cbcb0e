"""Search service: classification, retrieval and hybrid reranking."""

import time

from fastener_search.clients.openai_client import OpenAIClient
from fastener_search.config import Settings, get_settings
from fastener_search.logging_config import get_logger, log_progress
from fastener_search.models.chunk import CatalogueChunk, EmbeddedChunk
from fastener_search.models.query import (
    ClassificationSummary,
    CompatibilityRequest,
    CompatibilityResponse,
    CompatibleProduct,
    DocumentRef,
    SearchMetrics,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
    SearchSuggestions,
    SourceProduct,
)
from fastener_search.models.search import (
    QueryAnalysis,
    RankedResult,
    SearchCandidate,
    SearchFilters,
    StandardSuggestion,
)
from fastener_search.retrieval.bm25_index import BM25Index
from fastener_search.retrieval.compatibility import (
    DEFAULT_PRODUCT_TYPE,
    compatibility_filters,
    rank_compatible,
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
    should_use_keyword_search,
    should_use_vector_search,
    similarity_threshold,
)
from fastener_search.retrieval.query_classifier import QueryClassifier
from fastener_search.retrieval.rrf import merge_candidates
from fastener_search.retrieval.standards import DEFAULT_STANDARD_TABLE, StandardTable
from fastener_search.storage.vector_store import VectorStore

logger = get_logger(__name__)

EMBEDDING_BATCH_SIZE = 100


class SearchServiceError(Exception):
    """Raised when a collaborator (embeddings, vector store, index) fails."""

    pass


def make_snippet(content: str, length: int = 200) -> str:
    """First ``length`` characters of ``content``, with "..." when cut."""
    if len(content) <= length:
        return content
    return content[:length] + "..."


def _dedupe(candidates: list[SearchCandidate]) -> list[SearchCandidate]:
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.id not in seen:
            seen.add(candidate.id)
            unique.append(candidate)
    return unique


class SearchService:
    """Service handling the catalogue search pipeline.

    1. Classify the query (standard, thread, material, product type, ...)
    2. Build metadata filters from the classification and the request
    3. BM25 keyword search for queries carrying literal codes
    4. Vector search, unless a confident code query already has keyword
       hits; widened when the filters leave too few candidates
    5. Fuse both candidate lists with RRF
    6. Hybrid rerank, exact-standard filter, similarity threshold, limit

    Also writes chunks to both indexes and serves the compatibility lookup,
    which runs on the same collaborators.
    """

    def __init__(
        self,
        openai_client: OpenAIClient | None = None,
        vector_store: VectorStore | None = None,
        bm25_index: BM25Index | None = None,
        classifier: QueryClassifier | None = None,
        reranker: HybridReranker | None = None,
        table: StandardTable | None = None,
    ):
        """Initialize search service.

        Args:
            openai_client: OpenAI client for query and chunk embeddings
            vector_store: Vector store holding chunk embeddings
            bm25_index: BM25 index for keyword search
            classifier: Query classifier
            reranker: Hybrid reranker
            table: Standard equivalence table
        """
        self.settings: Settings = get_settings()
        self.table = table or DEFAULT_STANDARD_TABLE

        self.openai_client = openai_client or OpenAIClient(
            api_key=self.settings.openai_api_key,
            model=self.settings.openai_model,
            embedding_model=self.settings.openai_embedding_model,
            timeout=self.settings.openai_timeout,
        )
        self.vector_store = vector_store or VectorStore(
            persist_directory=self.settings.vector_db_path,
            collection_name=self.settings.collection_name,
        )

        if self.settings.enable_keyword_search:
            if bm25_index is None:
                bm25_index = BM25Index(
                    persist_path=self.settings.bm25_index_path,
                    k1=self.settings.bm25_k1,
                    b=self.settings.bm25_b,
                )
                bm25_index.load()
            self.bm25_index = bm25_index
        else:
            self.bm25_index = None

        self.classifier = classifier or QueryClassifier(self.table)
        self.reranker = reranker or HybridReranker(
            table=self.table,
            weights=RankingWeights.from_settings(self.settings),
        )

        logger.info(
            f"SearchService initialized: keyword_search={self.settings.enable_keyword_search}, "
            f"attribute_filters={self.settings.enable_attribute_filters}, "
            f"standards={len(self.table)}"
        )

    async def ensure_keyword_index(self) -> None:
        """Rebuild the BM25 index from the vector store when it is unusable.

        Covers a corrupt pickle and a missing one next to a populated
        collection.
        """
        if self.bm25_index is None:
            return

        corrupted = self.bm25_index.detect_corruption()
        if not corrupted and len(self.bm25_index) > 0:
            return

        stored = await self.vector_store.count_chunks()
        if not corrupted and stored == 0:
            return

        logger.warning(
            f"Rebuilding BM25 index (corrupted={corrupted}, "
            f"indexed={len(self.bm25_index)}, stored={stored})"
        )
        chunks = await self.vector_store.get_all_chunks()
        self.bm25_index.rebuild_from_chunks(chunks)
        self.bm25_index.save()

    async def search(self, request: SearchRequest) -> SearchResponse:
        """Execute the search pipeline.

        Args:
            request: Search request

        Returns:
            SearchResponse with ranked results, classification and metrics

        Raises:
            SearchServiceError: If embedding or retrieval fails
        """
        start_time = time.time()
        settings = self.settings

        analysis = self.classifier.classify(request.query)
        limit = min(request.limit or settings.default_limit, settings.max_limit)
        fetch_k = limit * settings.candidate_multiplier
        requested_threshold = (
            request.threshold if request.threshold is not None else settings.default_threshold
        )

        request_filters = normalize_filters(request.filters())
        filters = request_filters
        if settings.enable_attribute_filters:
            filters = build_search_filters(analysis).merge(request_filters)

        logger.info("=" * 80)
        logger.info(f"SEARCH START: '{request.query}'")
        logger.info(f"Classification: {analysis.summary()}")
        logger.info(f"Parameters: limit={limit}, fetch_k={fetch_k}, threshold={requested_threshold}")
        logger.info(f"Filters: {filters.as_dict() or 'none'}")
        logger.info("-" * 80)

        keyword_candidates = self._keyword_candidates(analysis, fetch_k, request_filters)
        vector_candidates, widened = await self._vector_candidates(
            analysis, fetch_k, filters, request_filters, keyword_hits=bool(keyword_candidates)
        )

        fused = merge_candidates(vector_candidates, keyword_candidates)
        logger.info(
            f"→ Fusion: vector={len(vector_candidates)}, keyword={len(keyword_candidates)} "
            f"→ {len(fused)} unique candidates"
        )

        ranked = self.reranker.rerank_results(fused, analysis)
        ranked = filter_by_exact_standard(
            ranked,
            analysis,
            min_exact_matches=settings.min_exact_matches,
            max_fallback=settings.non_exact_fallback,
        )
        threshold = similarity_threshold(
            analysis, requested_threshold, settings.exact_standard_threshold
        )
        ranked = apply_similarity_threshold(ranked, threshold)[:limit]

        results = [self._to_result_item(rank, result) for rank, result in enumerate(ranked, 1)]
        execution_time_ms = (time.time() - start_time) * 1000

        logger.info("-" * 80)
        logger.info(
            f"✓ SEARCH COMPLETE - {len(results)} results in {execution_time_ms:.0f}ms "
            f"(threshold={threshold}, exact={sum(1 for r in ranked if r.exact_standard_match)})"
        )
        logger.info("=" * 80)

        return SearchResponse(
            results=results,
            query=request.query,
            total_results=len(results),
            classification=ClassificationSummary(**analysis.summary()),
            suggestions=self._suggestions(analysis),
            metrics=SearchMetrics(
                vector_result_count=len(vector_candidates),
                keyword_result_count=len(keyword_candidates),
                fused_result_count=len(fused),
                filters_widened=widened,
                execution_time_ms=round(execution_time_ms, 2),
            ),
        )

    async def _vector_candidates(
        self,
        analysis: QueryAnalysis,
        top_k: int,
        filters: SearchFilters,
        fallback_filters: SearchFilters,
        keyword_hits: bool = False,
    ) -> tuple[list[SearchCandidate], bool]:
        """Filtered vector search, widened to ``fallback_filters`` when too narrow.

        Skipped for an empty query, and for a confident code query the
        keyword search already answered.
        """
        if not analysis.query.strip():
            logger.info("→ Vector search SKIPPED (empty query)")
            return [], False
        if keyword_hits and not should_use_vector_search(analysis):
            logger.info(
                f"→ Vector search SKIPPED (keyword hits for a "
                f"{analysis.query_type.value} query, confidence={analysis.confidence})"
            )
            return [], False

        try:
            embedding = await self.openai_client.embed_query(analysis.query)
            candidates = await self.vector_store.search(embedding, top_k=top_k, filters=filters)

            widened = False
            if len(candidates) < self.settings.min_filtered_results and filters != fallback_filters:
                logger.info(
                    f"→ Filtered search returned {len(candidates)} candidates, "
                    f"widening to {fallback_filters.as_dict() or 'no filters'}"
                )
                broader = await self.vector_store.search(
                    embedding, top_k=top_k, filters=fallback_filters
                )
                candidates = _dedupe(candidates + broader)
                widened = True
        except Exception as e:
            logger.error(f"Vector retrieval failed: {str(e)}", exc_info=True)
            raise SearchServiceError(f"Vector retrieval failed: {str(e)}") from e

        logger.info(f"→ Vector search: {len(candidates)} candidates (widened={widened})")
        return candidates, widened

    def _keyword_candidates(
        self,
        analysis: QueryAnalysis,
        top_k: int,
        filters: SearchFilters,
    ) -> list[SearchCandidate]:
        if self.bm25_index is None:
            return []
        if not should_use_keyword_search(analysis):
            logger.info("→ Keyword search SKIPPED (no codes in query)")
            return []

        try:
            candidates = self.bm25_index.search_candidates(analysis.query, top_k=top_k)
        except Exception as e:
            logger.error(f"Keyword search failed: {str(e)}", exc_info=True)
            raise SearchServiceError(f"Keyword search failed: {str(e)}") from e

        # Explicit request filters bind both channels
        candidates = [c for c in candidates if matches_filters(c.metadata, filters)]
        logger.info(f"→ Keyword search: {len(candidates)} candidates")
        return candidates

    def _to_result_item(self, rank: int, result: RankedResult) -> SearchResultItem:
        metadata = result.metadata
        score = result.hybrid_score / self.reranker.weights.max_score * self.settings.score_scale
        return SearchResultItem(
            id=result.id,
            rank=rank,
            content=result.content,
            snippet=make_snippet(result.content, self.settings.snippet_length),
            score=round(max(score, 0.0), 2),
            vector_score=round(result.vector_score, 4),
            exact_match=result.exact_standard_match,
            matched_on=list(result.matched_on),
            page_number=metadata.page_number,
            document=DocumentRef(
                id=metadata.document_id,
                filename=metadata.document_name,
                supplier=metadata.supplier,
            ),
            product_type=metadata.product_type,
            material=metadata.material,
            thread_type=metadata.thread_type,
            head_type=metadata.head_type,
            standard=metadata.standard,
        )

    def _suggestions(self, analysis: QueryAnalysis) -> SearchSuggestions | None:
        if analysis.extracted_standard is None:
            return None
        suggestion = self.get_standard_suggestions(analysis.extracted_standard.display)
        if suggestion is None:
            return None
        return SearchSuggestions(
            equivalent_standards=list(suggestion.equivalents),
            similar_standards=list(suggestion.similar),
        )

    def get_standard_suggestions(self, code: str) -> StandardSuggestion | None:
        """Equivalents and related standards of ``code`` (None when unknown)."""
        return get_standard_suggestions(code, self.table)

    async def index_chunks(self, chunks: list[CatalogueChunk]) -> int:
        """Embed chunks and write them to the vector store and BM25 index.

        Chunk IDs are upserted, so indexing the same chunks twice leaves one
        copy of each.

        Args:
            chunks: Catalogue chunks produced by the ingestion pipeline

        Returns:
            Number of chunks indexed

        Raises:
            SearchServiceError: If embedding or storage fails
        """
        if not chunks:
            return 0

        total = len(chunks)
        indexed = 0
        try:
            for start in range(0, total, EMBEDDING_BATCH_SIZE):
                batch = chunks[start : start + EMBEDDING_BATCH_SIZE]
                embeddings = await self.openai_client.embed_documents([c.content for c in batch])
                indexed += await self.vector_store.add_chunks(
                    [
                        EmbeddedChunk(chunk=chunk, embedding=embedding)
                        for chunk, embedding in zip(batch, embeddings)
                    ]
                )
                log_progress(logger, "Embedding chunks", indexed, total)

            if self.bm25_index is not None:
                self.bm25_index.add_documents(
                    [c.chunk_id for c in chunks],
                    [c.content for c in chunks],
                    [normalize_metadata_tags(c.candidate_metadata()) for c in chunks],
                )
                self.bm25_index.save()
        except Exception as e:
            logger.error(f"Indexing failed after {indexed}/{total} chunks: {str(e)}", exc_info=True)
            raise SearchServiceError(f"Indexing failed: {str(e)}") from e

        logger.info(f"Indexed {indexed} chunks")
        return indexed

    async def delete_document(self, document_id: str) -> int:
        """Remove a catalogue document from both indexes.

        Returns:
            Number of chunks removed from the vector store
        """
        try:
            removed = await self.vector_store.delete_document(document_id)
            if self.bm25_index is not None and self.bm25_index.remove_document(document_id):
                self.bm25_index.save()
        except Exception as e:
            logger.error(f"Failed to delete document '{document_id}': {str(e)}", exc_info=True)
            raise SearchServiceError(f"Failed to delete document: {str(e)}") from e
        return removed

    async def find_compatible(self, request: CompatibilityRequest) -> CompatibilityResponse:
        """Find products that go with the product described by the query.

        The best vector match (within the optional request filters) is the
        source product; companions are searched among the complementary
        product types with the same thread.

        Raises:
            SearchServiceError: If embedding or retrieval fails
        """
        source_filters = normalize_filters(
            SearchFilters(
                product_type=request.product_type,
                material=request.material,
                thread_type=request.thread_type,
            )
        )

        try:
            embedding = await self.openai_client.embed_query(request.query)
            sources = await self.vector_store.search(embedding, top_k=1, filters=source_filters)
            if not sources:
                logger.info(f"No source product found for '{request.query}'")
                return CompatibilityResponse(
                    total_results=0,
                    message="No matching product found for the query",
                )

            source = sources[0]
            product_type = (
                source.metadata.product_type
                or source_filters.product_type
                or DEFAULT_PRODUCT_TYPE
            )
            thread_type = source.metadata.thread_type or source_filters.thread_type
            candidates = await self.vector_store.search(
                embedding,
                top_k=request.limit + 1,
                filters=compatibility_filters(product_type, thread_type),
            )
        except Exception as e:
            logger.error(f"Compatibility lookup failed: {str(e)}", exc_info=True)
            raise SearchServiceError(f"Compatibility lookup failed: {str(e)}") from e

        matches = rank_compatible(source.metadata, candidates, thread_type, source_id=source.id)
        matches = matches[: request.limit]
        logger.info(
            f"Compatibility for '{source.id}' ({product_type}, {thread_type}): "
            f"{len(matches)} products"
        )

        snippet_length = self.settings.snippet_length
        return CompatibilityResponse(
            source_product=SourceProduct(
                id=source.id,
                snippet=make_snippet(source.content, snippet_length),
                product_type=product_type,
                thread_type=thread_type,
                material=source.metadata.material,
                document_name=source.metadata.document_name,
            ),
            compatible_products=[
                CompatibleProduct(
                    id=m.candidate.id,
                    content=m.candidate.content,
                    snippet=make_snippet(m.candidate.content, snippet_length),
                    compatibility_score=m.compatibility_score,
                    semantic_score=m.semantic_score,
                    document=DocumentRef(
                        id=m.candidate.metadata.document_id,
                        filename=m.candidate.metadata.document_name,
                        supplier=m.candidate.metadata.supplier,
                    ),
                    product_type=m.candidate.metadata.product_type,
                    material=m.candidate.metadata.material,
                    thread_type=m.candidate.metadata.thread_type,
                    head_type=m.candidate.metadata.head_type,
                    standard=m.candidate.metadata.standard,
                    reasons=list(m.reasons),
                )
                for m in matches
            ],
            total_results=len(matches),
        )

    async def close(self):
        """Close all resources."""
        await self.openai_client.close()
