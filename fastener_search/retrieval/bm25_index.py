"""BM25 keyword search index for catalogue chunks."""

import logging
import pickle
import re
from pathlib import Path

from rank_bm25 import BM25Okapi

from fastener_search.models.search import CandidateMetadata, SearchCandidate, format_number
from fastener_search.retrieval.query_classifier import THREAD_PATTERN, extract_thread
from fastener_search.retrieval.standards import STANDARD_PATTERN, normalize_standard_code

logger = logging.getLogger(__name__)

# Keeps grades and part numbers whole: "8.8", "a2-70", "1.4301", "iso898-1"
_TOKEN_PATTERN = re.compile(r"[^\W_]+(?:[.\-/][^\W_]+)*")

# Metadata tags indexed next to the chunk text
_TAG_FIELDS = ("supplier", "product_type", "material", "thread_type", "head_type", "standard")


def _fold_standard(match: re.Match) -> str:
    code = normalize_standard_code(match.group(0))
    return f" {code.key.lower()} " if code else match.group(0)


def _fold_thread(match: re.Match) -> str:
    thread = extract_thread(match.group(0))
    if thread is None:
        return match.group(0)
    size = f"m{format_number(thread.diameter)}"
    full = thread.designation.lower()
    return f" {size} {full} " if full != size else f" {size} "


def tokenize(text: str) -> list[str]:
    """Tokenize text for BM25.

    Standard references fold to their lookup key ("DIN 933" -> "din933") and
    thread designations to the size plus the full form ("M8x40" -> "m8",
    "m8x40"), so queries and catalogue text written differently still share
    tokens.

    Args:
        text: Text to tokenize

    Returns:
        List of tokens
    """
    if not text:
        return []
    folded = STANDARD_PATTERN.sub(_fold_standard, text)
    folded = THREAD_PATTERN.sub(_fold_thread, folded)
    tokens = []
    for token in _TOKEN_PATTERN.findall(folded.lower()):
        tokens.append(token)
        # "a2-70" also matches a query for "a2"
        if "-" in token:
            tokens.extend(part for part in token.split("-") if part)
    return tokens


class BM25Index:
    """BM25 keyword search index for catalogue chunks.

    Provides keyword search using the BM25 algorithm, with add, remove,
    persistence and corruption detection.
    """

    def __init__(
        self,
        persist_path: Path | None = None,
        k1: float = 1.5,
        b: float = 0.75,
    ):
        """Initialize BM25 index.

        Args:
            persist_path: Path to persist index to disk
            k1: BM25 k1 parameter (term frequency saturation)
            b: BM25 b parameter (length normalization)
        """
        self.persist_path = persist_path
        self.k1 = k1
        self.b = b

        self.doc_ids: list[str] = []
        self.texts: list[str] = []
        self.metadata: dict[str, CandidateMetadata] = {}
        self.bm25: BM25Okapi | None = None
        self.tokenized_corpus: list[list[str]] = []

        logger.info(f"Initialized BM25Index with k1={k1}, b={b}")

    def __len__(self) -> int:
        return len(self.doc_ids)

    def _document_tokens(self, text: str, metadata: CandidateMetadata) -> list[str]:
        tags = " ".join(getattr(metadata, name) or "" for name in _TAG_FIELDS)
        return tokenize(f"{text} {tags}")

    def add_documents(
        self,
        doc_ids: list[str],
        texts: list[str],
        metadata: list[CandidateMetadata],
    ) -> None:
        """Add documents to the index.

        IDs already in the index are replaced.

        Args:
            doc_ids: List of chunk IDs
            texts: List of chunk texts
            metadata: Metadata for each chunk

        Raises:
            ValueError: If the three lists differ in length
        """
        if len(doc_ids) != len(texts) or len(doc_ids) != len(metadata):
            raise ValueError("doc_ids, texts, and metadata must have same length")

        # A repeated ID within the batch keeps its last text and metadata
        batch = {}
        for doc_id, text, meta in zip(doc_ids, texts, metadata):
            batch[doc_id] = (text, meta)

        existing = set(batch) & set(self.doc_ids)
        if existing:
            self._remove(existing)

        for doc_id, (text, meta) in batch.items():
            self.doc_ids.append(doc_id)
            self.texts.append(text)
            self.metadata[doc_id] = meta
            self.tokenized_corpus.append(self._document_tokens(text, meta))

        self._rebuild_bm25()

        logger.info(f"Added {len(batch)} documents to BM25 index")

    def _remove(self, doc_ids: set[str]) -> int:
        indices_to_remove = [i for i, doc_id in enumerate(self.doc_ids) if doc_id in doc_ids]
        # Reverse order keeps the remaining indices valid
        for i in reversed(indices_to_remove):
            self.metadata.pop(self.doc_ids[i], None)
            del self.doc_ids[i]
            del self.texts[i]
            del self.tokenized_corpus[i]
        return len(indices_to_remove)

    def remove_documents(self, doc_ids: list[str]) -> None:
        """Remove chunks from the index.

        Args:
            doc_ids: List of chunk IDs to remove
        """
        removed_count = self._remove(set(doc_ids))
        if removed_count > 0:
            self._rebuild_bm25()
            logger.info(f"Removed {removed_count} documents from BM25 index")

    def remove_document(self, document_id: str) -> int:
        """Remove every chunk of one catalogue document."""
        chunk_ids = {
            doc_id for doc_id, meta in self.metadata.items() if meta.document_id == document_id
        }
        removed_count = self._remove(chunk_ids)
        if removed_count > 0:
            self._rebuild_bm25()
            logger.info(f"Removed {removed_count} chunks of document '{document_id}' from BM25 index")
        return removed_count

    def search(
        self,
        query: str,
        top_k: int = 10,
    ) -> list[tuple[str, float]]:
        """Search index and return top-k results.

        Args:
            query: Search query
            top_k: Number of results to return

        Returns:
            List of (doc_id, score) tuples sorted by score descending
        """
        if self.bm25 is None or len(self.doc_ids) == 0:
            return []

        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        scores = self.bm25.get_scores(query_tokens)
        top_indices = sorted(range(len(scores)), key=lambda i: scores[i], reverse=True)[:top_k]

        return [
            (self.doc_ids[i], float(scores[i]))
            for i in top_indices
            if scores[i] > 0  # Only return docs with non-zero scores
        ]

    def search_candidates(self, query: str, top_k: int = 10) -> list[SearchCandidate]:
        """Search and return hits as candidates.

        BM25 scores are not similarities, so candidates carry score 0.0; the
        keyword rank only feeds the rank fusion.
        """
        positions = {doc_id: i for i, doc_id in enumerate(self.doc_ids)}
        candidates = []
        for doc_id, _score in self.search(query, top_k=top_k):
            candidates.append(
                SearchCandidate(
                    id=doc_id,
                    score=0.0,
                    content=self.texts[positions[doc_id]],
                    metadata=self.metadata.get(doc_id, CandidateMetadata()),
                )
            )
        return candidates

    def _rebuild_bm25(self) -> None:
        """Rebuild BM25 index from tokenized corpus."""
        if len(self.tokenized_corpus) > 0:
            self.bm25 = BM25Okapi(self.tokenized_corpus, k1=self.k1, b=self.b)
            logger.debug(f"Rebuilt BM25 index with {len(self.tokenized_corpus)} documents")
        else:
            self.bm25 = None
            logger.debug("BM25 index is empty")

    def _clear(self) -> None:
        self.doc_ids = []
        self.texts = []
        self.metadata = {}
        self.tokenized_corpus = []
        self.bm25 = None

    def save(self) -> None:
        """Persist index to disk."""
        if self.persist_path is None:
            logger.warning("No persist_path configured, skipping save")
            return

        self.persist_path.parent.mkdir(parents=True, exist_ok=True)

        index_data = {
            "doc_ids": self.doc_ids,
            "texts": self.texts,
            "metadata": {doc_id: meta.to_dict() for doc_id, meta in self.metadata.items()},
            "tokenized_corpus": self.tokenized_corpus,
            "k1": self.k1,
            "b": self.b,
        }

        with open(self.persist_path, "wb") as f:
            pickle.dump(index_data, f)

        logger.info(f"Saved BM25 index to {self.persist_path}")

    def load(self) -> None:
        """Load index from disk.

        A missing file leaves the index empty; an unreadable one is logged
        and also leaves it empty (rebuild it from the vector store).
        """
        if self.persist_path is None:
            logger.warning("No persist_path configured, skipping load")
            return

        if not self.persist_path.exists():
            logger.info(f"No saved index found at {self.persist_path}")
            return

        try:
            with open(self.persist_path, "rb") as f:
                index_data = pickle.load(f)

            self.doc_ids = index_data["doc_ids"]
            self.texts = index_data["texts"]
            self.metadata = {
                doc_id: CandidateMetadata.from_mapping(meta)
                for doc_id, meta in index_data["metadata"].items()
            }
            self.tokenized_corpus = index_data["tokenized_corpus"]
            self.k1 = index_data.get("k1", self.k1)
            self.b = index_data.get("b", self.b)

            self._rebuild_bm25()

            logger.info(
                f"Loaded BM25 index from {self.persist_path} with {len(self.doc_ids)} documents"
            )

        except Exception as e:
            logger.error(f"Failed to load BM25 index: {e}")
            self._clear()

    def rebuild_from_chunks(self, chunks: list[SearchCandidate]) -> None:
        """Rebuild the index from stored chunks.

        Used to recover from corruption or to initialize from the vector
        store.

        Args:
            chunks: Chunks as returned by ``VectorStore.get_all_chunks``
        """
        logger.info(f"Rebuilding BM25 index from {len(chunks)} chunks")
        self._clear()

        if not chunks:
            logger.warning("No chunks provided for rebuild")
            return

        self.add_documents(
            [chunk.id for chunk in chunks],
            [chunk.content for chunk in chunks],
            [chunk.metadata for chunk in chunks],
        )
        logger.info(f"Rebuilt BM25 index with {len(chunks)} chunks")

    def detect_corruption(self) -> bool:
        """Detect if index is corrupted.

        Returns:
            True if corruption detected, False otherwise
        """
        if len(self.doc_ids) != len(self.texts):
            logger.warning("Corruption detected: doc_ids and texts length mismatch")
            return True

        if len(self.doc_ids) != len(self.tokenized_corpus):
            logger.warning("Corruption detected: doc_ids and tokenized_corpus length mismatch")
            return True

        if len(set(self.doc_ids)) != len(self.doc_ids):
            logger.warning("Corruption detected: duplicate doc_ids")
            return True

        if len(self.doc_ids) > 0 and self.bm25 is None:
            logger.warning("Corruption detected: documents exist but BM25 index is None")
            return True

        if self.bm25 is not None:
            try:
                self.search("test", top_k=1)
            except Exception as e:
                logger.warning(f"Corruption detected: search failed with {e}")
                return True

        return False
