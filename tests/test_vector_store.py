"""Tests for VectorStore implementation."""

import pytest

from fastener_search.models.chunk import CatalogueChunk, EmbeddedChunk
from fastener_search.models.search import SearchFilters
from fastener_search.storage.vector_store import VectorStore


@pytest.fixture
def vector_store(tmp_path):
    """Create a temporary vector store for testing."""
    store = VectorStore(
        persist_directory=str(tmp_path / "vectordb"),
        collection_name="test_catalogue",
    )
    yield store
    # Cleanup
    store.reset()


def embedded(chunk_id, embedding, document_id="doc-1", **tags) -> EmbeddedChunk:
    return EmbeddedChunk(
        chunk=CatalogueChunk(
            chunk_id=chunk_id,
            document_id=document_id,
            document_name="catalogue.pdf",
            content=f"content of {chunk_id}",
            page_number=1,
            metadata=tags,
        ),
        embedding=embedding,
    )


@pytest.fixture
def catalogue_chunks():
    """Bolts and nuts with small hand-made embeddings."""
    return [
        embedded("din933", [1.0, 0.0, 0.0], product_type="bolt", standard="DIN933", thread_type="M8x40", material="A2-70"),
        embedded("iso4017", [0.9, 0.1, 0.0], product_type="bolt", standard="ISO 4017", thread_type="M8"),
        embedded("din934", [0.0, 1.0, 0.0], product_type="nut", standard="DIN 934", thread_type="M8"),
        embedded("din125", [0.0, 0.0, 1.0], document_id="doc-2", product_type="washer", standard="DIN 125"),
    ]


@pytest.mark.asyncio
async def test_add_chunks(vector_store, catalogue_chunks):
    """Test adding chunks to vector store."""
    assert await vector_store.add_chunks(catalogue_chunks) == 4

    assert await vector_store.count_chunks() == 4
    assert await vector_store.count_chunks(document_id="doc-1") == 3


@pytest.mark.asyncio
async def test_add_chunks_is_upsert(vector_store, catalogue_chunks):
    """Re-indexing a chunk replaces it."""
    await vector_store.add_chunks(catalogue_chunks)
    await vector_store.add_chunks(catalogue_chunks[:2])

    assert await vector_store.count_chunks() == 4


@pytest.mark.asyncio
async def test_add_empty_chunks_raises_error(vector_store):
    """Test that adding an empty list raises ValueError."""
    with pytest.raises(ValueError, match="Cannot add empty chunk list"):
        await vector_store.add_chunks([])


@pytest.mark.asyncio
async def test_tags_normalized_on_write(vector_store, catalogue_chunks):
    await vector_store.add_chunks(catalogue_chunks)

    stored = await vector_store.get_chunk("din933")

    assert stored.metadata.standard == "DIN 933"
    assert stored.metadata.thread_type == "M8"
    assert stored.metadata.material == "A2"
    assert stored.metadata.document_name == "catalogue.pdf"
    assert stored.metadata.page_number == 1


@pytest.mark.asyncio
async def test_search(vector_store, catalogue_chunks):
    """Test similarity search."""
    await vector_store.add_chunks(catalogue_chunks)

    results = await vector_store.search(query_embedding=[1.0, 0.05, 0.0], top_k=2)

    assert [r.id for r in results] == ["din933", "iso4017"]
    assert results[0].score >= results[1].score
    for result in results:
        assert 0.0 <= result.score <= 1.0


@pytest.mark.asyncio
async def test_search_with_equality_filter(vector_store, catalogue_chunks):
    await vector_store.add_chunks(catalogue_chunks)

    results = await vector_store.search(
        query_embedding=[1.0, 0.0, 0.0],
        top_k=4,
        filters=SearchFilters(product_type="nut"),
    )

    assert [r.id for r in results] == ["din934"]


@pytest.mark.asyncio
async def test_search_with_equivalent_standards(vector_store, catalogue_chunks):
    """A tuple filter admits any of its values."""
    await vector_store.add_chunks(catalogue_chunks)

    results = await vector_store.search(
        query_embedding=[0.0, 1.0, 0.0],
        top_k=4,
        filters=SearchFilters(standard=("DIN 933", "ISO 4017"), thread_type="M8"),
    )

    assert {r.id for r in results} == {"din933", "iso4017"}


@pytest.mark.asyncio
async def test_search_invalid_arguments(vector_store):
    with pytest.raises(ValueError, match="Query embedding cannot be empty"):
        await vector_store.search(query_embedding=[], top_k=5)
    with pytest.raises(ValueError, match="top_k must be at least 1"):
        await vector_store.search(query_embedding=[1.0, 0.0, 0.0], top_k=0)


@pytest.mark.asyncio
async def test_get_missing_chunk(vector_store):
    assert await vector_store.get_chunk("missing") is None


@pytest.mark.asyncio
async def test_get_all_chunks(vector_store, catalogue_chunks):
    await vector_store.add_chunks(catalogue_chunks)

    chunks = await vector_store.get_all_chunks()

    assert {c.id for c in chunks} == {"din933", "iso4017", "din934", "din125"}
    by_id = {c.id: c for c in chunks}
    assert by_id["din125"].content == "content of din125"
    assert by_id["din125"].metadata.document_id == "doc-2"


@pytest.mark.asyncio
async def test_delete_document(vector_store, catalogue_chunks):
    """Test deleting all chunks of a document."""
    await vector_store.add_chunks(catalogue_chunks)

    assert await vector_store.delete_document("doc-1") == 3
    assert await vector_store.count_chunks() == 1
    assert await vector_store.delete_document("doc-1") == 0


@pytest.mark.asyncio
async def test_persistence(tmp_path, catalogue_chunks):
    """Chunks survive reopening the store."""
    path = str(tmp_path / "persisted")
    store = VectorStore(persist_directory=path, collection_name="persisted")
    await store.add_chunks(catalogue_chunks)

    reopened = VectorStore(persist_directory=path, collection_name="persisted")

    assert await reopened.count_chunks() == 4
