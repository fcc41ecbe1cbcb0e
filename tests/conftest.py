"""Pytest configuration and shared fixtures."""

from unittest.mock import AsyncMock, Mock

import pytest

from fastener_search.clients.openai_client import OpenAIClient
from fastener_search.config import Settings
from fastener_search.storage.vector_store import VectorStore


@pytest.fixture
def test_settings(tmp_path, monkeypatch):
    """Default settings with storage under tmp_path, injected into the services."""
    settings = Settings(
        _env_file=None,
        vector_db_path=str(tmp_path / "vectordb"),
        bm25_index_path=tmp_path / "bm25_index.pkl",
    )
    monkeypatch.setattr("fastener_search.services.search_service.get_settings", lambda: settings)
    monkeypatch.setattr("fastener_search.services.chat_service.get_settings", lambda: settings)
    return settings


@pytest.fixture
def mock_openai():
    """OpenAI client returning a fixed query embedding."""
    client = Mock(spec=OpenAIClient)
    client.embed_query = AsyncMock(return_value=[0.1, 0.2, 0.3])
    client.embed_documents = AsyncMock(side_effect=lambda texts: [[0.1, 0.2, 0.3] for _ in texts])
    client.answer_from_context = AsyncMock(return_value="Use DIN 934 M8 nuts.")
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_vector_store():
    """Vector store returning no candidates unless a test says otherwise."""
    store = Mock(spec=VectorStore)
    store.search = AsyncMock(return_value=[])
    store.add_chunks = AsyncMock(side_effect=lambda chunks: len(chunks))
    store.delete_document = AsyncMock(return_value=0)
    store.count_chunks = AsyncMock(return_value=0)
    store.get_all_chunks = AsyncMock(return_value=[])
    return store
