"""Service layer for business logic."""

from fastener_search.services.chat_service import ChatService
from fastener_search.services.search_service import SearchService, SearchServiceError

__all__ = [
    "ChatService",
    "SearchService",
    "SearchServiceError",
]
