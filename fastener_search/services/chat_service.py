"""Catalogue chat assistant on top of the search pipeline."""

import time

from fastener_search.clients.openai_client import OpenAIClient
from fastener_search.config import get_settings
from fastener_search.logging_config import get_logger
from fastener_search.models.query import (
    ChatRequest,
    ChatResponse,
    ChatSource,
    SearchRequest,
    SearchResultItem,
)
from fastener_search.services.search_service import SearchService, SearchServiceError

logger = get_logger(__name__)

NO_CONTEXT_ANSWERS = {
    "en": "I couldn't find any relevant information in the catalogues to answer your question.",
    "es": "No he encontrado información relevante en los catálogos para responder a tu pregunta.",
}


def build_context(results: list[SearchResultItem]) -> str:
    """Format retrieved chunks as the assistant's context block.

    Each chunk is headed by its source and the product attributes it is
    tagged with, e.g. ``[1] From reyher.pdf (page 12) [Type: bolt, Thread: M8]``.
    """
    parts = []
    for i, result in enumerate(results, 1):
        header = f"[{i}] From {result.document.filename or 'unknown catalogue'}"
        if result.page_number is not None:
            header += f" (page {result.page_number})"

        attributes = [
            f"{label}: {value}"
            for label, value in (
                ("Type", result.product_type),
                ("Thread", result.thread_type),
                ("Material", result.material),
                ("Standard", result.standard),
            )
            if value
        ]
        if attributes:
            header += f" [{', '.join(attributes)}]"

        parts.append(f"{header}\n{result.content}")

    return "\n\n".join(parts)


class ChatService:
    """Answers catalogue questions with retrieved chunks as context.

    Retrieval goes through ``SearchService.search`` so that questions naming
    a standard get the same exact-match ranking as a search.
    """

    def __init__(
        self,
        search_service: SearchService,
        openai_client: OpenAIClient | None = None,
    ):
        """Initialize chat service.

        Args:
            search_service: Search pipeline used for retrieval
            openai_client: Client for chat completions (defaults to the
                search service's client)
        """
        self.settings = get_settings()
        self.search_service = search_service
        self.openai_client = openai_client or search_service.openai_client

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Answer one chat message.

        Args:
            request: Message, answer language and earlier turns

        Returns:
            ChatResponse with the answer and the chunks it is based on

        Raises:
            SearchServiceError: If retrieval or generation fails
        """
        start_time = time.time()
        logger.info(f"Chat message ({request.language}): '{request.message[:100]}'")

        search = await self.search_service.search(
            SearchRequest(
                query=request.message,
                limit=self.settings.chat_context_chunks,
                threshold=0.0,
            )
        )
        results = search.results

        if not results:
            logger.warning("No catalogue context found for chat message")
            return ChatResponse(
                answer=NO_CONTEXT_ANSWERS.get(request.language, NO_CONTEXT_ANSWERS["en"]),
                sources=[],
                classification=search.classification,
                processing_time=time.time() - start_time,
            )

        history_limit = self.settings.chat_history_messages
        history = request.history[-history_limit:] if history_limit else []

        try:
            answer = await self.openai_client.answer_from_context(
                question=request.message,
                context=build_context(results),
                history=[{"role": m.role, "content": m.content} for m in history],
                language=request.language,
                company_name=self.settings.company_name,
                temperature=self.settings.chat_temperature,
            )
        except Exception as e:
            logger.error(f"Answer generation failed: {str(e)}", exc_info=True)
            raise SearchServiceError(f"Answer generation failed: {str(e)}") from e

        processing_time = time.time() - start_time
        logger.info(
            f"Chat answered in {processing_time:.2f}s with {len(results)} sources "
            f"({len(answer)} characters)"
        )

        return ChatResponse(
            answer=answer,
            sources=[
                ChatSource(
                    id=r.id,
                    document_name=r.document.filename,
                    supplier=r.document.supplier,
                    page_number=r.page_number,
                    score=r.score,
                    snippet=r.snippet,
                )
                for r in results
            ],
            classification=search.classification,
            processing_time=processing_time,
        )
