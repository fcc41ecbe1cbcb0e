"""OpenAI access for the search and chat services.

Three calls are made: a query embedding per search, document embeddings
while indexing, and one chat completion per assistant answer. Transient
API failures are retried with exponential backoff.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from openai import APIError, APITimeoutError, AsyncOpenAI, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (APIError, RateLimitError, APITimeoutError)

SYSTEM_PROMPTS = {
    "en": (
        "You are an expert assistant for industrial fasteners (bolts, nuts, screws) at "
        "{company}, a B2B fastener distributor.\n\n"
        "Use the following context from product catalogues to answer the user's question:\n\n"
        "<context>\n{context}\n</context>\n\n"
        "Guidelines:\n"
        "- Be precise and technical when needed\n"
        "- If the information is not in the context, clearly state that\n"
        "- Mention product codes, standards and specifications when relevant\n"
        "- Be concise but thorough"
    ),
    "es": (
        "Eres un asistente experto en productos de fijación industrial (tornillos, tuercas, "
        "pernos) para {company}, un distribuidor B2B de tornillería.\n\n"
        "Usa el siguiente contexto de los catálogos de productos para responder la pregunta "
        "del usuario:\n\n"
        "<context>\n{context}\n</context>\n\n"
        "Directrices:\n"
        "- Responde en español\n"
        "- Sé preciso y técnico cuando sea necesario\n"
        "- Si la información no está en el contexto, indícalo claramente\n"
        "- Menciona códigos de producto, normas y especificaciones cuando sea relevante\n"
        "- Sé conciso pero completo"
    ),
}


class OpenAIClient:
    """Embeddings and catalogue answers over ``AsyncOpenAI``.

    Args:
        api_key: OpenAI API key
        model: Chat completion model
        embedding_model: Embedding model; query and chunk vectors must share it
        timeout: Request timeout in seconds
        max_retries: Attempts per call, including the first one
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        # Retries are handled here so every attempt is logged
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.embedding_model = embedding_model
        self.timeout = timeout
        self.max_retries = max_retries

    async def _with_retries(self, operation: str, request: Callable[[], Awaitable[T]]) -> T:
        """Run ``request``, retrying transient API errors after 1s, 2s, 4s, ...

        Other exceptions propagate on the first failure. After the last
        attempt the last API error is raised.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                return await request()
            except RETRYABLE_ERRORS as e:
                if attempt == self.max_retries:
                    logger.error(
                        f"{operation} failed after {attempt} attempts: {type(e).__name__}: {e}"
                    )
                    raise
                delay = 2 ** (attempt - 1)
                logger.warning(
                    f"{operation} failed (attempt {attempt}/{self.max_retries}): "
                    f"{type(e).__name__}: {e}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
        raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")

    async def embed_query(self, query: str) -> list[float]:
        """Embedding of one search query."""

        async def request():
            response = await self.client.embeddings.create(model=self.embedding_model, input=query)
            return response.data[0].embedding

        return await self._with_retries("Query embedding", request)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embeddings of catalogue chunk texts, in input order.

        One API request per call; the caller sizes the batches.
        """
        if not texts:
            return []

        async def request():
            response = await self.client.embeddings.create(model=self.embedding_model, input=texts)
            return [item.embedding for item in sorted(response.data, key=lambda item: item.index)]

        return await self._with_retries(f"Embedding of {len(texts)} chunks", request)

    async def answer_from_context(
        self,
        question: str,
        context: str,
        history: list[dict[str, str]] | None = None,
        language: str = "en",
        company_name: str = "Inoxbolt",
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        """Answer a catalogue question from retrieved context.

        The system prompt (in ``language``, English when unknown) carries the
        context; earlier turns follow, then the question.

        Args:
            question: User's question
            context: Catalogue excerpts, one block per chunk
            history: Earlier turns of the conversation, oldest first
            language: Answer language, "en" or "es"
            company_name: Distributor the assistant speaks for
            temperature: Sampling temperature (0.0 to 2.0)
            max_tokens: Maximum tokens in the answer

        Returns:
            Answer text ("" when the model returns no content)
        """
        template = SYSTEM_PROMPTS.get(language, SYSTEM_PROMPTS["en"])
        messages = [
            {"role": "system", "content": template.format(company=company_name, context=context)},
            *(history or []),
            {"role": "user", "content": question},
        ]

        async def request():
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return response.choices[0].message.content or ""

        return await self._with_retries("Answer generation", request)

    async def close(self):
        await self.client.close()
