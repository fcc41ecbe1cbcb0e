"""Clients for external APIs."""

from fastener_search.clients.openai_client import OpenAIClient

__all__ = ["OpenAIClient"]
