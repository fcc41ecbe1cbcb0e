"""Fastener catalogue search: query classification and hybrid reranking."""

__version__ = "1.0.0"
