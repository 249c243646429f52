"""Retrieval components."""

from .service import RetrievalConfig, Retriever, VectorSearchService

__all__ = ["RetrievalConfig", "Retriever", "VectorSearchService"]
