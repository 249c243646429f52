"""Embedding services."""

from .service import (
    EmbeddingBackend,
    EmbeddingConfig,
    HashEmbeddingBackend,
    LangChainEmbeddingBackend,
    build_embedding_backend,
)
from .store import ChromaOrderStore, OrderVectorStore, job_number_from_id, vector_id

__all__ = [
    "ChromaOrderStore",
    "EmbeddingBackend",
    "EmbeddingConfig",
    "HashEmbeddingBackend",
    "LangChainEmbeddingBackend",
    "OrderVectorStore",
    "build_embedding_backend",
    "job_number_from_id",
    "vector_id",
]
