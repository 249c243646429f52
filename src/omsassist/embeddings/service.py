"""Embedding backends for OMS Assist."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import Literal, Protocol, Sequence, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings
from langchain_openai import OpenAIEmbeddings
from tenacity import retry, stop_after_attempt, wait_exponential_jitter

from omsassist.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    provider: Literal["hash", "huggingface", "openai"] = "hash"
    model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 384
    batch_size: int = 50
    max_tokens: int = 8000
    normalize: bool = True
    device: str | None = None
    cache_folder: str | None = None
    api_key: str | None = None

    @property
    def max_chars(self) -> int:
        return int(self.max_tokens * CHARS_PER_TOKEN * 0.9)


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Tuple[float, ...]]:
        """Return one vector per text, in order."""

    def embed_query(self, query: str) -> Tuple[float, ...]:
        """Return embedding vector for a query string."""


def _normalize(vector: Sequence[float]) -> Tuple[float, ...]:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


class HashEmbeddingBackend:
    """Deterministic feature-hashing embeddings used for tests and offline environments.

    Each token contributes a signed vector derived from its sha256 digest, so texts
    sharing vocabulary land close together while unrelated texts stay near orthogonal.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _token_vector(self, token: str) -> list[float]:
        raw = b""
        block = 0
        while len(raw) < self._config.dim:
            raw += hashlib.sha256(f"{token}:{block}".encode("utf-8")).digest()
            block += 1
        return [byte / 127.5 - 1.0 for byte in raw[: self._config.dim]]

    def _hash_to_vector(self, text: str) -> Tuple[float, ...]:
        tokens = _TOKEN.findall(text[: self._config.max_chars].lower()) or [text]
        vector = [0.0] * self._config.dim
        for token in tokens:
            for index, value in enumerate(self._token_vector(token)):
                vector[index] += value
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Tuple[float, ...]]:
        return [self._hash_to_vector(text) for text in texts]

    def embed_query(self, query: str) -> Tuple[float, ...]:
        return self._hash_to_vector(query)


class LangChainEmbeddingBackend:
    """Batches, truncates and normalizes calls to a LangChain embeddings client."""

    def __init__(self, client: LangChainEmbeddings, config: EmbeddingConfig | None = None) -> None:
        self._client = client
        self._config = config or EmbeddingConfig()

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Tuple[float, ...]]:
        if not texts:
            return []
        prepared = [self._truncate(text) for text in texts]
        vectors: list[Tuple[float, ...]] = []
        size = max(1, self._config.batch_size)
        for offset in range(0, len(prepared), size):
            batch = prepared[offset : offset + size]
            produced = self._embed_batch(batch)
            if len(produced) != len(batch):
                LOGGER.error("Embedding backend returned %d vectors for %d texts", len(produced), len(batch))
                raise ValueError("Mismatch between number of texts and embedding vectors")
            vectors.extend(self._finish(vector) for vector in produced)
        # Warn if produced dimension differs from configured dim
        if vectors and len(vectors[0]) != self._config.dim:
            LOGGER.warning(
                "Embedding dim mismatch: configured=%d, actual=%d",
                self._config.dim,
                len(vectors[0]),
            )
        return vectors

    def embed_query(self, query: str) -> Tuple[float, ...]:
        return self._finish(self._embed_query(self._truncate(query)))

    @retry(stop=stop_after_attempt(2), wait=wait_exponential_jitter(0.2, 2.0), reraise=True)
    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        return self._client.embed_documents(batch)

    @retry(stop=stop_after_attempt(2), wait=wait_exponential_jitter(0.2, 2.0), reraise=True)
    def _embed_query(self, text: str) -> list[float]:
        return self._client.embed_query(text)

    def _truncate(self, text: str) -> str:
        limit = self._config.max_chars
        if len(text) <= limit:
            return text
        LOGGER.debug("Truncating embedding input from %d to %d chars", len(text), limit)
        return text[:limit]

    def _finish(self, vector: Sequence[float]) -> Tuple[float, ...]:
        if not self._config.normalize:
            return tuple(vector)
        return _normalize(vector)


def build_embedding_backend(config: EmbeddingConfig) -> EmbeddingBackend:
    """Return the configured backend; HuggingFace load failures fall back to hashing."""

    if config.provider == "openai":
        if not config.api_key:
            raise ConfigurationError("OMSASSIST_LLM_API_KEY is required for OpenAI embeddings")
        client = OpenAIEmbeddings(model=config.model, api_key=config.api_key)
        LOGGER.info("Using OpenAI embedding model %s", config.model)
        return LangChainEmbeddingBackend(client, config)
    if config.provider == "huggingface":
        try:
            model_kwargs = {"device": config.device} if config.device else {}
            client = HuggingFaceEmbeddings(
                model_name=config.model,
                model_kwargs=model_kwargs,
                encode_kwargs={"normalize_embeddings": config.normalize},
                cache_folder=config.cache_folder,
            )
            LOGGER.info("Loaded embedding model %s", config.model)
            return LangChainEmbeddingBackend(client, config)
        except Exception as exc:  # pragma: no cover - optional heavy dependency
            LOGGER.warning("Falling back to hash embeddings: %s", exc)
    LOGGER.info("Embedding backend running in hash-only mode.")
    return HashEmbeddingBackend(config)
