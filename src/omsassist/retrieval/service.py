"""Semantic search over the order vector index."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, Sequence, TypeVar

from omsassist.cache.service import MISS, CacheStore, make_cache_key
from omsassist.embeddings.service import EmbeddingBackend
from omsassist.embeddings.store import OrderVectorStore
from omsassist.errors import DependencyError
from omsassist.metrics.observability import PipelineMetrics, get_logger
from omsassist.models import VectorMatch

T = TypeVar("T")


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 10
    min_score: float = 0.7
    rerank_lexical: bool = False
    lexical_blend_weight: float = 0.35
    timeout_seconds: float = 10.0
    embedding_ttl_seconds: float = 60 * 60
    results_ttl_seconds: float = 30 * 60


class Retriever(Protocol):
    """Retrieve orders semantically related to a query string."""

    async def search(
        self,
        query: str,
        *,
        top_k: int | None = None,
        min_score: float | None = None,
        where: Mapping[str, Any] | None = None,
    ) -> Sequence[VectorMatch]:
        """Return matches above the similarity threshold, best first."""

    async def health_check(self) -> dict[str, Any]:
        """Return a health payload including a ``healthy`` flag."""


class VectorSearchService:
    """Embeds queries and runs nearest-neighbour lookups, caching both steps."""

    def __init__(
        self,
        store: OrderVectorStore,
        embeddings: EmbeddingBackend,
        config: RetrievalConfig | None = None,
        *,
        cache: CacheStore | None = None,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self._config = config or RetrievalConfig()
        self._cache = cache
        self._searches = 0
        self._failures = 0
        self._logger = get_logger("retrieval")

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    async def search(
        self,
        query: str,
        *,
        top_k: int | None = None,
        min_score: float | None = None,
        where: Mapping[str, Any] | None = None,
    ) -> Sequence[VectorMatch]:
        limit = max(1, top_k or self._config.top_k)
        threshold = self._config.min_score if min_score is None else min_score
        self._searches += 1
        results_key = make_cache_key("vector:results", query=query, top_k=limit, min_score=threshold, where=where)
        cached = self._cache.get(results_key) if self._cache is not None else MISS
        if cached is not MISS:
            return cached

        start = time.perf_counter()
        try:
            vector = await self._query_vector(query)
            raw = await self._call(self._store.query, vector, top_k=limit, where=where)
        except DependencyError:
            self._failures += 1
            raise
        matches = [match for match in raw if match.score >= threshold]
        if self._config.rerank_lexical and matches:
            matches = self._rerank(query, matches)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_vector_search(duration, (match.score for match in matches))
        self._logger.info(
            "retrieval.complete",
            query=query,
            candidates=len(raw),
            matches=len(matches),
            min_score=threshold,
            duration_seconds=duration,
        )
        result = tuple(matches)
        if self._cache is not None:
            self._cache.set(results_key, result, self._config.results_ttl_seconds)
        return result

    async def health_check(self) -> dict[str, Any]:
        indexed = await self._call(self._store.count)
        return {
            "healthy": True,
            "indexedVectors": indexed,
            "searches": self._searches,
            "failures": self._failures,
        }

    def stats(self) -> dict[str, int]:
        return {"searches": self._searches, "failures": self._failures}

    async def _query_vector(self, query: str) -> tuple[float, ...]:
        key = make_cache_key("embedding:query", query=query)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not MISS:
                return cached
        vector = tuple(await self._call(self._embeddings.embed_query, query))
        if self._cache is not None:
            self._cache.set(key, vector, self._config.embedding_ttl_seconds)
        return vector

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise DependencyError("vector search timed out", component="vectors") from exc
        except DependencyError:
            raise
        except Exception as exc:
            raise DependencyError(str(exc) or exc.__class__.__name__, component="vectors") from exc

    def _rerank(self, query: str, matches: Sequence[VectorMatch]) -> list[VectorMatch]:
        weight = self._clamp_weight(self._config.lexical_blend_weight)
        tokens = set(query.lower().split())
        scored: list[tuple[VectorMatch, float]] = []
        for match in matches:
            lexical = _token_overlap_score(tokens, match.document)
            scored.append((match, (1.0 - weight) * match.score + weight * lexical))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [pair[0] for pair in scored]

    @staticmethod
    def _clamp_weight(weight: float) -> float:
        if weight < 0.0:
            return 0.0
        if weight > 1.0:
            return 1.0
        return weight


def _token_overlap_score(query_tokens: set[str], text: str) -> float:
    tokens = set(text.lower().split())
    if not tokens:
        return 0.0
    overlap = len(query_tokens.intersection(tokens))
    return overlap / max(len(query_tokens), 1)


__all__ = ["RetrievalConfig", "Retriever", "VectorSearchService"]
