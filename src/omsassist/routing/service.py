"""Query routing: classify a message and execute the chosen retrieval strategy."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Callable, Sequence

from omsassist.cache.service import MISS, CacheStore, make_cache_key
from omsassist.datasource.service import OrderRepository
from omsassist.errors import DependencyError, NotFoundError
from omsassist.indexing.documents import order_from_metadata
from omsassist.metrics.observability import PipelineMetrics, get_logger
from omsassist.models import Confidence, Freshness, Order, RouterResult, VectorMatch, dedupe_orders
from omsassist.retrieval.service import Retriever
from omsassist.routing.filters import OrderFilter, apply_filter, business_today
from omsassist.routing.rules import DEFAULT_RULES, QueryPlan, RoutingRule, classify


def similarity_confidence(matches: Sequence[VectorMatch]) -> Confidence:
    if not matches:
        return "low"
    average = sum(match.score for match in matches) / len(matches)
    if average >= 0.85:
        return "high"
    if average >= 0.7:
        return "medium"
    return "low"


@dataclass
class RouterStats:
    total_queries: int = 0
    successful_queries: int = 0
    cache_hits: int = 0
    total_time_ms: float = 0.0
    api_queries: int = 0
    vector_queries: int = 0
    hybrid_queries: int = 0
    error_queries: int = 0
    fallbacks: int = 0

    @property
    def success_rate(self) -> float:
        return self.successful_queries / self.total_queries if self.total_queries else 1.0

    @property
    def average_response_time_ms(self) -> float:
        return self.total_time_ms / self.total_queries if self.total_queries else 0.0

    def record(self, result: RouterResult, *, cached: bool) -> None:
        self.total_queries += 1
        self.total_time_ms += result.processing_time_ms
        if cached:
            self.cache_hits += 1
        if result.strategy != "error":
            self.successful_queries += 1
        if result.fallbacks:
            self.fallbacks += 1
        counter = f"{result.strategy}_queries"
        setattr(self, counter, getattr(self, counter) + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalQueries": self.total_queries,
            "successRate": round(self.success_rate, 4),
            "averageResponseTime": round(self.average_response_time_ms, 2),
            "cacheHits": self.cache_hits,
            "apiQueries": self.api_queries,
            "vectorQueries": self.vector_queries,
            "hybridQueries": self.hybrid_queries,
            "errorQueries": self.error_queries,
            "fallbacks": self.fallbacks,
        }


class QueryRouter:
    """Routes user queries to exact lookup, structured filtering or semantic search."""

    def __init__(
        self,
        repository: OrderRepository,
        retriever: Retriever | None,
        cache: CacheStore,
        *,
        timezone: str = "America/Los_Angeles",
        hybrid_min_results: int = 1,
        vector_top_k: int = 10,
        result_ttl_seconds: float = 300.0,
        rules: Sequence[RoutingRule] = DEFAULT_RULES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._retriever = retriever
        self._cache = cache
        self._timezone = timezone
        self._hybrid_min_results = hybrid_min_results
        self._vector_top_k = vector_top_k
        self._result_ttl = result_ttl_seconds
        self._rules = tuple(rules)
        self._clock = clock
        self._stats = RouterStats()
        self._logger = get_logger("router")

    @property
    def repository(self) -> OrderRepository:
        return self._repository

    def classify(self, message: str) -> QueryPlan:
        return classify(message, self._rules)

    async def route_query(
        self,
        message: str,
        *,
        now: datetime | None = None,
        prefer_fresh: bool = False,
    ) -> RouterResult:
        """Route ``message``; failures come back as ``strategy="error"``, never raised.

        ``prefer_fresh`` bypasses both the routed-result cache and the order cache.
        """

        start = time.perf_counter()
        reference = now or (self._clock() if self._clock else None)
        today = business_today(reference, self._timezone)
        plan = self.classify(message)
        key = make_cache_key("query", query=message, today=today.isoformat())
        cached = MISS if prefer_fresh else self._cache.get(key)
        if cached is not MISS:
            result = replace(
                cached,
                data_freshness="cached",
                processing_time_ms=(time.perf_counter() - start) * 1000,
            )
            self._finish(message, result, cached=True)
            return result

        try:
            result = await self._execute(plan, message, today, prefer_fresh)
        except DependencyError as exc:
            self._logger.error(
                "router.dependency_failed",
                query=message,
                component=exc.component,
                rule=plan.rule,
                detail=str(exc),
            )
            result = RouterResult(strategy="error", rule=plan.rule, error=str(exc))
        except Exception as exc:  # noqa: BLE001 - the router reports, never raises
            self._logger.exception("router.failed", query=message, rule=plan.rule)
            result = RouterResult(strategy="error", rule=plan.rule, error=f"{exc.__class__.__name__}: {exc}")

        result = replace(result, processing_time_ms=(time.perf_counter() - start) * 1000)
        # degraded results are recomputed on the next request
        if result.strategy != "error" and not result.fallbacks:
            self._cache.set(key, result, self._result_ttl)
        self._finish(message, result, cached=False)
        return result

    def stats(self) -> dict[str, Any]:
        return self._stats.to_dict()

    def health(self) -> dict[str, Any]:
        rate = self._stats.success_rate
        return {
            "healthy": rate > 0.5,
            "successRate": round(rate, 4),
            "averageResponseTime": round(self._stats.average_response_time_ms, 2),
            "totalQueries": self._stats.total_queries,
        }

    def _finish(self, message: str, result: RouterResult, *, cached: bool) -> None:
        self._stats.record(result, cached=cached)
        PipelineMetrics.observe_routing(result.processing_time_ms / 1000, result.strategy)
        self._logger.info(
            "router.route",
            query=message,
            rule=result.rule,
            strategy=result.strategy,
            orders=len(result.orders),
            confidence=result.confidence,
            freshness=result.data_freshness,
            cached=cached,
            fallbacks=list(result.fallbacks),
            duration_ms=round(result.processing_time_ms, 2),
        )

    async def _execute(self, plan: QueryPlan, message: str, today: date, prefer_fresh: bool) -> RouterResult:
        if plan.rule == "job-number":
            return await self._lookup_jobs(plan, prefer_fresh)
        if plan.strategy == "api":
            return await self._structured(plan, today, prefer_fresh)
        return await self._semantic(plan, message, today, prefer_fresh)

    async def _lookup_jobs(self, plan: QueryPlan, prefer_fresh: bool) -> RouterResult:
        found: list[Order] = []
        missing: list[str] = []
        for job_number in plan.order_filter.job_numbers:
            try:
                found.append(await self._repository.get_order(job_number, prefer_fresh=prefer_fresh))
            except NotFoundError:
                missing.append(job_number)
        if missing:
            self._logger.info("router.job_not_found", jobs=missing)
        return RouterResult(
            strategy="api",
            orders=dedupe_orders(found),
            confidence="high",
            rule=plan.rule,
            filter_description=plan.order_filter.describe(),
            not_found=tuple(missing),
        )

    async def _structured(self, plan: QueryPlan, today: date, prefer_fresh: bool) -> RouterResult:
        orders, freshness = await self._repository.load_orders(prefer_fresh=prefer_fresh)
        order_filter = plan.order_filter
        matches = apply_filter(orders, order_filter, today)
        if order_filter.is_exact or len(matches) >= self._hybrid_min_results or self._retriever is None:
            return RouterResult(
                strategy="api",
                orders=tuple(matches),
                confidence="high" if matches else "medium",
                data_freshness=freshness,
                rule=plan.rule,
                filter_description=order_filter.describe(),
            )

        fallbacks: list[str] = []
        semantic: tuple[Order, ...] = ()
        vector_results: tuple[VectorMatch, ...] = ()
        try:
            vector_results = tuple(await self._retriever.search(plan.semantic_text, top_k=self._vector_top_k))
            semantic = self._resolve(vector_results, orders)
        except DependencyError as exc:
            fallbacks.append("vector-unavailable")
            self._logger.warning("router.hybrid_vector_failed", query=plan.semantic_text, detail=str(exc))
        merged = dedupe_orders([*matches, *semantic])
        if order_filter.limit:
            merged = merged[: order_filter.limit]
        return RouterResult(
            strategy="hybrid" if semantic else "api",
            orders=merged,
            vector_results=vector_results,
            confidence="medium" if merged else "low",
            data_freshness=freshness,
            rule=plan.rule,
            filter_description=order_filter.describe(),
            fallbacks=tuple(fallbacks),
        )

    async def _semantic(self, plan: QueryPlan, message: str, today: date, prefer_fresh: bool) -> RouterResult:
        orders, freshness = await self._repository.load_orders(prefer_fresh=prefer_fresh)
        top_k = plan.order_filter.limit or self._vector_top_k
        if self._retriever is not None:
            try:
                matches = tuple(await self._retriever.search(plan.semantic_text or message, top_k=top_k))
            except DependencyError as exc:
                self._logger.warning("router.vector_unavailable", query=message, detail=str(exc))
                return self._keyword_fallback(plan, orders, freshness, today, "vector-to-api")
            if matches:
                return RouterResult(
                    strategy="vector",
                    orders=self._resolve(matches, orders)[:top_k],
                    vector_results=matches,
                    confidence=similarity_confidence(matches),
                    data_freshness=freshness,
                    rule=plan.rule,
                    filter_description=f"orders similar to '{message}'",
                )
            return self._keyword_fallback(plan, orders, freshness, today, "vector-empty-to-api")
        return self._keyword_fallback(plan, orders, freshness, today, "vector-to-api")

    def _keyword_fallback(
        self,
        plan: QueryPlan,
        orders: Sequence[Order],
        freshness: Freshness,
        today: date,
        reason: str,
    ) -> RouterResult:
        order_filter = plan.order_filter
        if not order_filter.keywords:
            matches: list[Order] = []
        else:
            matches = apply_filter(orders, OrderFilter(keywords=order_filter.keywords), today)
            matches = matches[: order_filter.limit or self._vector_top_k]
        return RouterResult(
            strategy="api",
            orders=tuple(matches),
            confidence="medium" if matches else "low",
            data_freshness=freshness,
            rule=plan.rule,
            filter_description=order_filter.describe(),
            fallbacks=(reason,),
        )

    @staticmethod
    def _resolve(matches: Sequence[VectorMatch], orders: Sequence[Order]) -> tuple[Order, ...]:
        by_job = {order.job_number: order for order in orders}
        resolved = [by_job.get(match.job_number) or order_from_metadata(match.metadata) for match in matches]
        return dedupe_orders(resolved)


__all__ = ["QueryRouter", "RouterStats", "similarity_confidence"]
