from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from omsassist.errors import DependencyError
from omsassist.routing import QueryRouter


class FailingRetriever:
    def __init__(self) -> None:
        self.calls = 0

    async def search(self, query, *, top_k=None, min_score=None, where=None):
        self.calls += 1
        raise DependencyError("vector search timed out", component="vectors")

    async def health_check(self):
        return {"healthy": False}


@pytest.fixture
def indexed_router(repository, retriever, sync_service, cache, orders) -> QueryRouter:
    asyncio.run(sync_service.perform_incremental_update(orders))
    return QueryRouter(repository, retriever, cache, vector_top_k=3)


def _route(router: QueryRouter, message: str, now):
    return asyncio.run(router.route_query(message, now=now))


def test_job_lookup_returns_exactly_that_order(indexed_router, now):
    result = _route(indexed_router, "show me job 1003", now)
    assert result.strategy == "api"
    assert result.rule == "job-number"
    assert [order.job_number for order in result.orders] == ["1003"]
    assert result.confidence == "high"


def test_missing_job_is_empty_not_an_error(indexed_router, now):
    result = _route(indexed_router, "status of job 424242", now)
    assert result.strategy == "api"
    assert result.orders == ()
    assert result.not_found == ("424242",)
    assert result.error is None


def test_structured_rush_query_is_exact(indexed_router, now):
    result = _route(indexed_router, "show rush orders", now)
    assert result.strategy == "api"
    assert [order.job_number for order in result.orders] == ["1003"]
    assert result.filter_description == "rush orders"


def test_semantic_query_uses_vector_index(indexed_router, now):
    result = _route(indexed_router, "acrylic signs", now)
    assert result.strategy == "vector"
    assert result.orders[0].job_number == "1001"
    assert result.vector_results[0].score >= 0.1


def test_customer_query_without_matches_blends_vector_results(indexed_router, now):
    result = _route(indexed_router, "orders for acrylic signs", now)
    assert result.strategy == "hybrid"
    assert "1001" in [order.job_number for order in result.orders]


def test_vector_failure_degrades_to_keyword_search(repository, cache, now):
    retriever = FailingRetriever()
    router = QueryRouter(repository, retriever, cache)
    result = _route(router, "acrylic signs", now)
    assert retriever.calls == 1
    assert result.strategy == "api"
    assert result.fallbacks == ("vector-to-api",)
    assert [order.job_number for order in result.orders] == ["1001"]


def test_degraded_results_are_not_cached(repository, cache, now):
    retriever = FailingRetriever()
    router = QueryRouter(repository, retriever, cache)
    first = _route(router, "acrylic signs", now)
    second = _route(router, "acrylic signs", now)
    assert first.fallbacks == second.fallbacks == ("vector-to-api",)
    assert retriever.calls == 2
    assert router.stats()["cacheHits"] == 0


def test_job_lookup_with_prefer_fresh_skips_cached_orders(repository, cache, source, now):
    router = QueryRouter(repository, None, cache)
    _route(router, "show overdue orders", now)
    source.orders[0] = replace(source.orders[0], status="Shipped")

    stale = _route(router, "job 1001", now)
    assert stale.orders[0].status == "Approved"
    fresh = asyncio.run(router.route_query("job 1001", now=now, prefer_fresh=True))
    assert fresh.orders[0].status == "Shipped"


def test_data_source_failure_is_reported_and_not_cached(repository, retriever, cache, source, now):
    router = QueryRouter(repository, retriever, cache)
    source.failure = DependencyError("OMS API unreachable", component="api")
    failed = _route(router, "show overdue orders", now)
    assert failed.strategy == "error"
    assert "unreachable" in failed.error

    source.failure = None
    recovered = _route(router, "show overdue orders", now)
    assert recovered.strategy == "api"
    assert [order.job_number for order in recovered.orders] == ["1001"]
    assert router.stats()["errorQueries"] == 1


def test_repeated_query_is_served_from_cache(indexed_router, now):
    first = _route(indexed_router, "show overdue orders", now)
    second = _route(indexed_router, "show overdue orders", now)
    assert first.data_freshness == "fresh"
    assert second.data_freshness == "cached"
    assert second.orders == first.orders
    assert indexed_router.stats()["cacheHits"] == 1


def test_health_reflects_success_rate(repository, cache, source, now):
    router = QueryRouter(repository, None, cache)
    assert router.health()["healthy"] is True
    source.failure = DependencyError("down", component="api")
    _route(router, "rush orders", now)
    _route(router, "overdue orders", now)
    assert router.health()["healthy"] is False
