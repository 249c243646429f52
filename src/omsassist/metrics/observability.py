"""Observability helpers for OMS Assist."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Iterable

import structlog
from prometheus_client import Counter, Gauge, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "omsassist") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    routing_latency = Histogram(
        "omsassist_routing_duration_seconds",
        "Time spent routing and executing a query.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0),
    )
    routed_queries = Counter(
        "omsassist_routed_queries_total",
        "Queries routed, by strategy.",
        ["strategy"],
    )
    vector_search_latency = Histogram(
        "omsassist_vector_search_duration_seconds",
        "Time spent on nearest-neighbour searches.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    similarity_score = Histogram(
        "omsassist_similarity_score",
        "Similarity of vector matches returned to callers.",
        buckets=(0.0, 0.25, 0.5, 0.7, 0.85, 1.0),
    )
    generation_latency = Histogram(
        "omsassist_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
    )
    generation_fallbacks = Counter(
        "omsassist_generation_fallbacks_total",
        "Answers produced by the deterministic summary after an LLM failure.",
    )
    cache_requests = Counter(
        "omsassist_cache_requests_total",
        "Cache lookups, by outcome.",
        ["outcome"],
    )
    vector_sync_operations = Counter(
        "omsassist_vector_sync_operations_total",
        "Vector writes performed by sync runs, by operation.",
        ["operation"],
    )
    indexed_orders = Gauge(
        "omsassist_indexed_orders",
        "Number of orders tracked in the vector index.",
    )

    @classmethod
    def observe_routing(cls, duration_seconds: float, strategy: str) -> None:
        cls.routing_latency.observe(duration_seconds)
        cls.routed_queries.labels(strategy=strategy).inc()

    @classmethod
    def observe_vector_search(cls, duration_seconds: float, scores: Iterable[float]) -> None:
        cls.vector_search_latency.observe(duration_seconds)
        for score in scores:
            cls.similarity_score.observe(_clamp_score(score))

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def record_generation_fallback(cls) -> None:
        cls.generation_fallbacks.inc()

    @classmethod
    def observe_cache(cls, hit: bool) -> None:
        cls.cache_requests.labels(outcome="hit" if hit else "miss").inc()

    @classmethod
    def observe_sync(cls, *, upserted: int, deleted: int, tracked: int) -> None:
        cls.vector_sync_operations.labels(operation="upsert").inc(upserted)
        cls.vector_sync_operations.labels(operation="delete").inc(deleted)
        cls.indexed_orders.set(tracked)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.elapsed = time.perf_counter() - self._start
        self._callback(self.elapsed)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
