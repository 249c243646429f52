"""Answer orchestration combining query routing, context building and generation."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Sequence

from omsassist.formatting import format_money, pluralize
from omsassist.metrics.observability import PipelineMetrics, TimedSection, get_logger
from omsassist.models import Confidence, Freshness, Order, RouterResult, Strategy
from omsassist.routing.filters import business_today, is_overdue
from omsassist.routing.service import QueryRouter
from omsassist.services.context import ContextBuilder
from omsassist.services.feedback import SYSTEM_FAILURE_MESSAGE, no_results_message
from omsassist.services.generation import GenerationBackend, SummaryGenerator

URGENT_DAYS = 2
NORMAL_DAYS = 7


@dataclass(frozen=True)
class RagContextOptions:
    include_line_items: bool = False
    include_shipments: bool = False
    include_files: bool = False
    max_orders: int = 10
    prefer_fresh_data: bool = False


@dataclass(frozen=True)
class RagQuery:
    user_query: str
    context: RagContextOptions = field(default_factory=RagContextOptions)


@dataclass(frozen=True)
class RagAnswer:
    answer: str
    confidence: Confidence
    processing_time_ms: float
    data_freshness: Freshness
    orders: tuple[Order, ...] = ()
    structured_response: dict[str, Any] | None = None
    strategy: Strategy = "api"
    used_fallback: bool = False
    error: str | None = None


def build_structured_response(orders: Sequence[Order], today: date, *, intro: str | None = None) -> dict[str, Any]:
    """Machine-readable summary the chat UI renders as an order list."""

    rendered: list[dict[str, Any]] = []
    urgent = overdue = 0
    for order in orders:
        due = order.due_date
        days_to_due = (due - today).days if due else None
        late = is_overdue(order, today)
        if late or (days_to_due is not None and days_to_due <= URGENT_DAYS and not order.is_closed):
            priority = "urgent"
        elif days_to_due is not None and days_to_due <= NORMAL_DAYS:
            priority = "normal"
        else:
            priority = "low"
        urgent += priority == "urgent"
        overdue += late
        rendered.append(
            {
                "jobNumber": order.job_number,
                "customer": order.customer.company,
                "description": order.description,
                "dueDate": due.isoformat() if due else None,
                "daysToDue": days_to_due,
                "status": order.status,
                "priority": priority,
                "value": order.pricing.total,
            }
        )
    total_value = sum(order.pricing.total for order in orders)
    if intro is None:
        intro = f"Here {'is' if len(orders) == 1 else 'are'} {pluralize(len(orders), 'order')}"
        intro += f" worth {format_money(total_value)} in total." if orders else "."
    return {
        "introText": intro,
        "orders": rendered,
        "summary": {
            "totalOrders": len(orders),
            "totalValue": round(total_value, 2),
            "urgentCount": urgent,
            "overdueCount": overdue,
        },
    }


class RagAnswerGenerator:
    """Routes a question, builds order context and produces an answer.

    The generator never raises for downstream failures: routing errors become an
    apology, empty results become a "No ... found" message, and LLM failures fall
    back to the deterministic summary inside the generation backend.
    """

    def __init__(
        self,
        router: QueryRouter,
        generator: GenerationBackend | None = None,
        context_builder: ContextBuilder | None = None,
        *,
        timezone: str = "America/Los_Angeles",
    ) -> None:
        self._router = router
        self._generator = generator or SummaryGenerator()
        self._context_builder = context_builder or ContextBuilder()
        self._timezone = timezone
        self._summary = SummaryGenerator()
        self._queries = 0
        self._fallbacks = 0
        self._logger = get_logger("rag")

    @property
    def router(self) -> QueryRouter:
        return self._router

    async def query_with_context(
        self,
        query: RagQuery,
        *,
        routed: RouterResult | None = None,
        now: datetime | None = None,
        use_llm: bool = True,
    ) -> RagAnswer:
        start = time.perf_counter()
        self._queries += 1
        question = query.user_query
        if routed is None:
            routed = await self._router.route_query(
                question, now=now, prefer_fresh=query.context.prefer_fresh_data
            )
        today = business_today(now, self._timezone)

        if routed.strategy == "error":
            self._logger.warning("rag.routing_failed", query=question, detail=routed.error)
            return RagAnswer(
                answer=SYSTEM_FAILURE_MESSAGE,
                confidence="low",
                processing_time_ms=(time.perf_counter() - start) * 1000,
                data_freshness=routed.data_freshness,
                strategy="error",
                error=routed.error,
            )

        if not routed.orders:
            message = no_results_message(question, routed)
            self._logger.info("rag.no_results", query=question, rule=routed.rule)
            return RagAnswer(
                answer=message,
                confidence=routed.confidence,
                processing_time_ms=(time.perf_counter() - start) * 1000,
                data_freshness=routed.data_freshness,
                structured_response=build_structured_response((), today, intro=message),
                strategy=routed.strategy,
            )

        options = query.context
        built = self._context_builder.build(
            question,
            routed.orders,
            max_orders=options.max_orders,
            include_line_items=options.include_line_items,
            include_shipments=options.include_shipments,
            include_files=options.include_files,
        )
        generator = self._generator if use_llm else self._summary
        with TimedSection(PipelineMetrics.observe_generation) as timer:
            generated = await generator.generate(question=question, context=built.text, orders=routed.orders)
        if generated.fallback:
            self._fallbacks += 1
            self._logger.warning("rag.fallback", query=question, model=generated.model)
        self._logger.info(
            "rag.answer",
            query=question,
            strategy=routed.strategy,
            orders=len(routed.orders),
            context_mode=built.mode,
            context_truncated=built.truncated,
            model=generated.model,
            generation_seconds=round(timer.elapsed, 4),
        )
        return RagAnswer(
            answer=generated.text,
            confidence=routed.confidence,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            data_freshness=routed.data_freshness,
            orders=routed.orders,
            structured_response=build_structured_response(routed.orders, today),
            strategy=routed.strategy,
            used_fallback=generated.fallback,
        )

    def stats(self) -> dict[str, Any]:
        return {"queries": self._queries, "fallbacks": self._fallbacks}

    async def health_check(self) -> dict[str, Any]:
        generator_stats = getattr(self._generator, "stats", None)
        return {
            "healthy": True,
            "generator": generator_stats() if callable(generator_stats) else {"model": "summary"},
            **self.stats(),
        }


__all__ = ["RagAnswer", "RagAnswerGenerator", "RagContextOptions", "RagQuery", "build_structured_response"]
