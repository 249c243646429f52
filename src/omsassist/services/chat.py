"""Conversational chat pipeline: session, follow-ups, routing and answering."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from omsassist.errors import ValidationError
from omsassist.metrics.observability import get_logger
from omsassist.models import ChatMessage, Order
from omsassist.routing.filters import business_today
from omsassist.services.rag import RagAnswer, RagAnswerGenerator, RagContextOptions, RagQuery, build_structured_response
from omsassist.sessions.followup import answer_follow_up, detect_follow_up
from omsassist.sessions.service import SessionStore

MAX_MESSAGE_CHARS = 4000


@dataclass(frozen=True)
class ChatPipelineConfig:
    """Switches for the single chat pipeline."""

    use_rag: bool = True
    include_structured_response: bool = True
    max_orders: int = 10
    timezone: str = "America/Los_Angeles"


@dataclass(frozen=True)
class ChatResult:
    success: bool
    message: str
    session_id: str
    orders: tuple[Order, ...] = ()
    analytics: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    structured_response: dict[str, Any] | None = None
    error_kind: str | None = None
    details: str | None = None


@dataclass
class ChatStats:
    total_queries: int = 0
    successful_queries: int = 0
    follow_ups: int = 0
    total_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalQueries": self.total_queries,
            "successRate": round(self.successful_queries / self.total_queries, 4) if self.total_queries else 1.0,
            "averageResponseTime": round(self.total_time_ms / self.total_queries, 2) if self.total_queries else 0.0,
            "followUps": self.follow_ups,
        }


class ChatService:
    """Handles one chat turn end to end."""

    def __init__(
        self,
        rag: RagAnswerGenerator,
        sessions: SessionStore,
        config: ChatPipelineConfig | None = None,
    ) -> None:
        self._rag = rag
        self._sessions = sessions
        self._config = config or ChatPipelineConfig()
        self._stats = ChatStats()
        self._logger = get_logger("chat")

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    def stats(self) -> dict[str, Any]:
        return self._stats.to_dict()

    async def handle(
        self,
        message: str | None,
        *,
        session_id: str | None = None,
        context: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> ChatResult:
        text = (message or "").strip()
        if not text:
            raise ValidationError("Message is required")
        if len(text) > MAX_MESSAGE_CHARS:
            raise ValidationError(f"Message must be at most {MAX_MESSAGE_CHARS} characters")

        start = time.perf_counter()
        session_id = session_id or uuid.uuid4().hex
        session = self._sessions.get_or_create_session(session_id)
        self._sessions.append_message(session_id, ChatMessage(role="user", content=text, timestamp=time.time()))

        follow_up = detect_follow_up(text, session.context)
        if follow_up is not None:
            self._stats.follow_ups += 1
            self._logger.info("chat.follow_up", session_id=session_id, kind=follow_up.kind, orders=len(follow_up.orders))
            answer = answer_follow_up(follow_up)
            today = business_today(now, self._config.timezone)
            result = ChatResult(
                success=True,
                message=answer,
                session_id=session_id,
                orders=follow_up.orders,
                analytics=self._analytics(len(follow_up.orders), "session", start, "high", "follow-up"),
                metadata=self._metadata(text, "follow-up", session_id),
                structured_response=(
                    build_structured_response(follow_up.orders, today, intro=answer.splitlines()[0])
                    if self._config.include_structured_response
                    else None
                ),
            )
            return self._finish(result, start)

        options = RagContextOptions(**{"max_orders": self._config.max_orders, **_context_options(context)})
        rag_answer = await self._rag.query_with_context(
            RagQuery(user_query=text, context=options),
            now=now,
            use_llm=self._config.use_rag,
        )
        if rag_answer.strategy == "error":
            result = ChatResult(
                success=False,
                message=rag_answer.answer,
                session_id=session_id,
                analytics=self._analytics(0, "error", start, "low", "error"),
                metadata=self._metadata(text, "error", session_id),
                error_kind="dependency",
                details="A downstream service is unavailable.",
            )
            return self._finish(result, start)

        self._sessions.update_context(session_id, _session_patch(text, rag_answer))
        result = ChatResult(
            success=True,
            message=rag_answer.answer,
            session_id=session_id,
            orders=rag_answer.orders,
            analytics=self._analytics(
                len(rag_answer.orders),
                rag_answer.data_freshness,
                start,
                rag_answer.confidence,
                rag_answer.strategy,
            ),
            metadata=self._metadata(text, rag_answer.strategy, session_id),
            structured_response=rag_answer.structured_response if self._config.include_structured_response else None,
        )
        return self._finish(result, start)

    def _finish(self, result: ChatResult, start: float) -> ChatResult:
        elapsed = (time.perf_counter() - start) * 1000
        self._stats.total_queries += 1
        self._stats.total_time_ms += elapsed
        if result.success:
            self._stats.successful_queries += 1
        self._sessions.append_message(
            result.session_id,
            ChatMessage(
                role="assistant",
                content=result.message,
                timestamp=time.time(),
                context={"jobNumbers": [order.job_number for order in result.orders]},
            ),
        )
        self._logger.info(
            "chat.turn",
            session_id=result.session_id,
            success=result.success,
            orders=len(result.orders),
            duration_ms=round(elapsed, 2),
        )
        return result

    @staticmethod
    def _analytics(total: int, source: str, start: float, confidence: str, strategy: str) -> dict[str, Any]:
        return {
            "totalResults": total,
            "dataSource": source,
            "processingTime": round((time.perf_counter() - start) * 1000, 2),
            "confidence": confidence,
            "searchStrategy": strategy,
        }

    @staticmethod
    def _metadata(query: str, strategy: str, session_id: str) -> dict[str, Any]:
        return {
            "queryProcessed": query,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "strategy": strategy,
            "sessionId": session_id,
        }


def _context_options(context: Mapping[str, Any] | None) -> dict[str, Any]:
    if not context:
        return {}
    mapping = {
        "includeLineItems": "include_line_items",
        "includeShipments": "include_shipments",
        "includeFiles": "include_files",
        "maxOrders": "max_orders",
        "preferFreshData": "prefer_fresh_data",
    }
    return {target: context[source] for source, target in mapping.items() if source in context}


def _session_patch(query: str, answer: RagAnswer) -> dict[str, Any]:
    orders = answer.orders
    customers = {order.customer.company for order in orders if order.customer.company}
    return {
        "last_query": query,
        "shown_orders": orders,
        "focused_job": orders[0].job_number if len(orders) == 1 else None,
        "focused_customer": customers.pop() if len(customers) == 1 else None,
        "current_filter": query,
    }


__all__ = ["ChatPipelineConfig", "ChatResult", "ChatService", "ChatStats"]
