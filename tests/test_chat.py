from __future__ import annotations

import asyncio

import pytest

from omsassist.errors import DependencyError, ValidationError
from omsassist.routing import QueryRouter
from omsassist.services import ChatPipelineConfig, ChatService, RagAnswerGenerator
from omsassist.sessions import InMemorySessionStore


@pytest.fixture
def chat(repository, cache) -> ChatService:
    rag = RagAnswerGenerator(QueryRouter(repository, None, cache))
    return ChatService(rag, InMemorySessionStore(), ChatPipelineConfig(use_rag=False))


def _send(chat: ChatService, message, now, **kwargs):
    return asyncio.run(chat.handle(message, now=now, **kwargs))


@pytest.mark.parametrize("message", [None, "", "   ", "x" * 4001])
def test_invalid_messages_are_rejected(chat, message, now):
    with pytest.raises(ValidationError):
        _send(chat, message, now)
    assert chat.stats()["totalQueries"] == 0


def test_answer_creates_session_and_records_turns(chat, now):
    result = _send(chat, "show overdue orders", now)
    assert result.success
    assert result.session_id
    assert [order.job_number for order in result.orders] == ["1001"]
    assert result.analytics["searchStrategy"] == "api"
    assert result.analytics["totalResults"] == 1
    assert result.metadata["sessionId"] == result.session_id
    session = chat.sessions.get_session(result.session_id)
    assert [message.role for message in session.messages] == ["user", "assistant"]
    assert session.context.focused_job == "1001"
    assert session.context.focused_customer == "Acme Corp"


def test_follow_up_uses_orders_from_previous_turn(chat, repository, source, now):
    first = _send(chat, "orders for Acme", now, session_id="s1")
    assert {order.job_number for order in first.orders} == {"1001", "1002"}
    repository.invalidate()
    fetches = source.fetches

    follow_up = _send(chat, "what's the total of these?", now, session_id="s1")
    assert follow_up.success
    assert "$400.00" in follow_up.message
    assert follow_up.analytics["searchStrategy"] == "follow-up"
    assert follow_up.structured_response["summary"]["totalValue"] == 400.0
    assert source.fetches == fetches

    context = chat.sessions.get_session("s1").context
    assert context.last_query == "orders for Acme"
    assert len(chat.sessions.get_session("s1").messages) == 4
    assert chat.stats()["followUps"] == 1


def test_context_options_are_forwarded(chat, source, now):
    _send(chat, "show overdue orders", now)
    _send(chat, "show overdue orders", now, context={"preferFreshData": True, "maxOrders": 3})
    assert source.fetches == 2


def test_dependency_failure_is_reported_without_raising(chat, source, now):
    source.failure = DependencyError("OMS API unreachable", component="api")
    result = _send(chat, "show rush orders", now, session_id="s2")
    assert not result.success
    assert result.error_kind == "dependency"
    assert result.details == "A downstream service is unavailable."
    assert chat.sessions.get_session("s2").context.last_query is None
    assert chat.stats()["successRate"] == 0.0


def test_structured_response_can_be_disabled(repository, cache, now):
    rag = RagAnswerGenerator(QueryRouter(repository, None, cache))
    chat = ChatService(rag, InMemorySessionStore(), ChatPipelineConfig(include_structured_response=False))
    assert _send(chat, "show rush orders", now).structured_response is None
