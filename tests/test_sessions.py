from __future__ import annotations

import pytest

from omsassist.models import ChatMessage, SessionContext
from omsassist.sessions import InMemorySessionStore, answer_follow_up, detect_follow_up


class FakeClock:
    def __init__(self) -> None:
        self.now = 10_000.0

    def __call__(self) -> float:
        return self.now


def _message(content: str, role: str = "user") -> ChatMessage:
    return ChatMessage(role=role, content=content, timestamp=0.0)


def test_messages_are_truncated_to_most_recent():
    store = InMemorySessionStore(max_messages=3, clock=FakeClock())
    for index in range(5):
        store.append_message("s1", _message(f"m{index}"))
    session = store.get_session("s1")
    assert [message.content for message in session.messages] == ["m2", "m3", "m4"]


def test_session_expires_after_idle_ttl_and_is_not_resurrected():
    clock = FakeClock()
    store = InMemorySessionStore(ttl_seconds=3600, clock=clock)
    store.append_message("s1", _message("hello"))
    store.update_context("s1", {"last_query": "hello"})

    clock.now += 1800
    assert store.get_or_create_session("s1").context.last_query == "hello"
    clock.now += 3000
    assert store.get_session("s1") is not None

    clock.now += 3601
    assert store.get_session("s1") is None
    fresh = store.get_or_create_session("s1")
    assert fresh.messages == ()
    assert fresh.context == SessionContext()


def test_update_context_overwrites_previous_values(orders):
    store = InMemorySessionStore(clock=FakeClock())
    store.update_context("s1", {"shown_orders": orders[:2], "focused_customer": "Acme Corp"})
    store.update_context("s1", {"shown_orders": orders[2:3], "focused_customer": None})
    context = store.get_session("s1").context
    assert [order.job_number for order in context.shown_orders] == ["1003"]
    assert context.focused_customer is None


def test_update_context_rejects_unknown_fields():
    store = InMemorySessionStore(clock=FakeClock())
    with pytest.raises(ValueError):
        store.update_context("s1", {"favourite_colour": "blue"})


def test_evict_expired_counts_removed_sessions():
    clock = FakeClock()
    store = InMemorySessionStore(ttl_seconds=10, clock=clock)
    store.get_or_create_session("a")
    store.get_or_create_session("b")
    clock.now += 11
    assert store.evict_expired() == 2
    assert store.count() == 0


def test_total_follow_up_sums_shown_orders(orders):
    context = SessionContext(shown_orders=(orders[0], orders[1]))
    follow_up = detect_follow_up("what's the total of these?", context)
    assert follow_up is not None
    assert follow_up.kind == "calculation"
    answer = answer_follow_up(follow_up)
    assert "$400.00" in answer
    assert "1001" in answer and "1002" in answer


def test_contact_follow_up_lists_each_customer_once(orders):
    context = SessionContext(shown_orders=(orders[0], orders[1], orders[2]))
    follow_up = detect_follow_up("how do I contact them?", context)
    assert follow_up is not None
    answer = answer_follow_up(follow_up)
    assert answer.count("Acme Corp") == 1
    assert "555-0101" in answer
    assert "ops@beta.test" in answer


def test_no_follow_up_without_shown_orders_or_with_new_job(orders):
    assert detect_follow_up("what's the total?", SessionContext()) is None
    context = SessionContext(shown_orders=(orders[0],))
    assert detect_follow_up("what's the total for job 1004?", context) is None
    assert detect_follow_up("show rush orders", context) is None
