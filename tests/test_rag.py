from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from types import SimpleNamespace

import pytest
from prometheus_client import REGISTRY

from omsassist.errors import DependencyError
from omsassist.models import FileAttachment, RouterResult
from omsassist.routing import QueryRouter
from omsassist.services import (
    SYSTEM_FAILURE_MESSAGE,
    ContextBuilder,
    GenerationConfig,
    OpenAIGenerator,
    RagAnswerGenerator,
    RagContextOptions,
    RagQuery,
    build_structured_response,
    detect_focus,
    no_results_message,
    prioritize_orders,
)

TODAY = date(2024, 3, 13)


class StubCompletions:
    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


def _client(completions: StubCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _llm(completions: StubCompletions) -> OpenAIGenerator:
    return OpenAIGenerator(GenerationConfig(use_model=True, api_key="test-key"), client=_client(completions))


@pytest.fixture
def router(repository, cache) -> QueryRouter:
    return QueryRouter(repository, None, cache)


def _ask(rag: RagAnswerGenerator, question: str, now, **options):
    return asyncio.run(rag.query_with_context(RagQuery(question, RagContextOptions(**options)), now=now))


def test_summary_answer_without_model(router, now):
    rag = RagAnswerGenerator(router)
    answer = _ask(rag, "show overdue orders", now)
    assert answer.strategy == "api"
    assert [order.job_number for order in answer.orders] == ["1001"]
    assert "Job 1001" in answer.answer
    assert not answer.used_fallback
    assert answer.structured_response["summary"]["overdueCount"] == 1


def test_model_answer_is_grounded_in_order_context(router, now):
    completions = StubCompletions(reply="  Job 1001 for Acme Corp is overdue.  ")
    rag = RagAnswerGenerator(router, _llm(completions))
    answer = _ask(rag, "show overdue orders", now)
    assert answer.answer == "Job 1001 for Acme Corp is overdue."
    system_prompt = completions.requests[0]["messages"][0]["content"]
    assert "Job 1001" in system_prompt
    assert completions.requests[0]["messages"][1] == {"role": "user", "content": "show overdue orders"}


def test_model_failure_falls_back_to_summary(router, now):
    completions = StubCompletions(error=RuntimeError("rate limited"))
    generator = _llm(completions)
    rag = RagAnswerGenerator(router, generator)
    before = REGISTRY.get_sample_value("omsassist_generation_fallbacks_total") or 0.0
    answer = _ask(rag, "show overdue orders", now)
    assert answer.used_fallback
    assert "Job 1001" in answer.answer
    assert rag.stats()["fallbacks"] == 1
    assert generator.stats()["failures"] == 1
    assert REGISTRY.get_sample_value("omsassist_generation_fallbacks_total") == before + 1


def test_use_llm_false_skips_the_model(router, now):
    completions = StubCompletions(reply="model text")
    rag = RagAnswerGenerator(router, _llm(completions))
    answer = asyncio.run(rag.query_with_context(RagQuery("show overdue orders"), now=now, use_llm=False))
    assert completions.requests == []
    assert "Job 1001" in answer.answer


def test_empty_result_explains_the_search(router, now):
    rag = RagAnswerGenerator(router)
    answer = _ask(rag, "orders for Zeta Plastics", now)
    assert answer.orders == ()
    assert answer.answer.startswith("No orders for Zeta Plastics found.")
    assert answer.structured_response["summary"]["totalOrders"] == 0


def test_missing_job_message(router, now):
    rag = RagAnswerGenerator(router)
    answer = _ask(rag, "job 424242", now)
    assert answer.answer.startswith("No order found for job 424242.")


def test_routing_failure_returns_apology(router, source, now):
    source.failure = DependencyError("OMS API unreachable", component="api")
    rag = RagAnswerGenerator(router)
    answer = _ask(rag, "show overdue orders", now)
    assert answer.strategy == "error"
    assert answer.answer == SYSTEM_FAILURE_MESSAGE
    assert "unreachable" in answer.error


def test_prefetched_routing_result_is_reused(router, orders, now):
    rag = RagAnswerGenerator(router)
    routed = RouterResult(strategy="api", orders=(orders[3],), confidence="high", rule="structured")
    answer = asyncio.run(rag.query_with_context(RagQuery("anything"), routed=routed, now=now))
    assert [order.job_number for order in answer.orders] == ["1004"]
    assert router.stats()["totalQueries"] == 0


def test_structured_response_priorities(orders):
    response = build_structured_response(orders, TODAY)
    by_job = {entry["jobNumber"]: entry for entry in response["orders"]}
    assert by_job["1001"]["priority"] == "urgent"
    assert by_job["1003"]["priority"] == "urgent"
    assert by_job["1003"]["daysToDue"] == 1
    assert by_job["1004"]["priority"] == "normal"
    assert by_job["1005"]["priority"] == "low"
    assert by_job["1005"]["dueDate"] is None
    assert response["summary"] == {
        "totalOrders": 5,
        "totalValue": 2080.0,
        "urgentCount": 2,
        "overdueCount": 1,
    }
    assert response["introText"].startswith("Here are 5 orders")


def test_single_order_context_is_detailed(orders):
    built = ContextBuilder().build("tell me about job 1003", [orders[2]])
    assert built.mode == "single"
    assert "Beta Industries" in built.text
    assert "Polo shirt navy" in built.text
    assert not built.truncated


def test_multi_order_context_respects_limit(orders):
    built = ContextBuilder().build("embroidered polo", orders, max_orders=2)
    assert built.mode == "summary"
    assert built.text.startswith("5 matching orders; showing 2.")
    assert built.orders[0].job_number == "1003"
    assert built.truncated


def test_file_attachments_are_listed_when_requested(orders):
    attachments = (FileAttachment("proof.pdf", "application/pdf"), FileAttachment("art.ai"))
    with_files = [replace(orders[0], files=attachments), *orders[1:]]
    assert "attached" not in ContextBuilder().build("approved orders", with_files).text
    requested = ContextBuilder().build("approved orders", with_files, include_files=True).text
    assert "files: 2 attached (proof.pdf, art.ai)" in requested
    assert "proof.pdf" in ContextBuilder().build("which jobs have artwork files?", with_files).text
    single = ContextBuilder().build("job 1001", with_files[:1]).text
    assert "  - proof.pdf (application/pdf)" in single


def test_include_files_option_reaches_the_model_context(router, source, now):
    source.orders[0] = replace(source.orders[0], files=(FileAttachment("proof.pdf"),))
    completions = StubCompletions(reply="Two approved orders.")
    rag = RagAnswerGenerator(router, _llm(completions))
    _ask(rag, "approved orders", now)
    _ask(rag, "approved orders", now, include_files=True)
    assert "proof.pdf" not in completions.requests[0]["messages"][0]["content"]
    assert "proof.pdf" in completions.requests[1]["messages"][0]["content"]


def test_context_is_empty_without_orders():
    assert ContextBuilder().build("anything", []).mode == "empty"


def test_focus_detection():
    focus = detect_focus("what is the total value and tracking for these?")
    assert focus.pricing
    assert focus.shipments
    assert not focus.line_items


def test_prioritize_keeps_order_when_nothing_matches(orders):
    assert prioritize_orders("zzz qqq", orders) == orders
    assert prioritize_orders("vinyl banners", orders)[0].job_number == "1002"


def test_no_results_messages():
    structured = RouterResult(strategy="api", rule="structured", filter_description="orders for Zeta")
    assert "spelling of the customer name" in no_results_message("orders for Zeta", structured)
    jobs = RouterResult(strategy="api", rule="job-number", not_found=("1", "2"))
    assert no_results_message("jobs 1 and 2", jobs).startswith("No order found for jobs 1, 2.")
    assert no_results_message("  blue widgets ").startswith('No orders found matching "blue widgets".')
