from __future__ import annotations

import json

import pytest

from omsassist import cli
from omsassist.api.app import AppDependencies
from omsassist.errors import DependencyError
from omsassist.routing import QueryRouter
from omsassist.services import ChatPipelineConfig, ChatService, RagAnswerGenerator
from omsassist.sessions import InMemorySessionStore


@pytest.fixture
def deps(monkeypatch, cache, repository, sync_service, retriever) -> AppDependencies:
    router = QueryRouter(repository, retriever, cache)
    rag = RagAnswerGenerator(router)
    chat = ChatService(rag, InMemorySessionStore(), ChatPipelineConfig(use_rag=False))
    built = AppDependencies(cache=cache, repository=repository, sync=sync_service, router=router, rag=rag, chat=chat)
    monkeypatch.setattr(cli, "build_dependencies", lambda settings: built)
    return built


def _run(capsys, *argv: str) -> tuple[int, dict]:
    code = cli.main(list(argv))
    return code, json.loads(capsys.readouterr().out)


def test_sync_then_changes(deps, capsys):
    code, payload = _run(capsys, "sync")
    assert code == 0
    assert payload["newVectors"] == 5

    code, payload = _run(capsys, "changes", "--samples", "2")
    assert code == 0
    assert payload["hasChanges"] is False


def test_reset_tracker_and_rebuild(deps, capsys):
    _run(capsys, "sync")
    assert _run(capsys, "reset-tracker")[1]["cleared"] is True
    code, payload = _run(capsys, "rebuild")
    assert code == 0
    assert payload["newVectors"] == 5


def test_ask_prints_answer(deps, capsys):
    code, payload = _run(capsys, "ask", "show rush orders")
    assert code == 0
    assert payload["orders"] == ["1003"]


def test_ask_failure_exits_non_zero(deps, source, capsys):
    source.failure = DependencyError("down", component="api")
    code, payload = _run(capsys, "ask", "show rush orders")
    assert code == 1
    assert payload["success"] is False
