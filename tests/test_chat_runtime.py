from __future__ import annotations

import json
import threading
from typing import Any, Dict, List, Optional, Sequence

import pytest

from intelchat.chat.prompts import FALLBACK_REPLY
from intelchat.chat.runtime import run_intel_chat, seed_messages
from intelchat.chat.settings import ChatSettings
from intelchat.chat.types import Message
from intelchat.core.entities import EntityType
from intelchat.errors import ModelUnavailable, Timeout, TurnCancelled
from intelchat.llm.schemas import LLMMessage, ModelReply, TokenUsage, ToolCallRequest
from intelchat.tools import base as tools_base


def _call(name: str, args: Any = None, *, call_id: str = "", raw: Optional[str] = None) -> ToolCallRequest:
    return ToolCallRequest(id=call_id or f"call_{name}", name=name, arguments=raw if raw is not None else json.dumps(args or {}))


def _usage(n: int) -> TokenUsage:
    return TokenUsage(prompt_tokens=n, completion_tokens=1, total_tokens=n + 1)


class _ScriptedModel:
    """Replays replies in order; repeats the last one when the script runs out."""

    def __init__(self, replies: Sequence[Any]) -> None:
        self.replies = list(replies)
        self.calls: List[List[LLMMessage]] = []
        self.tools_seen: List[Sequence[Dict[str, Any]]] = []

    def complete(self, messages, tools):  # type: ignore[no-untyped-def]
        self.calls.append(list(messages))
        self.tools_seen.append(tools)
        idx = min(len(self.calls) - 1, len(self.replies) - 1)
        r = self.replies[idx]
        if isinstance(r, Exception):
            raise r
        return r


def _settings(**kw: Any) -> ChatSettings:
    return ChatSettings(**kw)


def test_plain_answer_without_tools(tool_ctx) -> None:
    model = _ScriptedModel([ModelReply(content="Nothing new today.", usage=_usage(10))])

    out = run_intel_chat(model=model, ctx=tool_ctx, user_message="anything new?", settings=_settings())

    assert out.content == "Nothing new today."
    assert out.rounds == 1
    assert out.tool_call_log == []
    assert out.usage.total_tokens == 11
    assert len(model.tools_seen[0]) == 24
    assert model.calls[0][0].role == "system"
    assert model.calls[0][-1].content == "anything new?"


def test_tool_round_feeds_results_back_in_request_order(tool_ctx, graph_store) -> None:
    graph_store.add_entity("m1", "Emotet", EntityType.MALWARE)
    model = _ScriptedModel(
        [
            ModelReply(
                tool_calls=[
                    _call("search_malware", {"search_term": "emotet"}, call_id="c1"),
                    _call("get_ransomware_statistics", {}, call_id="c2"),
                ],
                usage=_usage(5),
            ),
            ModelReply(content="Emotet is a loader.", usage=_usage(7)),
        ]
    )

    out = run_intel_chat(model=model, ctx=tool_ctx, user_message="emotet?", settings=_settings())

    assert out.content == "Emotet is a loader."
    assert out.rounds == 2
    assert out.tool_call_log == ["search_malware", "get_ransomware_statistics"]
    assert out.usage == TokenUsage(prompt_tokens=12, completion_tokens=2, total_tokens=14)

    second = model.calls[1]
    assert second[-3].role == "assistant"
    assert [tc.id for tc in second[-3].tool_calls] == ["c1", "c2"]
    assert [(m.role, m.tool_call_id) for m in second[-2:]] == [("tool", "c1"), ("tool", "c2")]
    assert json.loads(second[-2].content)[0]["name"] == "Emotet"
    assert json.loads(second[-1].content) == {"today": 0, "last7Days": 0, "last30Days": 0}

    assert [e.outcome for e in out.tool_events] == ["ok", "ok"]


def test_round_cap_stops_at_five_model_calls(tool_ctx) -> None:
    model = _ScriptedModel([ModelReply(tool_calls=[_call("get_ransomware_statistics")])])

    out = run_intel_chat(model=model, ctx=tool_ctx, user_message="loop", settings=_settings())

    assert len(model.calls) == 5
    assert out.rounds == 5
    # The final round's tool calls are not executed.
    assert out.tool_call_log == ["get_ransomware_statistics"] * 4
    assert out.content == FALLBACK_REPLY


def test_round_cap_keeps_last_text(tool_ctx) -> None:
    model = _ScriptedModel([ModelReply(content="partial answer", tool_calls=[_call("get_ransomware_statistics")])])

    out = run_intel_chat(model=model, ctx=tool_ctx, user_message="loop", settings=_settings(max_rounds=2))

    assert len(model.calls) == 2
    assert out.content == "partial answer"


def test_unknown_tool_is_reported_to_model(tool_ctx) -> None:
    model = _ScriptedModel([ModelReply(tool_calls=[_call("drop_tables")]), ModelReply(content="sorry")])

    out = run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings())

    assert out.tool_call_log == ["drop_tables"]
    assert out.tool_events[0].ok is False
    assert out.tool_events[0].error == "unknown_tool:drop_tables"
    assert json.loads(model.calls[1][-1].content) == {"error": "unknown_tool:drop_tables"}


def test_malformed_arguments_become_error_result(tool_ctx) -> None:
    model = _ScriptedModel(
        [ModelReply(tool_calls=[_call("search_malware", raw="{not json")]), ModelReply(content="retrying later")]
    )

    out = run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings())

    ev = out.tool_events[0]
    assert ev.ok is False
    assert ev.error.startswith("invalid_arguments")
    assert out.content == "retrying later"


def test_tool_exception_is_contained(tool_ctx, monkeypatch) -> None:
    def _boom(ctx, args):  # type: ignore[no-untyped-def]
        raise ZeroDivisionError("division by zero")

    monkeypatch.setitem(tools_base._REGISTRY, "boom", tools_base.ToolSpec(name="boom", description="", fn=_boom))
    model = _ScriptedModel([ModelReply(tool_calls=[_call("boom")]), ModelReply(content="done")])

    out = run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings())

    assert out.tool_events[0].ok is False
    assert out.tool_events[0].error.startswith("Tool execution failed: boom: ZeroDivisionError")
    assert out.content == "done"


def test_model_failure_aborts_turn(tool_ctx) -> None:
    model = _ScriptedModel([ModelUnavailable("rate_limited")])
    with pytest.raises(ModelUnavailable) as ei:
        run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings())
    assert ei.value.code == "rate_limited"


def test_unexpected_model_exception_is_classified(tool_ctx) -> None:
    model = _ScriptedModel([RuntimeError("socket closed")])
    with pytest.raises(ModelUnavailable) as ei:
        run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings())
    assert ei.value.code == "llm_error:RuntimeError"


def test_slow_model_round_times_out(tool_ctx) -> None:
    release = threading.Event()

    class _Slow:
        def complete(self, messages, tools):  # type: ignore[no-untyped-def]
            release.wait(5)
            return ModelReply(content="late")

    try:
        with pytest.raises(Timeout):
            run_intel_chat(
                model=_Slow(), ctx=tool_ctx, user_message="x", settings=_settings(round_timeout_seconds=0.2)
            )
    finally:
        release.set()


def test_cancel_before_start_skips_model(tool_ctx) -> None:
    model = _ScriptedModel([ModelReply(content="never")])
    ev = threading.Event()
    ev.set()
    with pytest.raises(TurnCancelled):
        run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings(), cancel_event=ev)
    assert model.calls == []


def test_cancel_mid_turn_stops_after_tools(tool_ctx) -> None:
    ev = threading.Event()

    class _CancelAfterFirst(_ScriptedModel):
        def complete(self, messages, tools):  # type: ignore[no-untyped-def]
            ev.set()
            return super().complete(messages, tools)

    model = _CancelAfterFirst([ModelReply(tool_calls=[_call("get_ransomware_statistics")])])
    with pytest.raises(TurnCancelled):
        run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings(), cancel_event=ev)
    assert len(model.calls) == 1


def test_seed_messages_keeps_last_ten_history_entries() -> None:
    history = [
        Message(id=str(i), session_id="s", role="user" if i % 2 == 0 else "assistant", content=f"m{i}")
        for i in range(12)
    ]

    msgs = seed_messages("latest", history, history_limit=10)

    assert len(msgs) == 12
    assert msgs[0].role == "system"
    assert msgs[1].content == "m2"
    assert msgs[-1].role == "user"
    assert msgs[-1].content == "latest"


def test_failing_tool_does_not_affect_sibling_call(tool_ctx, graph_store, monkeypatch) -> None:
    def _boom(ctx, args):  # type: ignore[no-untyped-def]
        raise RuntimeError("backend exploded")

    monkeypatch.setitem(tools_base._REGISTRY, "boom", tools_base.ToolSpec(name="boom", description="", fn=_boom))
    graph_store.add_entity("m1", "Emotet", EntityType.MALWARE)
    model = _ScriptedModel(
        [
            ModelReply(
                tool_calls=[
                    _call("boom", call_id="c1"),
                    _call("search_malware", {"search_term": "emotet"}, call_id="c2"),
                ]
            ),
            ModelReply(content="Emotet found."),
        ]
    )

    out = run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings())

    assert out.tool_call_log == ["boom", "search_malware"]
    failed, sibling = out.tool_events
    assert failed.ok is False
    assert failed.error.startswith("Tool execution failed: boom: RuntimeError")
    assert sibling.ok is True
    assert sibling.result[0]["name"] == "Emotet"
    tool_msgs = model.calls[1][-2:]
    assert [m.tool_call_id for m in tool_msgs] == ["c1", "c2"]
    assert json.loads(tool_msgs[1].content)[0]["name"] == "Emotet"


def test_slow_tool_round_hits_turn_deadline(tool_ctx, monkeypatch) -> None:
    release = threading.Event()

    def _stuck(ctx, args):  # type: ignore[no-untyped-def]
        release.wait(5)
        return []

    monkeypatch.setitem(tools_base._REGISTRY, "stuck", tools_base.ToolSpec(name="stuck", description="", fn=_stuck))
    model = _ScriptedModel([ModelReply(tool_calls=[_call("stuck")]), ModelReply(content="never")])

    try:
        with pytest.raises(Timeout):
            run_intel_chat(model=model, ctx=tool_ctx, user_message="x", settings=_settings(turn_timeout_seconds=0.3))
    finally:
        release.set()
    assert len(model.calls) == 1
