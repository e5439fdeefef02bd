from __future__ import annotations

import json
from datetime import datetime, timezone

from intelchat.chat.tool_summaries import compact_args_for_log, summarize_tool_result, tool_payload_text
from intelchat.chat.tracing import build_invoke_config, should_trace_run_name, trace_tool_call


def test_summaries_count_the_interesting_list() -> None:
    assert summarize_tool_result(tool="search_malware", ok=True, error=None, result=[]) == (
        "empty",
        "search_malware: empty (0 results)",
    )
    assert summarize_tool_result(tool="search_malware", ok=True, error=None, result=[{}, {}]) == (
        "ok",
        "search_malware: ok (2 results)",
    )
    outcome, summary = summarize_tool_result(
        tool="get_ransomware_victims", ok=True, error=None, result={"totalCount": 1, "victims": [{}]}
    )
    assert (outcome, summary) == ("ok", "get_ransomware_victims: ok (1 victims)")


def test_summary_for_statistics_and_errors() -> None:
    _, s = summarize_tool_result(
        tool="get_ransomware_statistics", ok=True, error=None, result={"today": 1, "last7Days": 2, "last30Days": 3}
    )
    assert s == "get_ransomware_statistics: today=1 7d=2 30d=3"
    assert summarize_tool_result(tool="x", ok=False, error="unknown_tool:x", result=None) == (
        "error",
        "x: error unknown_tool:x",
    )


def test_payload_text_handles_datetimes() -> None:
    txt = tool_payload_text({"when": datetime(2026, 1, 1, tzinfo=timezone.utc), "ids": ("a", "b")})
    assert json.loads(txt) == {"when": "2026-01-01T00:00:00+00:00", "ids": ["a", "b"]}


def test_compact_args_truncates_long_values() -> None:
    out = compact_args_for_log({"search_term": "x" * 200, "limit": 5})
    assert len(out["search_term"]) == 80
    assert out["limit"] == 5


def test_tracing_is_off_by_default(monkeypatch) -> None:
    monkeypatch.delenv("LANGSMITH_TRACING", raising=False)
    monkeypatch.delenv("LANGCHAIN_TRACING_V2", raising=False)
    assert build_invoke_config(kind="intel_chat", run_name="intel_chat") == {}
    assert trace_tool_call(tool="search_malware", args={}, fn=lambda: 42) == 42


def test_tracing_without_api_key_stays_off(monkeypatch) -> None:
    monkeypatch.setenv("LANGSMITH_TRACING", "1")
    monkeypatch.delenv("LANGSMITH_API_KEY", raising=False)
    monkeypatch.delenv("LANGCHAIN_API_KEY", raising=False)
    assert build_invoke_config(kind="intel_chat", run_name="intel_chat") == {}


def test_trace_exclude_patterns(monkeypatch) -> None:
    monkeypatch.setenv("LANGSMITH_TRACE_EXCLUDE", "tool:get_*, intel_chat")
    assert should_trace_run_name("tool:get_campaigns") is False
    assert should_trace_run_name("intel_chat") is False
    assert should_trace_run_name("tool:search_malware") is True
