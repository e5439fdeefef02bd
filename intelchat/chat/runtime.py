"""
Bounded tool-calling loop for one chat turn.

The loop is a two-node LangGraph (`llm` <-> `tools`). The round counter lives in graph state;
every model call is one round, and the round that hits `max_rounds` is final even if it asks
for more tools.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from concurrent.futures import wait as wait_futures
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypedDict

from langgraph.graph import END, StateGraph

from intelchat.chat.prompts import FALLBACK_REPLY, SYSTEM_PROMPT
from intelchat.chat.settings import ChatSettings, load_chat_settings
from intelchat.chat.tool_summaries import compact_args_for_log, summarize_tool_result, tool_payload_text
from intelchat.chat.tracing import build_invoke_config, trace_tool_call
from intelchat.chat.types import ChatToolEvent, ChatTurnResult
from intelchat.errors import IntelChatError, ModelUnavailable, Timeout, ToolExecutionFailed, TurnCancelled
from intelchat.llm.client import ChatModel
from intelchat.llm.schemas import LLMMessage, ModelReply, TokenUsage, ToolCallRequest
from intelchat.tools import ToolContext, ToolResult, run_tool, tool_catalog

logger = logging.getLogger(__name__)


class _State(TypedDict, total=False):
    messages: List[LLMMessage]
    round: int
    usage: TokenUsage
    pending: List[ToolCallRequest]
    tool_log: List[str]
    tool_events: List[ChatToolEvent]
    last_content: str
    final: Optional[str]


def seed_messages(user_message: str, history: Sequence[Any], *, history_limit: int) -> List[LLMMessage]:
    """System prompt + the last `history_limit` prior user/assistant messages + the new message."""
    msgs = [LLMMessage(role="system", content=SYSTEM_PROMPT)]
    prior = [h for h in (history or []) if getattr(h, "role", None) in ("user", "assistant")]
    if history_limit > 0:
        for h in prior[-history_limit:]:
            msgs.append(LLMMessage(role=h.role, content=str(h.content or "")))
    msgs.append(LLMMessage(role="user", content=user_message))
    return msgs


def _parse_args(raw: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    try:
        obj = json.loads(raw or "{}")
    except ValueError as e:
        return None, f"invalid_arguments: {e}"
    if not isinstance(obj, dict):
        return None, "invalid_arguments: expected a JSON object"
    return obj, None


def _execute_call(ctx: ToolContext, call: ToolCallRequest) -> Tuple[Dict[str, Any], ToolResult]:
    args, err = _parse_args(call.arguments)
    if err is not None:
        return {}, ToolResult(ok=False, error=err)
    try:
        res = trace_tool_call(tool=call.name, args=args, fn=lambda: run_tool(ctx, call.name, args))
    except Exception as e:
        failure = ToolExecutionFailed(call.name, e)
        logger.exception("Tool %s raised unhandled exception", call.name)
        res = ToolResult(ok=False, error=str(failure))
    return args, res


def run_intel_chat(
    *,
    model: ChatModel,
    ctx: ToolContext,
    user_message: str,
    history: Sequence[Any] = (),
    settings: Optional[ChatSettings] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ChatTurnResult:
    """
    Run one chat turn.

    Raises:
        ModelUnavailable: a model round failed.
        Timeout: a model round or the whole turn exceeded its deadline.
        TurnCancelled: `cancel_event` was set; in-flight tools finished, no further rounds ran.
    """
    st = settings or load_chat_settings()
    max_rounds = max(1, int(st.max_rounds))
    catalog = tool_catalog()
    deadline = time.monotonic() + float(st.turn_timeout_seconds)
    model_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="intel-llm")

    def _call_model(messages: List[LLMMessage]) -> ModelReply:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise Timeout(f"chat turn exceeded {st.turn_timeout_seconds}s")
        wait = min(float(st.round_timeout_seconds), remaining)
        fut = model_pool.submit(model.complete, list(messages), catalog)
        try:
            return fut.result(timeout=wait)
        except FuturesTimeout as e:
            fut.cancel()
            raise Timeout(f"model round exceeded {wait:.0f}s") from e
        except IntelChatError:
            raise
        except Exception as e:
            raise ModelUnavailable(f"llm_error:{type(e).__name__}") from e

    def llm_step(state):
        if cancel_event is not None and cancel_event.is_set():
            raise TurnCancelled("chat turn cancelled")
        rnd = int(state.get("round") or 0) + 1
        reply = _call_model(state.get("messages") or [])
        usage = (state.get("usage") or TokenUsage()) + reply.usage
        last = reply.text or state.get("last_content") or ""

        if reply.tool_calls and rnd < max_rounds:
            assistant = LLMMessage(role="assistant", content=reply.content or "", tool_calls=reply.tool_calls)
            return {
                **state,
                "round": rnd,
                "usage": usage,
                "last_content": last,
                "messages": list(state.get("messages") or []) + [assistant],
                "pending": list(reply.tool_calls),
                "final": None,
            }
        if reply.tool_calls:
            logger.info("Round cap reached (%d); ignoring %d requested tool call(s)", rnd, len(reply.tool_calls))
        return {
            **state,
            "round": rnd,
            "usage": usage,
            "last_content": last,
            "pending": [],
            "final": last or FALLBACK_REPLY,
        }

    def tool_step(state):
        calls = list(state.get("pending") or [])
        workers = max(1, min(int(st.max_parallel_tools), len(calls)))
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise Timeout(f"chat turn exceeded {st.turn_timeout_seconds}s")
        ex = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="intel-tool")
        try:
            futs = [ex.submit(_execute_call, ctx, c) for c in calls]
            _, late = wait_futures(futs, timeout=remaining)
            if late:
                for f in late:
                    f.cancel()
                raise Timeout(f"chat turn exceeded {st.turn_timeout_seconds}s during {len(late)} tool call(s)")
            outcomes = [f.result() for f in futs]
        finally:
            ex.shutdown(wait=False)

        messages = list(state.get("messages") or [])
        tool_log = list(state.get("tool_log") or [])
        events = list(state.get("tool_events") or [])
        for call, (args, res) in zip(calls, outcomes):
            outcome, summary = summarize_tool_result(tool=call.name, ok=res.ok, error=res.error, result=res.result)
            logger.info("Tool %s %s: %s", call.name, compact_args_for_log(args), summary)
            tool_log.append(call.name)
            events.append(
                ChatToolEvent(
                    tool=call.name,
                    call_id=call.id,
                    args=args,
                    ok=res.ok,
                    result=res.result,
                    error=res.error,
                    outcome=outcome,
                    summary=summary,
                )
            )
            messages.append(
                LLMMessage(role="tool", content=tool_payload_text(res.payload()), tool_call_id=call.id, name=call.name)
            )
        return {**state, "messages": messages, "tool_log": tool_log, "tool_events": events, "pending": []}

    def route_after_llm(state) -> str:
        if state.get("final") is not None:
            return "end"
        return "tools" if state.get("pending") else "end"

    def route_after_tools(state) -> str:
        return "llm"

    g = StateGraph(_State)
    g.add_node("llm", llm_step)
    g.add_node("tools", tool_step)
    g.set_entry_point("llm")
    g.add_conditional_edges("llm", route_after_llm, {"tools": "tools", "end": END})
    g.add_conditional_edges("tools", route_after_tools, {"llm": "llm"})

    app = g.compile()
    init: Dict[str, Any] = {
        "messages": seed_messages(user_message, history, history_limit=int(st.history_limit)),
        "round": 0,
        "usage": TokenUsage(),
        "pending": [],
        "tool_log": [],
        "tool_events": [],
        "last_content": "",
        "final": None,
    }
    cfg = build_invoke_config(kind="intel_chat", run_name="intel_chat", metadata={"max_rounds": max_rounds})
    cfg["recursion_limit"] = max_rounds * 2 + 5
    try:
        out = app.invoke(init, config=cfg)
    finally:
        model_pool.shutdown(wait=False)

    return ChatTurnResult(
        content=str(out.get("final") or out.get("last_content") or FALLBACK_REPLY),
        usage=out.get("usage") or TokenUsage(),
        tool_call_log=list(out.get("tool_log") or []),
        tool_events=list(out.get("tool_events") or []),
        rounds=int(out.get("round") or 0),
    )
