from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _trace_exclude_patterns() -> List[str]:
    """
    Comma-separated denylist of run names to skip (LANGSMITH_TRACE_EXCLUDE).

    An entry ending in '*' matches by prefix, e.g. "tool:get_*".
    """
    raw = (os.getenv("LANGSMITH_TRACE_EXCLUDE") or "").strip()
    return [x.strip() for x in raw.split(",") if x.strip()] if raw else []


def should_trace_run_name(name: str) -> bool:
    n = str(name or "").strip()
    if not n:
        return True
    for pat in _trace_exclude_patterns():
        if pat.endswith("*"):
            if n.startswith(pat[:-1]):
                return False
        elif n == pat:
            return False
    return True


def tracing_enabled() -> bool:
    """
    Return True when LangSmith tracing should be enabled.

    Env-gated; an enabled flag without an API key disables tracing with a warning.
    """
    want = _env_bool("LANGSMITH_TRACING", False) or _env_bool("LANGCHAIN_TRACING_V2", False)
    if not want:
        return False
    key = (os.getenv("LANGSMITH_API_KEY") or "").strip() or (os.getenv("LANGCHAIN_API_KEY") or "").strip()
    if not key:
        logger.warning("LangSmith tracing requested but no API key found (LANGSMITH_API_KEY). Tracing disabled.")
        return False
    return True


def _project_name() -> str:
    return (os.getenv("LANGSMITH_PROJECT") or "").strip() or "intelchat"


def _tags() -> Optional[List[str]]:
    raw = (os.getenv("LANGSMITH_TAGS") or "").strip()
    if not raw:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


def _callbacks() -> List[Any]:
    try:
        from langchain_core.tracers.langchain import LangChainTracer  # type: ignore[import-not-found]
        from langsmith import Client  # type: ignore[import-not-found]
    except Exception as e:
        logger.warning("LangSmith tracing enabled but dependencies unavailable: %s", type(e).__name__)
        return []
    key = (os.getenv("LANGSMITH_API_KEY") or "").strip() or (os.getenv("LANGCHAIN_API_KEY") or "").strip() or None
    return [LangChainTracer(project_name=_project_name(), client=Client(api_key=key), tags=_tags())]


def build_invoke_config(*, kind: str, run_name: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build a RunnableConfig dict for a LangGraph invocation. Empty when tracing is off.
    """
    if not tracing_enabled() or not should_trace_run_name(run_name):
        return {}
    md = dict(metadata or {})
    md["kind"] = str(kind or "unknown")
    cfg: Dict[str, Any] = {"metadata": md, "run_name": run_name}
    callbacks = _callbacks()
    if callbacks:
        cfg["callbacks"] = callbacks
    tags = _tags()
    if tags:
        cfg["tags"] = tags
    return cfg


def trace_tool_call(*, tool: str, args: Dict[str, Any], fn: Callable[[], T]) -> T:
    """
    Run `fn()` inside a LangSmith tool span when tracing is enabled.
    """
    if not tracing_enabled() or not should_trace_run_name(f"tool:{tool}"):
        return fn()

    try:
        from langsmith.run_helpers import traceable  # type: ignore[import-not-found]
    except Exception:
        return fn()

    @traceable(name=f"tool:{tool}", run_type="tool")
    def _wrapped(_tool: str, _args: Dict[str, Any]):
        return fn()

    return _wrapped(str(tool), dict(args or {}))
