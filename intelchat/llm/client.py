"""
Provider-agnostic chat model with native tool calling.

Goals:
- One uniform seam (`ChatModel.complete(messages, tools) -> ModelReply`) for every provider.
- Stable error classification: provider failures surface as `ModelUnavailable(code)`.

Env (core):
- LLM_PROVIDER: which provider to use (default: "vertexai")
  - vertexai: Gemini via Vertex AI using `langchain_google_vertexai`
  - anthropic: Claude via Anthropic API using `langchain_anthropic`
- LLM_MODEL: model name (default: "gemini-2.5-flash")
- LLM_TEMPERATURE: sampling temperature (default: 0.3, range: 0-1)
- LLM_MAX_OUTPUT_TOKENS: completion cap (default: 4096, range: 64-8192)
- LLM_TIMEOUT_SECONDS: HTTP timeout for LLM requests (default: 60, range: 5-300)
- LLM_MOCK=1: deterministic stub model (no external calls)

Vertex requirements:
- GOOGLE_CLOUD_PROJECT (required)
- GOOGLE_CLOUD_LOCATION (required)
- Application Default Credentials (ADC) must be available

Anthropic requirements:
- ANTHROPIC_API_KEY (required)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from intelchat.errors import ModelUnavailable
from intelchat.llm.schemas import LLMMessage, ModelReply, TokenUsage, ToolCallRequest

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _provider() -> str:
    return (os.getenv("LLM_PROVIDER") or "").strip().lower() or "vertexai"


@dataclass(frozen=True)
class LLMConfig:
    model: str
    temperature: float
    max_output_tokens: int
    timeout: int = 60


def _load_config() -> LLMConfig:
    model = (os.getenv("LLM_MODEL") or "").strip() or "gemini-2.5-flash"
    try:
        temperature = float((os.getenv("LLM_TEMPERATURE") or "").strip() or "0.3")
    except Exception:
        temperature = 0.3
    try:
        max_output_tokens = int((os.getenv("LLM_MAX_OUTPUT_TOKENS") or "").strip() or "4096")
    except Exception:
        max_output_tokens = 4096
    try:
        timeout = int((os.getenv("LLM_TIMEOUT_SECONDS") or "").strip() or "60")
    except Exception:
        timeout = 60

    # Keep bounds sane
    temperature = max(0.0, min(temperature, 1.0))
    max_output_tokens = max(64, min(max_output_tokens, 8192))
    timeout = max(5, min(timeout, 300))

    return LLMConfig(model=model, temperature=temperature, max_output_tokens=max_output_tokens, timeout=timeout)


def _vertex_project_location_required() -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """
    Return (project, location, err_code). Exactly one of (project/location) may be None only if err_code is set.
    """
    project = (os.getenv("GOOGLE_CLOUD_PROJECT") or "").strip() or None
    location = (os.getenv("GOOGLE_CLOUD_LOCATION") or "").strip() or None
    if not project:
        return None, None, "missing_gcp_project"
    if not location:
        return None, None, "missing_gcp_location"
    return project, location, None


def _classify_error(e: Exception, *, model: str) -> str:
    msg = str(e or "").replace("\n", " ").strip()
    up = msg.upper()

    # Timeouts first; status codes before generic keywords to avoid false matches.
    if isinstance(e, TimeoutError):
        return "timeout"
    if "408" in msg:
        return "timeout"
    if "504" in msg:
        return "gateway_timeout"
    if "DEADLINE_EXCEEDED" in up or "DEADLINE EXCEEDED" in up:
        return "deadline_exceeded"
    if "TIMEOUT" in up or "TIMED OUT" in up:
        return "timeout"

    if "PERMISSION_DENIED" in up or "403" in msg:
        return "permission_denied"
    if "UNAUTHENTICATED" in up or "401" in msg:
        return "unauthenticated"
    if "404" in msg or "NOT FOUND" in up:
        return f"model_not_found:{model}"
    if "RATE" in up and "LIMIT" in up:
        return "rate_limited"
    if "MAX_TOKENS" in up or "MAX TOKENS" in up or "CONTEXT LENGTH" in up:
        return "max_tokens_truncated"

    # Anthropic-specific patterns
    if "429" in msg or "OVERLOADED" in up:
        return "rate_limited"
    if "API_KEY" in up and ("INVALID" in up or "MISSING" in up):
        return "unauthenticated"

    return f"llm_error:{type(e).__name__}"


def _get_llm_instance(provider: str, cfg: LLMConfig) -> Tuple[Any, Optional[str]]:
    """
    Factory function that returns the appropriate LangChain chat model.

    Returns: (llm_instance, error_code). Exactly one is None.
    """
    if provider in ("vertexai", "vertex", "gcp_vertexai"):
        project, location, err = _vertex_project_location_required()
        if err:
            return None, err

        # Preflight ADC so we return stable error codes
        try:
            import google.auth  # type: ignore[import-not-found]
        except Exception:
            return None, "adc_import_failed"
        try:
            google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
        except Exception:
            return None, "missing_adc_credentials"

        try:
            from langchain_google_vertexai import ChatVertexAI  # type: ignore[import-not-found]
        except Exception:
            return None, "sdk_import_failed:langchain_google_vertexai"

        llm = ChatVertexAI(
            model=cfg.model,
            temperature=cfg.temperature,
            max_output_tokens=cfg.max_output_tokens,
            project=str(project),
            location=str(location),
            timeout=cfg.timeout,
        )
        return llm, None

    elif provider == "anthropic":
        api_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
        if not api_key:
            return None, "missing_api_key"

        try:
            from langchain_anthropic import ChatAnthropic  # type: ignore[import-not-found]
        except Exception:
            return None, "sdk_import_failed:langchain_anthropic"

        llm = ChatAnthropic(
            model=cfg.model,
            temperature=cfg.temperature,
            max_tokens=cfg.max_output_tokens,
            anthropic_api_key=api_key,
            timeout=cfg.timeout,
        )
        return llm, None

    else:
        return None, "provider_not_configured"


class ChatModel(Protocol):
    def complete(self, messages: Sequence[LLMMessage], tools: Sequence[Dict[str, Any]]) -> ModelReply:
        """One model round. Raises ModelUnavailable on provider failure."""
        ...


def _to_langchain_messages(messages: Sequence[LLMMessage]) -> List[Any]:
    from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

    out: List[Any] = []
    for m in messages:
        if m.role == "system":
            out.append(SystemMessage(content=m.content))
        elif m.role == "user":
            out.append(HumanMessage(content=m.content))
        elif m.role == "assistant":
            calls = []
            for tc in m.tool_calls:
                try:
                    args = json.loads(tc.arguments or "{}")
                except ValueError:
                    args = {}
                calls.append({"id": tc.id, "name": tc.name, "args": args if isinstance(args, dict) else {}})
            out.append(AIMessage(content=m.content or "", tool_calls=calls))
        else:
            out.append(ToolMessage(content=m.content, tool_call_id=m.tool_call_id or "", name=m.name))
    return out


def _text_of(content: Any) -> str:
    # Anthropic returns a list of content blocks; Gemini returns a string.
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text") or ""))
        return "".join(parts)
    return ""


def _reply_from_ai_message(msg: Any) -> ModelReply:
    calls: List[ToolCallRequest] = []
    for i, tc in enumerate(getattr(msg, "tool_calls", None) or []):
        calls.append(
            ToolCallRequest(
                id=str(tc.get("id") or f"call_{i}"),
                name=tc.get("name"),
                arguments=json.dumps(tc.get("args") or {}, ensure_ascii=False),
            )
        )
    # Unparseable arguments stay raw so the executor reports them back to the model.
    for j, tc in enumerate(getattr(msg, "invalid_tool_calls", None) or []):
        calls.append(
            ToolCallRequest(
                id=str(tc.get("id") or f"invalid_{j}"),
                name=tc.get("name"),
                arguments=tc.get("args") if tc.get("args") is not None else "",
            )
        )
    um = getattr(msg, "usage_metadata", None) or {}
    usage = TokenUsage(
        prompt_tokens=um.get("input_tokens"),
        completion_tokens=um.get("output_tokens"),
        total_tokens=um.get("total_tokens"),
    )
    text = _text_of(getattr(msg, "content", None)).strip()
    return ModelReply(content=text or None, tool_calls=calls, usage=usage)


class LangChainChatModel:
    """Wraps a LangChain chat model bound to the tool catalog."""

    def __init__(self, llm: Any, *, model_name: str) -> None:
        self._llm = llm
        self._model_name = model_name

    def complete(self, messages: Sequence[LLMMessage], tools: Sequence[Dict[str, Any]]) -> ModelReply:
        try:
            runnable = self._llm.bind_tools(list(tools), tool_choice="auto") if tools else self._llm
            msg = runnable.invoke(_to_langchain_messages(messages))
        except Exception as e:
            code = _classify_error(e, model=self._model_name)
            logger.warning("LLM call failed: %s (%s)", code, type(e).__name__)
            raise ModelUnavailable(code) from e
        return _reply_from_ai_message(msg)


class MockChatModel:
    """LLM_MOCK=1: answers immediately without tools."""

    def complete(self, messages: Sequence[LLMMessage], tools: Sequence[Dict[str, Any]]) -> ModelReply:
        _ = tools
        last_user = next((m.content for m in reversed(list(messages)) if m.role == "user"), "")
        return ModelReply(content=f"LLM_MOCK enabled: no external call was made. You asked: {last_user[:200]}")


def get_chat_model() -> ChatModel:
    """
    Build the configured chat model.

    Raises ModelUnavailable with a stable code when the provider cannot be constructed.
    """
    if _env_bool("LLM_MOCK", False):
        return MockChatModel()
    cfg = _load_config()
    llm, err = _get_llm_instance(_provider(), cfg)
    if err:
        raise ModelUnavailable(err)
    return LangChainChatModel(llm, model_name=cfg.model)
