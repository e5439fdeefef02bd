"""Error taxonomy for the intel chat engine.

Tool-side failures (QueryFailed, Timeout inside a tool, UnknownTool, ToolExecutionFailed) are
contained by the orchestrator and fed back to the model as `{"error": ...}` payloads.
Model, timeout and persistence failures propagate to the caller of a chat turn.
"""

from __future__ import annotations

from typing import Optional

_MAX_BODY_CHARS = 500


class IntelChatError(Exception):
    """Base class for all engine errors."""


class QueryFailed(IntelChatError):
    """Graph store transport/HTTP/JSON failure."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: str = "") -> None:
        self.status = status
        self.body = (body or "")[:_MAX_BODY_CHARS]
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"{base} (status={self.status})"
        return base


class Timeout(IntelChatError):
    """A store request, a model round, or a whole chat turn ran out of time."""


class ModelUnavailable(IntelChatError):
    """The language-model call failed. Aborts the turn."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"LLM unavailable: {code}")


class ToolExecutionFailed(IntelChatError):
    """Uncaught exception inside a tool body."""

    def __init__(self, tool: str, cause: BaseException) -> None:
        self.tool = tool
        self.cause = cause
        super().__init__(f"Tool execution failed: {tool}: {type(cause).__name__}: {str(cause)[:200]}")


class UnknownTool(IntelChatError):
    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"Unknown tool: {tool}")


class PersistenceFailed(IntelChatError):
    """Session/message store write or read failed."""


class SessionNotFound(IntelChatError):
    pass


class TurnCancelled(IntelChatError):
    """The caller went away mid-turn; no further model rounds were issued."""
