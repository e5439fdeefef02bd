from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from intelchat.llm.schemas import TokenUsage

MessageRole = Literal["user", "assistant"]
ChatToolOutcome = Literal["ok", "empty", "error"]


class Session(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    archived: bool = False


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    session_id: str
    role: MessageRole
    content: str
    token_usage: Optional[TokenUsage] = None
    tool_call_log: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ChatToolEvent(BaseModel):
    tool: str
    call_id: str = ""
    args: Dict[str, Any] = Field(default_factory=dict)
    ok: bool
    result: Any = None
    error: Optional[str] = None
    outcome: Optional[ChatToolOutcome] = None
    summary: Optional[str] = None


class ChatTurnResult(BaseModel):
    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    tool_call_log: List[str] = Field(default_factory=list)
    tool_events: List[ChatToolEvent] = Field(default_factory=list)
    rounds: int = 0


class ChatReply(BaseModel):
    message: Message
    usage: TokenUsage = Field(default_factory=TokenUsage)
    tool_calls: List[str] = Field(default_factory=list)
    session_id: str
