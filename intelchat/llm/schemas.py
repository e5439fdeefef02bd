from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

LLMRole = Literal["system", "user", "assistant", "tool"]


def _nonneg_int(v: Any) -> int:
    try:
        return max(0, int(v or 0))
    except Exception:
        return 0


class ToolCallRequest(BaseModel):
    """One tool call requested by the model. `arguments` is the raw JSON text."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = ""
    arguments: str = "{}"

    @field_validator("name", mode="before")
    @classmethod
    def _name_trim(cls, v: Any) -> str:
        return str(v or "").strip()[:120]

    @field_validator("arguments", mode="before")
    @classmethod
    def _args_text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class TokenUsage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @field_validator("prompt_tokens", "completion_tokens", "total_tokens", mode="before")
    @classmethod
    def _counts(cls, v: Any) -> int:
        return _nonneg_int(v)

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class LLMMessage(BaseModel):
    """Provider-neutral conversation message fed to a chat model."""

    model_config = ConfigDict(extra="ignore")

    role: LLMRole
    content: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    # Set on role="tool" messages.
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


class ModelReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)

    @property
    def text(self) -> str:
        return (self.content or "").strip()
