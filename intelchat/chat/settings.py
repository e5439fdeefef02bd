from __future__ import annotations

import os
from dataclasses import dataclass

MAX_ROUNDS = 5
MAX_HISTORY = 10


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


@dataclass(frozen=True)
class ChatSettings:
    enabled: bool = True

    # Loop bounds
    max_rounds: int = MAX_ROUNDS
    history_limit: int = MAX_HISTORY
    max_parallel_tools: int = 4

    # Deadlines
    round_timeout_seconds: int = 60
    turn_timeout_seconds: int = 180


def load_chat_settings() -> ChatSettings:
    """
    Load chat loop settings from env.

    - INTEL_CHAT_ENABLED (default: 1)
    - INTEL_CHAT_MAX_ROUNDS (default: 5, range: 1-5)
    - INTEL_CHAT_HISTORY_LIMIT (default: 10, range: 0-10)
    - INTEL_CHAT_MAX_PARALLEL_TOOLS (default: 4, range: 1-16)
    - INTEL_CHAT_ROUND_TIMEOUT_SECONDS (default: 60, range: 5-300)
    - INTEL_CHAT_TURN_TIMEOUT_SECONDS (default: 180, range: 10-900)
    """
    return ChatSettings(
        enabled=_env_bool("INTEL_CHAT_ENABLED", True),
        max_rounds=max(1, min(_env_int("INTEL_CHAT_MAX_ROUNDS", MAX_ROUNDS), MAX_ROUNDS)),
        history_limit=max(0, min(_env_int("INTEL_CHAT_HISTORY_LIMIT", MAX_HISTORY), MAX_HISTORY)),
        max_parallel_tools=max(1, min(_env_int("INTEL_CHAT_MAX_PARALLEL_TOOLS", 4), 16)),
        round_timeout_seconds=max(5, min(_env_int("INTEL_CHAT_ROUND_TIMEOUT_SECONDS", 60), 300)),
        turn_timeout_seconds=max(10, min(_env_int("INTEL_CHAT_TURN_TIMEOUT_SECONDS", 180), 900)),
    )
