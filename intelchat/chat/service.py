from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

from intelchat.chat.runtime import run_intel_chat
from intelchat.chat.settings import ChatSettings, load_chat_settings
from intelchat.chat.titles import derive_title
from intelchat.chat.types import ChatReply, Message, Session
from intelchat.errors import IntelChatError, PersistenceFailed, SessionNotFound
from intelchat.llm.client import ChatModel, get_chat_model
from intelchat.memory.sessions import SessionStore, get_session_store
from intelchat.store.config import load_graph_store_config
from intelchat.store.graph_client import get_graph_store
from intelchat.tools import ToolContext

logger = logging.getLogger(__name__)

LIST_SESSIONS_LIMIT = 20


def _default_tool_context() -> ToolContext:
    cfg = load_graph_store_config()
    return ToolContext(store=get_graph_store(), enrichment_workers=cfg.enrichment_workers)


class IntelChatService:
    """
    Session-aware chat turns.

    Collaborators are injectable; by default they come from env (Postgres, graph store, LLM provider).
    """

    def __init__(
        self,
        *,
        sessions: Optional[SessionStore] = None,
        tool_context: Optional[ToolContext] = None,
        model_factory: Optional[Callable[[], ChatModel]] = None,
        settings: Optional[ChatSettings] = None,
    ) -> None:
        self._sessions = sessions or get_session_store()
        self._ctx = tool_context
        self._model_factory = model_factory or get_chat_model
        self._settings = settings or load_chat_settings()

    def _tool_context(self) -> ToolContext:
        if self._ctx is None:
            self._ctx = _default_tool_context()
        return self._ctx

    def _store_call(self, op: str, fn: Callable[[], Tuple[Any, ...]]) -> Tuple[Any, ...]:
        try:
            out = fn()
        except Exception as e:
            logger.error("Session store %s failed: %s", op, e)
            raise PersistenceFailed(f"{op}: {type(e).__name__}") from e
        ok, msg = out[0], out[1]
        if not ok:
            if msg == "not_found":
                raise SessionNotFound(op)
            raise PersistenceFailed(f"{op}: {msg}")
        return out

    def create_session(self, user_id: str) -> Session:
        _, _, sess = self._store_call("create_session", lambda: self._sessions.create_session(user_id=user_id))
        return sess

    def list_sessions(self, user_id: str) -> List[Session]:
        _, _, items = self._store_call(
            "list_sessions", lambda: self._sessions.list_sessions(user_id=user_id, limit=LIST_SESSIONS_LIMIT)
        )
        return list(items)

    def get_messages(self, session_id: str) -> List[Message]:
        _, _, items = self._store_call("get_messages", lambda: self._sessions.list_messages(session_id=session_id))
        return list(items)

    def delete_session(self, session_id: str, user_id: str) -> bool:
        _, _, deleted = self._store_call(
            "delete_session", lambda: self._sessions.delete_session(session_id=session_id, user_id=user_id)
        )
        return bool(deleted)

    def archive_session(self, session_id: str, user_id: str) -> bool:
        _, _, changed = self._store_call(
            "archive_session",
            lambda: self._sessions.set_archived(session_id=session_id, user_id=user_id, archived=True),
        )
        return bool(changed)

    def _owned_session(self, session_id: str, user_id: str) -> Session:
        _, _, sess = self._store_call("get_session", lambda: self._sessions.get_session(session_id=session_id))
        if sess is None or sess.user_id != user_id:
            raise SessionNotFound(session_id)
        return sess

    def chat(
        self,
        session_id: Optional[str],
        user_id: str,
        message_text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ChatReply:
        """
        Run one turn in a session (created on demand when `session_id` is None).

        The user message is stored before the model runs. The assistant message is stored only
        when the turn completes; model, timeout and cancellation errors propagate.
        """
        if not self._settings.enabled:
            raise IntelChatError("Intel chat is disabled (INTEL_CHAT_ENABLED=0)")
        text = (message_text or "").strip()
        if not text:
            raise ValueError("message is required")

        if session_id is None:
            sid = self.create_session(user_id).id
        else:
            sid = self._owned_session(session_id, user_id).id

        history = self.get_messages(sid)
        self._store_call("append_user_message", lambda: self._sessions.append_message(session_id=sid, role="user", content=text))

        turn = run_intel_chat(
            model=self._model_factory(),
            ctx=self._tool_context(),
            user_message=text,
            history=history,
            settings=self._settings,
            cancel_event=cancel_event,
        )
        logger.info("Chat turn done: session=%s rounds=%d tools=%s", sid, turn.rounds, turn.tool_call_log)

        _, _, saved = self._store_call(
            "append_assistant_message",
            lambda: self._sessions.append_message(
                session_id=sid,
                role="assistant",
                content=turn.content,
                token_usage=turn.usage,
                tool_call_log=turn.tool_call_log,
            ),
        )
        self._maybe_title(sid, text)
        return ChatReply(message=saved, usage=turn.usage, tool_calls=turn.tool_call_log, session_id=sid)

    def _maybe_title(self, session_id: str, first_message: str) -> None:
        # Titling never fails a turn whose assistant message is already stored.
        try:
            _, _, n = self._store_call("count_messages", lambda: self._sessions.count_messages(session_id=session_id))
            if n != 2:
                return
            ok, msg = self._sessions.set_title(session_id=session_id, title=derive_title(first_message))
        except Exception as e:
            logger.warning("Could not set title for session %s: %s", session_id, e)
            return
        if not ok:
            logger.warning("Could not set title for session %s: %s", session_id, msg)
