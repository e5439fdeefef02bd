"""
Postgres-backed chat sessions and messages.

Every call returns `(ok, msg, obj)`; `msg` is "ok", "not_found", or a short failure code.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from intelchat.chat.types import Message, Session
from intelchat.llm.schemas import TokenUsage
from intelchat.memory.config import build_postgres_dsn, load_memory_config

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Postgres not configured"

_SESSION_COLS = "id::text, user_id, title, created_at, updated_at, is_archived"
_MESSAGE_COLS = "id::text, session_id::text, role, content, token_usage, query_context, created_at"


class SessionStore(Protocol):
    def create_session(self, *, user_id: str) -> Tuple[bool, str, Optional[Session]]: ...

    def get_session(self, *, session_id: str) -> Tuple[bool, str, Optional[Session]]: ...

    def list_sessions(self, *, user_id: str, limit: int = 20) -> Tuple[bool, str, List[Session]]: ...

    def list_messages(self, *, session_id: str) -> Tuple[bool, str, List[Message]]: ...

    def count_messages(self, *, session_id: str) -> Tuple[bool, str, int]: ...

    def append_message(
        self,
        *,
        session_id: str,
        role: str,
        content: str,
        token_usage: Optional[TokenUsage] = None,
        tool_call_log: Sequence[str] = (),
    ) -> Tuple[bool, str, Optional[Message]]: ...

    def set_title(self, *, session_id: str, title: str) -> Tuple[bool, str]: ...

    def delete_session(self, *, session_id: str, user_id: str) -> Tuple[bool, str, bool]: ...

    def set_archived(self, *, session_id: str, user_id: str, archived: bool) -> Tuple[bool, str, bool]: ...


def _connect(dsn: str):
    import psycopg

    return psycopg.connect(dsn)


def _json_obj(v: Any) -> Any:
    if isinstance(v, (str, bytes)):
        try:
            return json.loads(v)
        except ValueError:
            return None
    return v


def _row_to_session(row) -> Session:
    return Session(
        id=str(row[0]),
        user_id=str(row[1]),
        title=str(row[2]) if row[2] else None,
        created_at=row[3],
        updated_at=row[4],
        archived=bool(row[5]),
    )


def _row_to_message(row) -> Message:
    usage = _json_obj(row[4])
    ctx = _json_obj(row[5])
    calls = ctx.get("toolCalls") if isinstance(ctx, dict) else None
    return Message(
        id=str(row[0]),
        session_id=str(row[1]),
        role=str(row[2]),
        content=str(row[3] or ""),
        token_usage=TokenUsage.model_validate(usage) if isinstance(usage, dict) else None,
        tool_call_log=[str(x) for x in calls] if isinstance(calls, list) else [],
        created_at=row[6],
    )


class PostgresSessionStore:
    def __init__(self, dsn: Optional[str]) -> None:
        self._dsn = dsn

    def create_session(self, *, user_id: str) -> Tuple[bool, str, Optional[Session]]:
        if not self._dsn:
            return False, NOT_CONFIGURED, None
        uid = (user_id or "").strip()
        if not uid:
            return False, "user_id_required", None
        with _connect(self._dsn) as conn:
            row = conn.execute(
                f"INSERT INTO intel_chat_sessions(user_id) VALUES (%s) RETURNING {_SESSION_COLS};",
                (uid,),
            ).fetchone()
        if not row:
            return False, "db_error", None
        return True, "ok", _row_to_session(row)

    def get_session(self, *, session_id: str) -> Tuple[bool, str, Optional[Session]]:
        if not self._dsn:
            return False, NOT_CONFIGURED, None
        with _connect(self._dsn) as conn:
            row = conn.execute(
                f"SELECT {_SESSION_COLS} FROM intel_chat_sessions WHERE id::text = %s;",
                (session_id,),
            ).fetchone()
        if not row:
            return False, "not_found", None
        return True, "ok", _row_to_session(row)

    def list_sessions(self, *, user_id: str, limit: int = 20) -> Tuple[bool, str, List[Session]]:
        if not self._dsn:
            return False, NOT_CONFIGURED, []
        lim = max(1, min(int(limit), 200))
        with _connect(self._dsn) as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLS}
                FROM intel_chat_sessions
                WHERE user_id = %s AND is_archived = false
                ORDER BY updated_at DESC
                LIMIT %s;
                """,
                ((user_id or "").strip(), lim),
            ).fetchall()
        return True, "ok", [_row_to_session(r) for r in rows or []]

    def list_messages(self, *, session_id: str) -> Tuple[bool, str, List[Message]]:
        if not self._dsn:
            return False, NOT_CONFIGURED, []
        with _connect(self._dsn) as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLS}
                FROM intel_chat_messages
                WHERE session_id::text = %s
                ORDER BY created_at ASC, id ASC;
                """,
                (session_id,),
            ).fetchall()
        return True, "ok", [_row_to_message(r) for r in rows or []]

    def count_messages(self, *, session_id: str) -> Tuple[bool, str, int]:
        if not self._dsn:
            return False, NOT_CONFIGURED, 0
        with _connect(self._dsn) as conn:
            row = conn.execute(
                "SELECT count(*) FROM intel_chat_messages WHERE session_id::text = %s;",
                (session_id,),
            ).fetchone()
        return True, "ok", int(row[0] if row else 0)

    def append_message(
        self,
        *,
        session_id: str,
        role: str,
        content: str,
        token_usage: Optional[TokenUsage] = None,
        tool_call_log: Sequence[str] = (),
    ) -> Tuple[bool, str, Optional[Message]]:
        if not self._dsn:
            return False, NOT_CONFIGURED, None
        rl = (role or "").strip().lower()
        if rl not in ("user", "assistant"):
            return False, "invalid_role", None
        usage_json = json.dumps(token_usage.model_dump()) if token_usage is not None else None
        ctx_json = json.dumps({"mode": "tools", "toolCalls": list(tool_call_log)}) if rl == "assistant" else None
        with _connect(self._dsn) as conn:
            with conn.transaction():
                exists = conn.execute(
                    "SELECT 1 FROM intel_chat_sessions WHERE id::text = %s;",
                    (session_id,),
                ).fetchone()
                if not exists:
                    return False, "not_found", None
                row = conn.execute(
                    f"""
                    INSERT INTO intel_chat_messages(session_id, role, content, token_usage, query_context)
                    VALUES (%s::uuid, %s, %s, %s::jsonb, %s::jsonb)
                    RETURNING {_MESSAGE_COLS};
                    """,
                    (session_id, rl, str(content or ""), usage_json, ctx_json),
                ).fetchone()
        if not row:
            return False, "db_error", None
        return True, "ok", _row_to_message(row)

    def set_title(self, *, session_id: str, title: str) -> Tuple[bool, str]:
        if not self._dsn:
            return False, NOT_CONFIGURED
        with _connect(self._dsn) as conn:
            cur = conn.execute(
                "UPDATE intel_chat_sessions SET title = %s WHERE id::text = %s;",
                (title, session_id),
            )
        return (True, "ok") if cur.rowcount else (False, "not_found")

    def delete_session(self, *, session_id: str, user_id: str) -> Tuple[bool, str, bool]:
        if not self._dsn:
            return False, NOT_CONFIGURED, False
        with _connect(self._dsn) as conn:
            cur = conn.execute(
                "DELETE FROM intel_chat_sessions WHERE id::text = %s AND user_id = %s;",
                (session_id, (user_id or "").strip()),
            )
        return True, "ok", bool(cur.rowcount)

    def set_archived(self, *, session_id: str, user_id: str, archived: bool) -> Tuple[bool, str, bool]:
        if not self._dsn:
            return False, NOT_CONFIGURED, False
        with _connect(self._dsn) as conn:
            cur = conn.execute(
                "UPDATE intel_chat_sessions SET is_archived = %s WHERE id::text = %s AND user_id = %s;",
                (bool(archived), session_id, (user_id or "").strip()),
            )
        return True, "ok", bool(cur.rowcount)


_migrate_lock = threading.Lock()
_migrate_checked = False


def _auto_migrate_once() -> None:
    """Apply migrations on first store construction when DB_AUTO_MIGRATE=1; failures are logged."""
    global _migrate_checked
    with _migrate_lock:
        if _migrate_checked:
            return
        _migrate_checked = True
    try:
        from intelchat.memory.migrate import maybe_auto_migrate

        did_attempt, msg = maybe_auto_migrate()
        if did_attempt:
            logger.info("DB migrations: %s", msg)
    except Exception as e:
        logger.warning("DB migrations: auto-migrate failed: %s", e)


def get_session_store() -> SessionStore:
    _auto_migrate_once()
    return PostgresSessionStore(build_postgres_dsn(load_memory_config()))
