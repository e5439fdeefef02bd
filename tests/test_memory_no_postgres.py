from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List

import pytest


def _clear_pg_env(monkeypatch) -> None:
    for k in (
        "POSTGRES_DSN",
        "POSTGRES_HOST",
        "POSTGRES_PORT",
        "POSTGRES_DB",
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "DB_AUTO_MIGRATE",
    ):
        monkeypatch.delenv(k, raising=False)


def test_session_store_returns_graceful_error_without_postgres(monkeypatch) -> None:
    _clear_pg_env(monkeypatch)

    from intelchat.memory.sessions import NOT_CONFIGURED, get_session_store

    store = get_session_store()
    ok, msg, sess = store.create_session(user_id="analyst@example.com")
    assert ok is False
    assert sess is None
    assert msg == NOT_CONFIGURED

    ok2, msg2, items = store.list_sessions(user_id="analyst@example.com")
    assert ok2 is False
    assert items == []
    assert "Postgres not configured" in msg2


def test_service_maps_missing_postgres_to_persistence_failed(monkeypatch, tool_ctx) -> None:
    _clear_pg_env(monkeypatch)

    from intelchat.chat.service import IntelChatService
    from intelchat.errors import PersistenceFailed

    svc = IntelChatService(tool_context=tool_ctx, model_factory=lambda: None)
    with pytest.raises(PersistenceFailed):
        svc.list_sessions("u1")


def test_argument_checks_happen_before_connecting() -> None:
    from intelchat.memory.sessions import PostgresSessionStore

    store = PostgresSessionStore("postgresql://unused")
    assert store.append_message(session_id="s", role="system", content="x") == (False, "invalid_role", None)
    assert store.create_session(user_id="  ") == (False, "user_id_required", None)


def test_message_rows_decode_tool_log_and_usage() -> None:
    from intelchat.memory.sessions import _row_to_message

    row = (
        "m1",
        "s1",
        "assistant",
        "answer",
        json.dumps({"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}),
        {"mode": "tools", "toolCalls": ["search_malware", "get_malware_profile"]},
        None,
    )
    m = _row_to_message(row)
    assert m.tool_call_log == ["search_malware", "get_malware_profile"]
    assert m.token_usage is not None and m.token_usage.total_tokens == 7

    bare = _row_to_message(("m2", "s1", "user", None, None, None, None))
    assert bare.content == ""
    assert bare.token_usage is None
    assert bare.tool_call_log == []


def test_dsn_from_env(monkeypatch) -> None:
    _clear_pg_env(monkeypatch)
    from intelchat.memory.config import build_postgres_dsn, load_memory_config

    assert build_postgres_dsn(load_memory_config()) is None

    monkeypatch.setenv("POSTGRES_DSN", "postgresql://u:p@db:5432/intel")
    assert build_postgres_dsn(load_memory_config()) == "postgresql://u:p@db:5432/intel"


def test_migrations_are_discovered() -> None:
    from intelchat.memory.migrate import MIGRATIONS_DIR, load_migrations

    migs = load_migrations()
    assert [m.version for m in migs] == ["0001_intel_chat"]
    assert migs[0].path.parent == MIGRATIONS_DIR
    assert len(migs[0].checksum) == 64
    assert "intel_chat_sessions" in migs[0].sql
    assert "intel_chat_messages" in migs[0].sql


class _FakeConn:
    def __init__(self, applied: dict) -> None:
        self.applied = dict(applied)
        self.executed: List[str] = []

    def __enter__(self) -> "_FakeConn":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    @contextmanager
    def transaction(self):  # type: ignore[no-untyped-def]
        yield

    def execute(self, sql: str, params: Any = None):  # type: ignore[no-untyped-def]
        self.executed.append(" ".join(sql.split()))
        rows = list(self.applied.items()) if sql.strip().startswith("SELECT version") else []

        class _Cur:
            def fetchall(self_inner):  # type: ignore[no-untyped-def]
                return rows

        return _Cur()


def test_apply_migrations_skips_applied_and_detects_drift(monkeypatch, tmp_path: Path) -> None:
    from intelchat.memory import migrate

    m1 = migrate.Migration(version="0001_a", path=tmp_path / "0001_a.sql", checksum="aaa", sql="SELECT 1;")
    m2 = migrate.Migration(version="0002_b", path=tmp_path / "0002_b.sql", checksum="bbb", sql="SELECT 2;")

    conn = _FakeConn({"0001_a": "aaa"})
    monkeypatch.setattr(migrate, "_connect", lambda dsn: conn)
    n, versions = migrate.apply_migrations(dsn="postgresql://x", migrations=[m1, m2])
    assert (n, versions) == (1, ["0002_b"])
    assert "SELECT 2;" in conn.executed
    assert "SELECT 1;" not in conn.executed
    assert conn.executed[-1].startswith("SELECT pg_advisory_unlock")

    drifted = _FakeConn({"0001_a": "zzz"})
    monkeypatch.setattr(migrate, "_connect", lambda dsn: drifted)
    with pytest.raises(RuntimeError):
        migrate.apply_migrations(dsn="postgresql://x", migrations=[m1])
    assert drifted.executed[-1].startswith("SELECT pg_advisory_unlock")


def test_auto_migrate_is_opt_in(monkeypatch) -> None:
    _clear_pg_env(monkeypatch)
    from intelchat.memory.migrate import maybe_auto_migrate

    assert maybe_auto_migrate() == (False, "DB_AUTO_MIGRATE is disabled")
    monkeypatch.setenv("DB_AUTO_MIGRATE", "1")
    assert maybe_auto_migrate() == (False, "Postgres DSN not configured")


def test_session_store_runs_auto_migrate_once(monkeypatch) -> None:
    _clear_pg_env(monkeypatch)
    from intelchat.memory import migrate, sessions

    calls: List[int] = []

    def _fake_auto_migrate():  # type: ignore[no-untyped-def]
        calls.append(1)
        return True, "No pending migrations"

    monkeypatch.setattr(sessions, "_migrate_checked", False)
    monkeypatch.setattr(migrate, "maybe_auto_migrate", _fake_auto_migrate)

    sessions.get_session_store()
    sessions.get_session_store()

    assert calls == [1]


def test_auto_migrate_failure_does_not_block_store(monkeypatch, caplog) -> None:
    _clear_pg_env(monkeypatch)
    from intelchat.memory import migrate, sessions

    def _broken():  # type: ignore[no-untyped-def]
        raise RuntimeError("lock timeout")

    monkeypatch.setattr(sessions, "_migrate_checked", False)
    monkeypatch.setattr(migrate, "maybe_auto_migrate", _broken)

    with caplog.at_level("WARNING", logger="intelchat.memory.sessions"):
        store = sessions.get_session_store()

    assert isinstance(store, sessions.PostgresSessionStore)
    assert "lock timeout" in caplog.text
