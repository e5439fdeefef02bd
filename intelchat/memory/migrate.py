"""
Checksum-tracked SQL migrations for the chat session store.

    python -m intelchat.memory.migrate
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from intelchat.log import configure_logging
from intelchat.memory.config import MemoryConfig, build_postgres_dsn, load_memory_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# Advisory lock key shared by every process that migrates the intel_chat schema.
MIGRATION_LOCK_KEY = 470112358132134  # bigint

_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  version text PRIMARY KEY,
  checksum text NOT NULL,
  applied_at timestamptz NOT NULL DEFAULT now()
);
"""


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    checksum: str
    sql: str

    @classmethod
    def from_file(cls, path: Path) -> "Migration":
        raw = path.read_bytes()
        return cls(
            version=path.stem,
            path=path,
            checksum=hashlib.sha256(raw).hexdigest(),
            sql=raw.decode("utf-8"),
        )


def load_migrations() -> List[Migration]:
    """All `*.sql` files under MIGRATIONS_DIR, in filename order."""
    if not MIGRATIONS_DIR.is_dir():
        return []
    return [Migration.from_file(p) for p in sorted(MIGRATIONS_DIR.glob("*.sql")) if p.is_file()]


def _connect(dsn: str):
    import psycopg

    return psycopg.connect(dsn)


def _applied_checksums(conn) -> Dict[str, str]:
    conn.execute(_LEDGER_DDL)
    return {str(v): str(c) for v, c in conn.execute("SELECT version, checksum FROM schema_migrations;").fetchall()}


def _pending(migs: Iterable[Migration], applied: Dict[str, str]) -> List[Migration]:
    todo: List[Migration] = []
    for m in migs:
        recorded = applied.get(m.version)
        if recorded is None:
            todo.append(m)
        elif recorded != m.checksum:
            raise RuntimeError(f"{m.version} changed after it was applied (db={recorded[:12]} file={m.checksum[:12]})")
    return todo


def apply_migrations(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> Tuple[int, List[str]]:
    """
    Apply pending migrations, one transaction each, under an advisory lock.

    Returns: (applied_count, applied_versions)
    Raises RuntimeError when an applied migration's file changed.
    """
    migs = list(migrations) if migrations is not None else load_migrations()
    done: List[str] = []

    with _connect(dsn) as conn:
        conn.execute("SELECT pg_advisory_lock(%s);", (MIGRATION_LOCK_KEY,))
        try:
            for m in _pending(migs, _applied_checksums(conn)):
                with conn.transaction():
                    conn.execute(m.sql)
                    conn.execute("INSERT INTO schema_migrations(version, checksum) VALUES (%s, %s);", (m.version, m.checksum))
                logger.info("Applied migration %s", m.version)
                done.append(m.version)
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s);", (MIGRATION_LOCK_KEY,))

    return len(done), done


def _describe(n: int, versions: List[str]) -> str:
    return f"Applied {n} migration(s): {', '.join(versions)}" if n else "No pending migrations"


def maybe_auto_migrate(cfg: Optional[MemoryConfig] = None) -> Tuple[bool, str]:
    """
    Migrate when DB_AUTO_MIGRATE=1 and Postgres is configured.

    Returns: (did_attempt, message)
    """
    cfg = cfg or load_memory_config()
    if not cfg.db_auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        return False, "Postgres DSN not configured"
    try:
        return True, _describe(*apply_migrations(dsn=dsn))
    except Exception as e:
        logger.error("Auto-migration failed: %s", e)
        return True, f"Migration failed: {e}"


def main(argv: Optional[List[str]] = None) -> int:
    _ = argv
    configure_logging()
    dsn = build_postgres_dsn(load_memory_config())
    if not dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).")
        return 2
    print(_describe(*apply_migrations(dsn=dsn)) + ".")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
