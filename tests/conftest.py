"""
Pytest config.

The repo root is pinned on sys.path so `import intelchat` works without an editable install.

`graph_store` is an in-memory stand-in for the PostgREST mirror: it evaluates the same typed
predicates the real client serializes, so tool tests exercise real filter construction.
"""

from __future__ import annotations

import json
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from intelchat.errors import QueryFailed  # noqa: E402
from intelchat.store.graph_client import Collection, QueryResult  # noqa: E402
from intelchat.store.predicates import (  # noqa: E402
    Contains,
    Eq,
    Gte,
    ILike,
    In,
    Lte,
    Neq,
    Or,
    Order,
    Predicate,
)
from intelchat.tools import ToolContext  # noqa: E402

# Fixed "now" for every tool test.
NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def _scalar(v: Any) -> Any:
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, datetime):
        return v.isoformat()
    return v


def _resolve(row: Dict[str, Any], path: str) -> Any:
    parts = re.split(r"(->>?)", path)
    v: Any = row.get(parts[0])
    as_text = False
    for i in range(1, len(parts), 2):
        v = v.get(parts[i + 1]) if isinstance(v, dict) else None
        as_text = parts[i] == "->>"
    if as_text and v is not None and not isinstance(v, str):
        v = json.dumps(v)
    return v


def _as_dt(v: Any) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(str(v).replace("Z", "+00:00"))
    except ValueError:
        return None


def _cmp(left: Any, right: Any) -> int:
    ld, rd = _as_dt(left), _as_dt(right)
    if ld is not None and rd is not None:
        a, b = ld, rd
    else:
        a, b = float(left), float(right)
    return (a > b) - (a < b)


def _matches(p: Predicate, row: Dict[str, Any]) -> bool:
    if isinstance(p, Or):
        return any(_matches(x, row) for x in p.predicates)
    v = _resolve(row, p.column.path)
    if isinstance(p, Eq):
        return v is not None and str(v) == str(_scalar(p.value))
    if isinstance(p, Neq):
        return v is not None and str(v) != str(_scalar(p.value))
    if isinstance(p, Gte):
        return v is not None and _cmp(v, _scalar(p.value)) >= 0
    if isinstance(p, Lte):
        return v is not None and _cmp(v, _scalar(p.value)) <= 0
    if isinstance(p, ILike):
        return v is not None and p.clean_term.lower() in str(v).lower()
    if isinstance(p, In):
        return v is not None and str(v) in {str(_scalar(x)) for x in p.values}
    if isinstance(p, Contains):
        return isinstance(v, list) and all(_scalar(x) in v for x in p.values)
    raise AssertionError(f"unsupported predicate: {p!r}")


class FakeGraphStore:
    def __init__(self) -> None:
        self.entities: List[Dict[str, Any]] = []
        self.relationships: List[Dict[str, Any]] = []
        self.calls: List[Dict[str, Any]] = []
        self.fail: set = set()

    def add_entity(
        self,
        internal_id: str,
        name: str,
        entity_type: Any,
        data: Optional[Dict[str, Any]] = None,
        *,
        created: str = "2026-03-01T00:00:00Z",
        updated: Optional[str] = None,
    ) -> None:
        self.entities.append(
            {
                "internal_id": internal_id,
                "name": name,
                "entity_type": _scalar(entity_type),
                "data": dict(data or {}),
                "source_created_at": created,
                "source_updated_at": updated or created,
            }
        )

    def relate(self, source_id: str, relationship_type: str, target_id: str) -> None:
        self.relationships.append(
            {"source_id": source_id, "target_id": target_id, "relationship_type": relationship_type}
        )

    def calls_to(self, collection: Collection) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["collection"] == collection]

    def query(
        self,
        collection: Collection,
        *,
        select: Sequence[str] = (),
        filters: Sequence[Predicate] = (),
        order: Optional[Order] = None,
        limit: Optional[int] = None,
        single: bool = False,
        count: bool = False,
    ) -> QueryResult:
        self.calls.append({"collection": collection, "filters": list(filters), "limit": limit, "count": count})
        if collection in self.fail:
            raise QueryFailed("Query failed: boom", status=500)
        rows = self.entities if collection == Collection.ENTITIES else self.relationships
        hits = [r for r in rows if all(_matches(p, r) for p in filters)]
        if order is not None:
            key = order.column.path
            hits = sorted(hits, key=lambda r: str(r.get(key) or ""), reverse=order.descending)
        total = len(hits)
        if single:
            limit = 1
        if limit is not None:
            hits = hits[:limit]
        return QueryResult(rows=[dict(r) for r in hits], count=total if count else None)


@pytest.fixture
def graph_store() -> FakeGraphStore:
    return FakeGraphStore()


@pytest.fixture
def tool_ctx(graph_store: FakeGraphStore) -> ToolContext:
    return ToolContext(store=graph_store, enrichment_workers=2, clock=lambda: NOW)
