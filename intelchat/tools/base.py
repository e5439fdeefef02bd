from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from intelchat.core.entities import Entity, EntityType
from intelchat.core.time_window import MAX_DAYS_BACK, window_start
from intelchat.errors import QueryFailed, Timeout, UnknownTool
from intelchat.store.graph_client import ENTITY_FIELDS, Collection, GraphStore
from intelchat.store.predicates import Predicate, desc, eq, ilike, or_, sanitize_term

logger = logging.getLogger(__name__)

MAX_LIMIT = 50

T = TypeVar("T")
R = TypeVar("R")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ToolContext:
    """Everything a tool may touch: the store, a fan-out cap, and a clock."""

    store: GraphStore
    enrichment_workers: int = 4
    clock: Callable[[], datetime] = _utcnow

    def now(self) -> datetime:
        return self.clock()


@dataclass(frozen=True)
class ToolResult:
    ok: bool
    result: Any = None
    error: Optional[str] = None

    def payload(self) -> Any:
        """What the model sees for this call."""
        if self.ok:
            return self.result
        return {"error": self.error or "unknown_error"}


ToolFn = Callable[[ToolContext, Dict[str, Any]], Any]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    properties: Dict[str, Any] = field(default_factory=dict)
    required: Sequence[str] = ()
    fn: Optional[ToolFn] = None

    def schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": dict(self.properties),
                    "required": list(self.required),
                },
            },
        }


_REGISTRY: Dict[str, ToolSpec] = {}


def tool(name: str, description: str, *, properties: Optional[Dict[str, Any]] = None, required: Sequence[str] = ()):
    """Register a tool implementation under `name`."""

    def _wrap(fn: ToolFn) -> ToolFn:
        if name in _REGISTRY:
            raise ValueError(f"duplicate tool: {name}")
        _REGISTRY[name] = ToolSpec(
            name=name, description=description, properties=dict(properties or {}), required=tuple(required), fn=fn
        )
        return fn

    return _wrap


def registered_tools() -> Dict[str, ToolSpec]:
    return dict(_REGISTRY)


def tool_catalog() -> List[Dict[str, Any]]:
    """OpenAI-style function descriptors, in registration order."""
    return [spec.schema() for spec in _REGISTRY.values()]


def get_tool(name: str) -> ToolSpec:
    spec = _REGISTRY.get((name or "").strip())
    if spec is None or spec.fn is None:
        raise UnknownTool(name)
    return spec


def run_tool(ctx: ToolContext, name: str, args: Dict[str, Any]) -> ToolResult:
    """
    Dispatch one tool call. Unknown names and store failures become error results.

    Anything else a tool raises propagates; the orchestrator contains it.
    """
    try:
        spec = get_tool(name)
    except UnknownTool as e:
        return ToolResult(ok=False, error=f"unknown_tool:{e.tool}")
    try:
        out = spec.fn(ctx, dict(args or {}))
    except Timeout as e:
        logger.warning("Tool %s timed out: %s", spec.name, e)
        return ToolResult(ok=False, error=f"timeout: {e}")
    except QueryFailed as e:
        logger.warning("Tool %s query failed: %s", spec.name, e)
        return ToolResult(ok=False, error=str(e))
    if isinstance(out, dict) and set(out.keys()) == {"error"}:
        return ToolResult(ok=False, error=str(out["error"]))
    return ToolResult(ok=True, result=out)


def map_bounded(ctx: ToolContext, fn: Callable[[T], R], items: Sequence[T]) -> List[R]:
    """Apply `fn` to each item on a bounded pool; results keep input order."""
    xs = list(items)
    if not xs:
        return []
    workers = max(1, min(int(ctx.enrichment_workers), len(xs)))
    if workers == 1:
        return [fn(x) for x in xs]
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="intel-enrich") as ex:
        return list(ex.map(fn, xs))


# --------------------
# Argument helpers
# --------------------


def _norm_int(v: Any, *, default: int, lo: int, hi: int) -> int:
    try:
        x = int(v)
    except Exception:
        x = int(default)
    return max(lo, min(x, hi))


def _norm_key(s: Any) -> Optional[str]:
    if s is None:
        return None
    v = str(s).strip()
    return v or None


def arg_limit(args: Dict[str, Any], default: int) -> int:
    return _norm_int(args.get("limit"), default=default, lo=1, hi=MAX_LIMIT)


def arg_days_back(args: Dict[str, Any], default: int) -> int:
    return _norm_int(args.get("days_back"), default=default, lo=0, hi=MAX_DAYS_BACK)


def arg_term(args: Dict[str, Any], name: str) -> Optional[str]:
    """Required free-text argument; None when missing or empty after sanitizing."""
    raw = _norm_key(args.get(name))
    if raw is None or not sanitize_term(raw):
        return None
    return raw


def required(name: str) -> Dict[str, str]:
    return {"error": f"{name} is required"}


def not_found(kind: str, term: str) -> Dict[str, str]:
    return {"error": f'No {kind} found matching "{term}"'}


def since(ctx: ToolContext, days_back: int) -> str:
    return window_start(days_back, now=ctx.now()).isoformat()


# --------------------
# Store helpers
# --------------------


def fetch_entities(
    ctx: ToolContext,
    filters: Sequence[Predicate],
    *,
    order_by: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Entity]:
    res = ctx.store.query(
        Collection.ENTITIES,
        select=ENTITY_FIELDS,
        filters=filters,
        order=desc(order_by) if order_by else None,
        limit=limit,
    )
    return [Entity.from_row(r) for r in res.rows]


def find_one(ctx: ToolContext, entity_type: EntityType, term: str, *, also: Sequence[str] = ()) -> Optional[Entity]:
    """First entity of `entity_type` whose name (or any of `also`) contains `term`."""
    match: Predicate = ilike("name", term)
    if also:
        match = or_(match, *[ilike(c, term) for c in also])
    rows = fetch_entities(ctx, [eq("entity_type", entity_type), match], limit=1)
    return rows[0] if rows else None


def name_or_aliases(term: str) -> Predicate:
    return or_(ilike("name", term), ilike("data->>aliases", term))


# --------------------
# Formatting helpers
# --------------------


def published(e: Entity) -> Optional[str]:
    return e.attr("published") or e.created_iso()


def created_by(e: Entity, default: str = "Unknown") -> str:
    cb = e.attr("createdBy")
    if isinstance(cb, dict) and cb.get("name"):
        return str(cb["name"])
    return default


def cvss(e: Entity) -> Dict[str, Any]:
    return {
        "cvssScore": e.attr("x_opencti_cvss_base_score") or e.attr("cvss_base_score"),
        "severity": e.attr("x_opencti_cvss_base_severity") or e.attr("cvss_base_severity"),
    }


def with_warnings(item: Dict[str, Any], *resolutions: Any) -> Dict[str, Any]:
    warns = [r.warning.to_dict() for r in resolutions if getattr(r, "warning", None) is not None]
    if warns:
        item["enrichmentWarnings"] = warns
    return item
