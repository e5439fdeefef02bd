"""
Relationship resolution for one entity.

Both directions issue exactly one relationship read and one batched entity read, regardless of
how many neighbors exist. Failures are best-effort: callers get empty buckets plus a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from intelchat.core.entities import Bucket, Entity
from intelchat.errors import QueryFailed, Timeout
from intelchat.store.graph_client import ENTITY_FIELDS, Collection, GraphStore
from intelchat.store.predicates import eq, in_, or_

logger = logging.getLogger(__name__)

ROLE_BY_RELATIONSHIP: Dict[str, str] = {
    "uses": "used_by",
    "targets": "targeted_by",
    "exploits": "exploited_by",
    "indicates": "indicated_by",
    "mitigates": "mitigated_by",
    "attributed-to": "attributed_from",
    "located-at": "located_from",
}


@dataclass(frozen=True)
class EnrichmentWarning:
    entity_id: str
    direction: str  # forward | reverse
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"entity": self.entity_id, "direction": self.direction, "reason": self.reason}


def neighbor_ref(e: Entity) -> Dict[str, Any]:
    return {"id": e.internal_id, "name": e.name, "type": e.entity_type.value if e.entity_type else None, "linkPath": e.link_path}


@dataclass
class Resolution:
    entity_id: str
    relationship_type: str
    buckets: Dict[Bucket, List[Entity]] = field(default_factory=dict)
    neighbor_count: int = 0
    missing_ids: List[str] = field(default_factory=list)
    warning: Optional[EnrichmentWarning] = None

    def get(self, bucket: Bucket) -> List[Entity]:
        return list(self.buckets.get(bucket) or [])

    def refs(self, bucket: Bucket) -> List[Dict[str, Any]]:
        return [neighbor_ref(e) for e in self.get(bucket)]

    def names(self, bucket: Bucket) -> List[str]:
        return [e.name for e in self.get(bucket)]


@dataclass
class ReverseResolution:
    entity_id: str
    relationship_types: List[str]
    roles: Dict[str, List[Entity]] = field(default_factory=dict)
    neighbor_count: int = 0
    missing_ids: List[str] = field(default_factory=list)
    warning: Optional[EnrichmentWarning] = None

    def get(self, role: str) -> List[Entity]:
        return list(self.roles.get(role) or [])

    def refs(self, role: str, *, bucket: Optional[Bucket] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        out = [neighbor_ref(e) for e in self.get(role) if bucket is None or e.bucket == bucket]
        return out[:limit] if limit is not None else out

    def names(self, role: str, *, bucket: Optional[Bucket] = None) -> List[str]:
        return [e.name for e in self.get(role) if bucket is None or e.bucket == bucket]


def _dedupe(ids: Iterable[Any]) -> List[str]:
    seen = set()
    out: List[str] = []
    for x in ids:
        s = str(x or "").strip()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


def _fetch_entities(store: GraphStore, ids: Sequence[str]) -> Dict[str, Entity]:
    res = store.query(Collection.ENTITIES, select=ENTITY_FIELDS, filters=[in_("internal_id", ids)])
    out: Dict[str, Entity] = {}
    for row in res.rows:
        e = Entity.from_row(row)
        if e.internal_id:
            out[e.internal_id] = e
    return out


def _note_missing(entity_id: str, ids: Sequence[str], found: Dict[str, Entity]) -> List[str]:
    missing = [i for i in ids if i not in found]
    if missing:
        logger.debug("Neighbors of %s missing from entity mirror: %s", entity_id, missing[:20])
    return missing


def resolve_forward(store: GraphStore, entity_id: str, relationship_type: str) -> Resolution:
    """Targets of `entity_id --relationship_type--> *`, bucketed by entity type."""
    out = Resolution(entity_id=entity_id, relationship_type=relationship_type)
    try:
        rels = store.query(
            Collection.RELATIONSHIPS,
            select=("target_id", "relationship_type"),
            filters=[eq("relationship_type", relationship_type), eq("source_id", entity_id)],
        )
        ids = _dedupe(r.get("target_id") for r in rels.rows)
        found = _fetch_entities(store, ids)
    except (QueryFailed, Timeout) as e:
        logger.warning("Forward enrichment failed for %s (%s): %s", entity_id, relationship_type, e)
        out.warning = EnrichmentWarning(entity_id=entity_id, direction="forward", reason=str(e))
        return out

    out.missing_ids = _note_missing(entity_id, ids, found)
    for i in ids:
        e = found.get(i)
        if e is None:
            continue
        out.neighbor_count += 1
        b = e.bucket
        if b is None:
            continue
        out.buckets.setdefault(b, []).append(e)
    return out


def resolve_reverse(store: GraphStore, entity_id: str, relationship_types: Sequence[str]) -> ReverseResolution:
    """Sources of `* --t--> entity_id` for each requested `t`, grouped by role (`used_by`, ...)."""
    types = _dedupe(relationship_types)
    out = ReverseResolution(entity_id=entity_id, relationship_types=types)
    if not types:
        return out
    type_filter = eq("relationship_type", types[0]) if len(types) == 1 else or_(*[eq("relationship_type", t) for t in types])
    try:
        rels = store.query(
            Collection.RELATIONSHIPS,
            select=("source_id", "relationship_type"),
            filters=[type_filter, eq("target_id", entity_id)],
        )
        pairs: List[tuple] = []
        seen_pairs = set()
        for r in rels.rows:
            sid = str(r.get("source_id") or "").strip()
            rt = str(r.get("relationship_type") or "").strip()
            if not sid or (sid, rt) in seen_pairs:
                continue
            seen_pairs.add((sid, rt))
            pairs.append((sid, rt))
        ids = _dedupe(sid for sid, _ in pairs)
        found = _fetch_entities(store, ids)
    except (QueryFailed, Timeout) as e:
        logger.warning("Reverse enrichment failed for %s (%s): %s", entity_id, ",".join(types), e)
        out.warning = EnrichmentWarning(entity_id=entity_id, direction="reverse", reason=str(e))
        return out

    out.missing_ids = _note_missing(entity_id, ids, found)
    out.neighbor_count = sum(1 for i in ids if i in found)
    for sid, rt in pairs:
        e = found.get(sid)
        if e is None or e.entity_type is None:
            continue
        role = ROLE_BY_RELATIONSHIP.get(rt, f"{rt}_from")
        out.roles.setdefault(role, []).append(e)
    return out
