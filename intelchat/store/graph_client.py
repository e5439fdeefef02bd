"""Read-only client for the mirrored intelligence graph (PostgREST over the intel schema)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import requests

from intelchat.errors import QueryFailed, Timeout
from intelchat.store.config import GraphStoreConfig, load_graph_store_config
from intelchat.store.predicates import In, Order, Predicate, build_query_string

logger = logging.getLogger(__name__)

_CONTENT_RANGE_RE = re.compile(r"/(\d+|\*)\s*$")


class Collection(str, Enum):
    ENTITIES = "object_current"
    RELATIONSHIPS = "relationship_current"


ENTITY_FIELDS = ("internal_id", "name", "entity_type", "data", "source_created_at", "source_updated_at")


@dataclass(frozen=True)
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    count: Optional[int] = None

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None


@runtime_checkable
class GraphStore(Protocol):
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
    ) -> QueryResult: ...


def _parse_content_range(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    m = _CONTENT_RANGE_RE.search(raw)
    if not m or m.group(1) == "*":
        return None
    return int(m.group(1))


class GraphStoreClient:
    def __init__(self, cfg: GraphStoreConfig, *, session: Optional[requests.Session] = None) -> None:
        self._cfg = cfg
        self._session = session or requests.Session()

    @property
    def config(self) -> GraphStoreConfig:
        return self._cfg

    def _headers(self, *, count: bool) -> Dict[str, str]:
        key = str(self._cfg.service_key or "")
        headers = {
            "Authorization": f"Bearer {key}",
            "apikey": key,
            "Accept-Profile": self._cfg.schema,
            "Content-Type": "application/json",
        }
        if count:
            headers["Prefer"] = "count=exact"
        return headers

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
        """
        Execute one filtered read.

        Raises:
            QueryFailed: not configured, transport error, non-2xx, or malformed body.
            Timeout: the request exceeded INTEL_QUERY_TIMEOUT_SECONDS.
        """
        if not self._cfg.configured:
            raise QueryFailed("graph_store_not_configured")

        # An empty id list can never match; skip the round trip.
        for p in filters:
            if isinstance(p, In) and not p.values:
                return QueryResult(rows=[], count=0 if count else None)

        if single and limit is None:
            limit = 1
        qs = build_query_string(select=select, filters=filters, order=order, limit=limit)
        base = f"{self._cfg.url}/rest/v1/{Collection(collection).value}"

        # Prepare first, then pin the URL: requests would otherwise requote `->` into `-%3E`.
        prepared = requests.Request("GET", base, headers=self._headers(count=count)).prepare()
        prepared.url = f"{base}?{qs}"

        try:
            resp = self._session.send(prepared, timeout=self._cfg.timeout_seconds)
        except requests.exceptions.Timeout as e:
            logger.warning("Intel query timed out after %ss: %s", self._cfg.timeout_seconds, collection)
            raise Timeout(f"graph store query timed out ({self._cfg.timeout_seconds}s)") from e
        except requests.exceptions.RequestException as e:
            logger.error("Intel query transport error: %s", e)
            raise QueryFailed(f"Query failed: {type(e).__name__}", body=str(e)) from e

        if not (200 <= resp.status_code < 300):
            body = resp.text or ""
            logger.error("Intel query error: %s %s", resp.status_code, body[:200])
            raise QueryFailed("Query failed", status=resp.status_code, body=body)

        try:
            data = resp.json()
        except ValueError as e:
            raise QueryFailed("Query failed: malformed JSON", status=resp.status_code, body=resp.text or "") from e
        if not isinstance(data, list):
            raise QueryFailed("Query failed: expected a JSON array", status=resp.status_code, body=resp.text or "")

        rows = [r for r in data if isinstance(r, dict)]
        if single:
            rows = rows[:1]
        total = _parse_content_range(resp.headers.get("content-range")) if count else None
        return QueryResult(rows=rows, count=total)


def get_graph_store() -> GraphStore:
    """Seam for swapping store implementations (tests inject fakes through ToolContext)."""
    return GraphStoreClient(load_graph_store_config())
