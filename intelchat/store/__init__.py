"""Graph store access: typed predicates + a read-only PostgREST client."""

from __future__ import annotations

from intelchat.store.graph_client import (
    ENTITY_FIELDS,
    Collection,
    GraphStore,
    GraphStoreClient,
    QueryResult,
    get_graph_store,
)

__all__ = [
    "ENTITY_FIELDS",
    "Collection",
    "GraphStore",
    "GraphStoreClient",
    "QueryResult",
    "get_graph_store",
]
