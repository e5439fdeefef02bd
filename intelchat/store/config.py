from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


@dataclass(frozen=True)
class GraphStoreConfig:
    # PostgREST endpoint of the mirrored intel schema
    url: Optional[str]
    service_key: Optional[str]
    schema: str = "intel"

    # Transport
    timeout_seconds: int = 30

    # Tool-side enrichment fan-out
    enrichment_workers: int = 4

    @property
    def configured(self) -> bool:
        return bool(self.url and self.service_key)


def load_graph_store_config() -> GraphStoreConfig:
    """
    Load graph store settings from env.

    - SUPABASE_URL (required)
    - SUPABASE_SERVICE_ROLE_KEY (required)
    - INTEL_SCHEMA (default: intel)
    - INTEL_QUERY_TIMEOUT_SECONDS (default: 30, range: 1-120)
    - INTEL_ENRICHMENT_WORKERS (default: 4, range: 1-16)
    """
    url = (os.getenv("SUPABASE_URL") or "").strip().rstrip("/") or None
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip() or None
    schema = (os.getenv("INTEL_SCHEMA") or "").strip() or "intel"
    return GraphStoreConfig(
        url=url,
        service_key=key,
        schema=schema,
        timeout_seconds=max(1, min(_env_int("INTEL_QUERY_TIMEOUT_SECONDS", 30), 120)),
        enrichment_workers=max(1, min(_env_int("INTEL_ENRICHMENT_WORKERS", 4), 16)),
    )
