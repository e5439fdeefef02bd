"""Recent-activity listings bounded by a `days_back` window."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from intelchat.core.entities import (
    ADVISORY_ROUTE,
    RANSOMWARE_VICTIM_ROUTE,
    REPORT_TYPE_ADVISORY,
    REPORT_TYPE_MEDIA,
    REPORT_TYPE_RANSOMWARE,
    REPORT_TYPE_THREAT,
    Bucket,
    Entity,
    EntityType,
    link_path,
)
from intelchat.graph.resolver import resolve_forward
from intelchat.store.graph_client import Collection
from intelchat.store.predicates import Predicate, contains, eq, gte
from intelchat.tools.base import (
    ToolContext,
    arg_days_back,
    arg_limit,
    created_by,
    cvss,
    fetch_entities,
    map_bounded,
    published,
    since,
    tool,
    with_warnings,
)

SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW")

_ORIGINAL_SITE = "Original Site:"


def _days_prop(default: int) -> Dict[str, Any]:
    return {
        "type": "number",
        "description": f"Number of days to look back. Use 0 for today only, 7 for last week, 30 for last month. "
        f"Default: {default}",
    }


def _limit_prop(default: int) -> Dict[str, Any]:
    return {"type": "number", "description": f"Maximum number of results (default: {default})"}


def _reports(ctx: ToolContext, report_type: str, days_back: int, limit: int) -> List[Entity]:
    return fetch_entities(
        ctx,
        [
            eq("entity_type", EntityType.REPORT),
            contains("data->report_types", [report_type]),
            gte("source_created_at", since(ctx, days_back)),
        ],
        order_by="source_created_at",
        limit=limit,
    )


def split_victim_name(full: str) -> str:
    """`"LockBit: Acme Corp"` -> `"Acme Corp"`; names without a group prefix pass through."""
    head, sep, tail = (full or "").partition(":")
    if not sep:
        return full
    return tail.strip() or full


def split_media_title(full: str) -> Tuple[str, str]:
    """Return (title, source) from `"<title> - Original Site: <source>"`."""
    txt = full or ""
    if _ORIGINAL_SITE not in txt:
        return txt.strip(), ""
    before, _, after = txt.partition(_ORIGINAL_SITE)
    title = before.rstrip()
    if title.endswith("-"):
        title = title[:-1].rstrip()
    return title, after.strip()


@tool(
    "get_ransomware_victims",
    "Get ransomware victims for a specific time period. IMPORTANT: Set days_back=0 for 'today', days_back=7 "
    "for 'last week', days_back=30 for 'last month'. Default is 7 days.",
    properties={
        "days_back": _days_prop(7),
        "threat_group": {
            "type": "string",
            "description": "Optional: Filter by specific ransomware group (e.g., 'LockBit', 'BlackCat', 'Cl0p')",
        },
        "limit": _limit_prop(20),
    },
)
def get_ransomware_victims(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    days_back = arg_days_back(args, 7)
    group = str(args.get("threat_group") or "").strip().lower() or None
    rows = _reports(ctx, REPORT_TYPE_RANSOMWARE, days_back, arg_limit(args, 20))

    def _enrich(e: Entity) -> Dict[str, Any]:
        refs = resolve_forward(ctx.store, e.internal_id, "object-ref")
        item = {
            "id": e.internal_id,
            "name": split_victim_name(e.name),
            "fullName": e.name,
            "description": e.description(),
            "published": published(e),
            "threatGroups": refs.refs(Bucket.THREAT_ACTORS),
            "countries": refs.refs(Bucket.COUNTRIES),
            "sectors": refs.refs(Bucket.SECTORS),
            "linkPath": link_path(e.entity_type, e.internal_id, route=RANSOMWARE_VICTIM_ROUTE),
        }
        return with_warnings(item, refs)

    victims = map_bounded(ctx, _enrich, rows)
    if group is not None:
        victims = [
            v
            for v in victims
            if any(group in str(g.get("name") or "").lower() for g in v["threatGroups"])
            or group in v["fullName"].lower()
        ]
    return {"totalCount": len(victims), "daysBack": days_back, "victims": victims}


@tool(
    "get_ransomware_statistics",
    "Get victim count statistics for today, last 7 days, and last 30 days. Use this when users ask 'how many' "
    "victims or want quick counts without detailed victim info.",
)
def get_ransomware_statistics(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    _ = args

    def _count(days_back: int) -> int:
        filters: List[Predicate] = [
            eq("entity_type", EntityType.REPORT),
            contains("data->report_types", [REPORT_TYPE_RANSOMWARE]),
            gte("source_created_at", since(ctx, days_back)),
        ]
        res = ctx.store.query(Collection.ENTITIES, select=("internal_id",), filters=filters, count=True)
        return res.count if res.count is not None else len(res.rows)

    today, week, month = map_bounded(ctx, _count, [0, 7, 30])
    return {"today": today, "last7Days": week, "last30Days": month}


@tool(
    "get_vulnerabilities",
    "Get recent vulnerabilities (CVEs) with optional severity filtering. IMPORTANT: Set days_back=0 for "
    "'today', days_back=7 for 'last week'. Default is 14 days.",
    properties={
        "days_back": _days_prop(14),
        "severity": {"type": "string", "enum": list(SEVERITIES), "description": "Filter by CVSS severity level"},
        "limit": _limit_prop(20),
    },
)
def get_vulnerabilities(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    severity = str(args.get("severity") or "").strip().upper() or None
    if severity is not None and severity not in SEVERITIES:
        return {"error": f"severity must be one of: {', '.join(SEVERITIES)}"}
    rows = fetch_entities(
        ctx,
        [
            eq("entity_type", EntityType.VULNERABILITY),
            gte("source_created_at", since(ctx, arg_days_back(args, 14))),
        ],
        order_by="source_created_at",
        limit=arg_limit(args, 20),
    )
    out = [
        {
            "id": e.internal_id,
            "cve": e.name,
            "description": e.description(),
            "created": e.created_iso(),
            **cvss(e),
            "linkPath": e.link_path,
        }
        for e in rows
    ]
    if severity is not None:
        out = [v for v in out if str(v.get("severity") or "").upper() == severity]
    return out


@tool(
    "get_advisories",
    "Get recent security advisories from sources like CISA, NHS, etc. Set days_back=0 for today, 7 for last week.",
    properties={"days_back": _days_prop(7), "limit": _limit_prop(15)},
)
def get_advisories(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    rows = _reports(ctx, REPORT_TYPE_ADVISORY, arg_days_back(args, 7), arg_limit(args, 15))
    return [
        {
            "id": e.internal_id,
            "name": e.name,
            "description": e.description(300),
            "published": published(e),
            "source": created_by(e),
            "linkPath": link_path(e.entity_type, e.internal_id, route=ADVISORY_ROUTE),
        }
        for e in rows
    ]


@tool(
    "get_media_reports",
    "Get recent cybersecurity news and media reports. Set days_back=0 for today, 7 for last week.",
    properties={"days_back": _days_prop(7), "limit": _limit_prop(15)},
)
def get_media_reports(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    rows = _reports(ctx, REPORT_TYPE_MEDIA, arg_days_back(args, 7), arg_limit(args, 15))
    out: List[Dict[str, Any]] = []
    for e in rows:
        title, site = split_media_title(e.name)
        out.append(
            {
                "id": e.internal_id,
                "name": title,
                "description": e.description(300),
                "published": published(e),
                "source": site or created_by(e, default=""),
                "linkPath": e.link_path,
            }
        )
    return out


@tool(
    "get_threat_reports",
    "Get recent threat intelligence reports. These are detailed analysis reports about threats, campaigns, "
    "or incidents.",
    properties={"days_back": _days_prop(14), "limit": _limit_prop(15)},
)
def get_threat_reports(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    rows = _reports(ctx, REPORT_TYPE_THREAT, arg_days_back(args, 14), arg_limit(args, 15))

    def _enrich(e: Entity) -> Dict[str, Any]:
        refs = resolve_forward(ctx.store, e.internal_id, "object-ref")
        item = {
            "id": e.internal_id,
            "name": e.name,
            "description": e.description(300),
            "published": published(e),
            "source": created_by(e),
            "threatActors": refs.names(Bucket.THREAT_ACTORS),
            "malware": refs.names(Bucket.MALWARE),
            "vulnerabilities": refs.names(Bucket.VULNERABILITIES),
            "linkPath": e.link_path,
        }
        return with_warnings(item, refs)

    return map_bounded(ctx, _enrich, rows)


@tool(
    "get_campaigns",
    "Get recent threat campaigns. Campaigns are coordinated threat activities with specific objectives.",
    properties={"days_back": _days_prop(30), "limit": _limit_prop(15)},
)
def get_campaigns(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    rows = fetch_entities(
        ctx,
        [
            eq("entity_type", EntityType.CAMPAIGN),
            gte("source_updated_at", since(ctx, arg_days_back(args, 30))),
        ],
        order_by="source_updated_at",
        limit=arg_limit(args, 15),
    )

    def _enrich(e: Entity) -> Dict[str, Any]:
        # Campaigns are the source of `attributed-to` edges.
        attributed = resolve_forward(ctx.store, e.internal_id, "attributed-to")
        item = {
            "id": e.internal_id,
            "name": e.name,
            "description": e.description(300),
            "firstSeen": e.attr("first_seen") or e.created_iso(),
            "lastSeen": e.attr("last_seen") or e.updated_iso(),
            "attributedTo": attributed.names(Bucket.THREAT_ACTORS),
            "linkPath": e.link_path,
        }
        return with_warnings(item, attributed)

    return map_bounded(ctx, _enrich, rows)


@tool(
    "get_attack_patterns",
    "Get recently used/modified TTPs (Tactics, Techniques, and Procedures) and MITRE ATT&CK patterns. "
    "Set days_back=0 for today, 7 for last week.",
    properties={"days_back": _days_prop(7), "limit": _limit_prop(25)},
)
def get_attack_patterns(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    rows = fetch_entities(
        ctx,
        [
            eq("entity_type", EntityType.ATTACK_PATTERN),
            gte("source_updated_at", since(ctx, arg_days_back(args, 7))),
        ],
        order_by="source_updated_at",
        limit=arg_limit(args, 25),
    )
    out: List[Dict[str, Any]] = []
    for e in rows:
        phases = [p.get("phase_name") for p in e.attr("kill_chain_phases", []) if isinstance(p, dict)]
        out.append(
            {
                "id": e.internal_id,
                "name": e.name,
                "description": e.description(),
                "mitreId": e.attr("x_mitre_id", ""),
                "platforms": e.attr("x_mitre_platforms", []),
                "killChainPhases": [p for p in phases if p],
                "modified": e.updated_iso(),
                "linkPath": e.link_path,
            }
        )
    return out
