"""Name/alias search tools."""

from __future__ import annotations

from typing import Any, Dict, List

from intelchat.core.entities import Bucket, Entity, EntityType
from intelchat.graph.resolver import resolve_forward, resolve_reverse
from intelchat.store.predicates import eq, ilike, in_, or_
from intelchat.tools.base import (
    ToolContext,
    arg_limit,
    arg_term,
    cvss,
    fetch_entities,
    map_bounded,
    name_or_aliases,
    required,
    tool,
    with_warnings,
)

INDICATOR_TYPES = ("ipv4-addr", "ipv6-addr", "domain-name", "url", "file", "email-addr")

GENERAL_SEARCH_TYPES = (
    EntityType.INTRUSION_SET,
    EntityType.MALWARE,
    EntityType.VULNERABILITY,
    EntityType.REPORT,
    EntityType.ATTACK_PATTERN,
    EntityType.CAMPAIGN,
    EntityType.TOOL,
    EntityType.INDICATOR,
)


def _term_prop(desc: str) -> Dict[str, Any]:
    return {"type": "string", "description": desc}


def _limit_prop(default: int) -> Dict[str, Any]:
    return {"type": "number", "description": f"Maximum number of results (default: {default})"}


@tool(
    "search_threat_actors",
    "Search for threat actors, APT groups, or intrusion sets by name or alias. Use this when the user asks "
    "about a specific threat actor, APT group, nation-state actor, or hacking group.",
    properties={
        "search_term": _term_prop("The name or alias of the threat actor (e.g., 'APT29', 'Lazarus', 'LockBit')"),
        "limit": _limit_prop(10),
    },
    required=["search_term"],
)
def search_threat_actors(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    term = arg_term(args, "search_term")
    if term is None:
        return required("search_term")
    rows = fetch_entities(
        ctx,
        [eq("entity_type", EntityType.INTRUSION_SET), name_or_aliases(term)],
        order_by="source_updated_at",
        limit=arg_limit(args, 10),
    )

    def _enrich(e: Entity) -> Dict[str, Any]:
        targets = resolve_forward(ctx.store, e.internal_id, "targets")
        item = {
            "id": e.internal_id,
            "name": e.name,
            "description": e.description(),
            "aliases": e.attr("aliases", []),
            "motivation": e.attr("primary_motivation", ""),
            "resourceLevel": e.attr("resource_level", ""),
            "goals": e.attr("goals", []),
            "labels": e.labels(),
            "targetedCountries": targets.names(Bucket.COUNTRIES),
            "targetedSectors": targets.names(Bucket.SECTORS),
            "modified": e.updated_iso(),
            "linkPath": e.link_path,
        }
        return with_warnings(item, targets)

    return map_bounded(ctx, _enrich, rows)


@tool(
    "search_malware",
    "Search for malware families, ransomware, or malicious software by name or alias.",
    properties={
        "search_term": _term_prop("The name of the malware (e.g., 'Cobalt Strike', 'Emotet', 'TrickBot')"),
        "limit": _limit_prop(10),
    },
    required=["search_term"],
)
def search_malware(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    term = arg_term(args, "search_term")
    if term is None:
        return required("search_term")
    rows = fetch_entities(
        ctx,
        [eq("entity_type", EntityType.MALWARE), name_or_aliases(term)],
        order_by="source_updated_at",
        limit=arg_limit(args, 10),
    )

    def _enrich(e: Entity) -> Dict[str, Any]:
        users = resolve_reverse(ctx.store, e.internal_id, ["uses"])
        item = {
            "id": e.internal_id,
            "name": e.name,
            "description": e.description(),
            "aliases": e.attr("aliases", []),
            "types": e.attr("malware_types", []),
            "isFamily": bool(e.attr("is_family", False)),
            "labels": e.labels(),
            "usedBy": users.refs("used_by", bucket=Bucket.THREAT_ACTORS, limit=5),
            "modified": e.updated_iso(),
            "linkPath": e.link_path,
        }
        return with_warnings(item, users)

    return map_bounded(ctx, _enrich, rows)


@tool(
    "search_tools",
    "Search for legitimate tools that are abused by threat actors (e.g., 'PsExec', 'Mimikatz', 'PowerShell Empire').",
    properties={"search_term": _term_prop("Name of the tool to search for"), "limit": _limit_prop(10)},
    required=["search_term"],
)
def search_tools(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    term = arg_term(args, "search_term")
    if term is None:
        return required("search_term")
    rows = fetch_entities(
        ctx,
        [eq("entity_type", EntityType.TOOL), name_or_aliases(term)],
        order_by="source_updated_at",
        limit=arg_limit(args, 10),
    )

    def _enrich(e: Entity) -> Dict[str, Any]:
        users = resolve_reverse(ctx.store, e.internal_id, ["uses"])
        item = {
            "id": e.internal_id,
            "name": e.name,
            "description": e.description(200),
            "toolTypes": e.attr("tool_types", []),
            "labels": e.labels(),
            "usedBy": users.refs("used_by", bucket=Bucket.THREAT_ACTORS, limit=5),
            "linkPath": e.link_path,
        }
        return with_warnings(item, users)

    return map_bounded(ctx, _enrich, rows)


@tool(
    "search_indicators",
    "Search for indicators of compromise (IOCs) like IP addresses, domains, file hashes, or URLs.",
    properties={
        "search_term": _term_prop("The indicator value or pattern to search for"),
        "indicator_type": {
            "type": "string",
            "enum": list(INDICATOR_TYPES),
            "description": "Optional: Filter by indicator type",
        },
        "limit": _limit_prop(20),
    },
    required=["search_term"],
)
def search_indicators(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    term = arg_term(args, "search_term")
    if term is None:
        return required("search_term")
    itype = str(args.get("indicator_type") or "").strip().lower() or None
    if itype is not None and itype not in INDICATOR_TYPES:
        return {"error": f"indicator_type must be one of: {', '.join(INDICATOR_TYPES)}"}
    rows = fetch_entities(
        ctx,
        [eq("entity_type", EntityType.INDICATOR), or_(ilike("name", term), ilike("data->>pattern", term))],
        order_by="source_created_at",
        limit=arg_limit(args, 20),
    )
    if itype is not None:
        rows = [e for e in rows if itype in str(e.attr("pattern", "")).lower()]

    def _enrich(e: Entity) -> Dict[str, Any]:
        indicates = resolve_forward(ctx.store, e.internal_id, "indicates")
        item = {
            "id": e.internal_id,
            "name": e.name,
            "pattern": e.attr("pattern", ""),
            "patternType": e.attr("pattern_type", ""),
            "validFrom": e.attr("valid_from") or e.created_iso(),
            "score": e.attr("x_opencti_score"),
            "labels": e.labels(),
            "indicatesThreats": indicates.refs(Bucket.THREAT_ACTORS) + indicates.refs(Bucket.MALWARE),
            "linkPath": e.link_path,
        }
        return with_warnings(item, indicates)

    return map_bounded(ctx, _enrich, rows)


@tool(
    "search_mitigations",
    "Search for security mitigations and countermeasures (MITRE ATT&CK mitigations, courses of action).",
    properties={
        "search_term": _term_prop("Search term for mitigations (e.g., 'phishing', 'credential theft')"),
        "limit": _limit_prop(15),
    },
    required=["search_term"],
)
def search_mitigations(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    term = arg_term(args, "search_term")
    if term is None:
        return required("search_term")
    rows = fetch_entities(
        ctx,
        [
            eq("entity_type", EntityType.COURSE_OF_ACTION),
            or_(ilike("name", term), ilike("data->>description", term)),
        ],
        order_by="source_updated_at",
        limit=arg_limit(args, 15),
    )

    def _enrich(e: Entity) -> Dict[str, Any]:
        mitigates = resolve_forward(ctx.store, e.internal_id, "mitigates")
        item = {
            "id": e.internal_id,
            "name": e.name,
            "description": e.description(300),
            "mitreId": e.attr("x_mitre_id", ""),
            "labels": e.labels(),
            "mitigates": mitigates.refs(Bucket.ATTACK_PATTERNS),
            "linkPath": e.link_path,
        }
        return with_warnings(item, mitigates)

    return map_bounded(ctx, _enrich, rows)


@tool(
    "search_vulnerabilities",
    "Search for a specific vulnerability by CVE ID. Use this when the user mentions a CVE like 'CVE-2024-1234'.",
    properties={"cve_id": _term_prop("The CVE identifier (e.g., 'CVE-2024-1234')"), "limit": _limit_prop(5)},
    required=["cve_id"],
)
def search_vulnerabilities(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    cve = arg_term(args, "cve_id")
    if cve is None:
        return required("cve_id")
    rows = fetch_entities(
        ctx,
        [eq("entity_type", EntityType.VULNERABILITY), ilike("name", cve)],
        limit=arg_limit(args, 5),
    )
    return [
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


@tool(
    "general_search",
    "Perform a general search across all intelligence entities. Use this as a fallback when other specific "
    "tools don't match.",
    properties={"search_query": _term_prop("The search query"), "limit": _limit_prop(20)},
    required=["search_query"],
)
def general_search(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    q = arg_term(args, "search_query")
    if q is None:
        return required("search_query")
    rows = fetch_entities(
        ctx,
        [
            or_(ilike("name", q), ilike("data->>description", q)),
            in_("entity_type", GENERAL_SEARCH_TYPES),
        ],
        order_by="source_updated_at",
        limit=arg_limit(args, 20),
    )
    out: List[Dict[str, Any]] = []
    for e in rows:
        out.append(
            {
                "id": e.internal_id,
                "name": e.name,
                "type": e.entity_type.value if e.entity_type else None,
                "description": e.description(200),
                "modified": e.updated_iso(),
                "linkPath": e.link_path,
            }
        )
    return out
