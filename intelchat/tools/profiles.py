"""Single-entity profile tools: first match by name, then its neighborhood."""

from __future__ import annotations

from typing import Any, Dict, List

from intelchat.core.entities import Bucket, EntityType
from intelchat.graph.resolver import resolve_forward, resolve_reverse
from intelchat.store.predicates import eq
from intelchat.tools.base import (
    ToolContext,
    arg_term,
    created_by,
    cvss,
    fetch_entities,
    find_one,
    map_bounded,
    not_found,
    published,
    required,
    tool,
    with_warnings,
)


def _name_prop(desc: str) -> Dict[str, Any]:
    return {"type": "string", "description": desc}


@tool(
    "get_threat_actor_profile",
    "Get detailed profile information about a specific threat actor, including their targets, malware, TTPs, "
    "and activity timeline.",
    properties={"actor_name": _name_prop("Name of the threat actor (e.g., 'APT29', 'Lazarus Group', 'Fancy Bear')")},
    required=["actor_name"],
)
def get_threat_actor_profile(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    name = arg_term(args, "actor_name")
    if name is None:
        return required("actor_name")
    actor = find_one(ctx, EntityType.INTRUSION_SET, name)
    if actor is None:
        return not_found("threat actor", name)

    targets, uses = map_bounded(
        ctx,
        lambda rel: resolve_forward(ctx.store, actor.internal_id, rel),
        ["targets", "uses"],
    )
    malware_used = [
        {**ref, "types": m.attr("malware_types", [])}
        for m, ref in zip(uses.get(Bucket.MALWARE), uses.refs(Bucket.MALWARE))
    ]
    item = {
        "id": actor.internal_id,
        "name": actor.name,
        "description": actor.description(),
        "aliases": actor.attr("aliases", []),
        "motivation": actor.attr("primary_motivation", ""),
        "secondaryMotivations": actor.attr("secondary_motivations", []),
        "resourceLevel": actor.attr("resource_level", ""),
        "goals": actor.attr("goals", []),
        "firstSeen": actor.attr("first_seen") or actor.created_iso(),
        "lastSeen": actor.attr("last_seen") or actor.updated_iso(),
        "labels": actor.labels(),
        "targetedCountries": targets.refs(Bucket.COUNTRIES),
        "targetedSectors": targets.refs(Bucket.SECTORS),
        "malwareUsed": malware_used,
        "toolsUsed": uses.refs(Bucket.TOOLS),
        "ttps": uses.refs(Bucket.ATTACK_PATTERNS),
        "linkPath": actor.link_path,
    }
    return with_warnings(item, targets, uses)


@tool(
    "get_malware_profile",
    "Get detailed profile information about a specific malware family, including capabilities and the actors "
    "that use it.",
    properties={"malware_name": _name_prop("Name of the malware (e.g., 'Cobalt Strike', 'Emotet', 'TrickBot')")},
    required=["malware_name"],
)
def get_malware_profile(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    name = arg_term(args, "malware_name")
    if name is None:
        return required("malware_name")
    mw = find_one(ctx, EntityType.MALWARE, name)
    if mw is None:
        return not_found("malware", name)
    users = resolve_reverse(ctx.store, mw.internal_id, ["uses"])
    item = {
        "id": mw.internal_id,
        "name": mw.name,
        "description": mw.description(),
        "aliases": mw.attr("aliases", []),
        "types": mw.attr("malware_types", []),
        "isFamily": bool(mw.attr("is_family", False)),
        "capabilities": mw.attr("capabilities", []),
        "firstSeen": mw.attr("first_seen") or mw.created_iso(),
        "lastSeen": mw.attr("last_seen") or mw.updated_iso(),
        "labels": mw.labels(),
        "usedByActors": users.refs("used_by", bucket=Bucket.THREAT_ACTORS),
        "linkPath": mw.link_path,
    }
    return with_warnings(item, users)


@tool(
    "get_vulnerability_profile",
    "Get detailed information about a specific CVE including severity and the threats known to exploit it.",
    properties={"cve_id": _name_prop("The CVE identifier (e.g., 'CVE-2024-1234')")},
    required=["cve_id"],
)
def get_vulnerability_profile(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    cve = arg_term(args, "cve_id")
    if cve is None:
        return required("cve_id")
    vuln = find_one(ctx, EntityType.VULNERABILITY, cve)
    if vuln is None:
        return not_found("vulnerability", cve)
    rev = resolve_reverse(ctx.store, vuln.internal_id, ["targets", "exploits"])
    exploiters: List[Dict[str, Any]] = []
    seen = set()
    for ref in rev.refs("targeted_by") + rev.refs("exploited_by"):
        if ref["id"] in seen:
            continue
        seen.add(ref["id"])
        exploiters.append(ref)
    item = {
        "id": vuln.internal_id,
        "cve": vuln.name,
        "description": vuln.description(),
        **cvss(vuln),
        "created": vuln.created_iso(),
        "exploitedBy": exploiters,
        "labels": vuln.labels(),
        "linkPath": vuln.link_path,
    }
    return with_warnings(item, rev)


@tool(
    "get_tool_profile",
    "Get detailed information about a specific tool, including who uses it.",
    properties={"tool_name": _name_prop("Name of the tool (e.g., 'Mimikatz', 'Cobalt Strike')")},
    required=["tool_name"],
)
def get_tool_profile(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    name = arg_term(args, "tool_name")
    if name is None:
        return required("tool_name")
    t = find_one(ctx, EntityType.TOOL, name)
    if t is None:
        return not_found("tool", name)
    users = resolve_reverse(ctx.store, t.internal_id, ["uses"])
    item = {
        "id": t.internal_id,
        "name": t.name,
        "description": t.description(),
        "toolTypes": t.attr("tool_types", []),
        "aliases": t.attr("aliases", []),
        "labels": t.labels(),
        "usedByActors": users.refs("used_by", bucket=Bucket.THREAT_ACTORS),
        "linkPath": t.link_path,
    }
    return with_warnings(item, users)


@tool(
    "get_indicator_detail",
    "Get detailed information about a specific indicator including related threats and context.",
    properties={"indicator_value": _name_prop("The indicator value (IP, domain, hash, etc.)")},
    required=["indicator_value"],
)
def get_indicator_detail(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    value = arg_term(args, "indicator_value")
    if value is None:
        return required("indicator_value")
    ind = find_one(ctx, EntityType.INDICATOR, value, also=["data->>pattern"])
    if ind is None:
        return not_found("indicator", value)
    indicates = resolve_forward(ctx.store, ind.internal_id, "indicates")
    item = {
        "id": ind.internal_id,
        "name": ind.name,
        "pattern": ind.attr("pattern", ""),
        "patternType": ind.attr("pattern_type", ""),
        "validFrom": ind.attr("valid_from") or ind.created_iso(),
        "validUntil": ind.attr("valid_until"),
        "score": ind.attr("x_opencti_score"),
        "labels": ind.labels(),
        "indicatesThreats": indicates.refs(Bucket.THREAT_ACTORS) + indicates.refs(Bucket.MALWARE),
        "linkPath": ind.link_path,
    }
    return with_warnings(item, indicates)


def _external_refs(raw: Any) -> List[Dict[str, str]]:
    edges = raw.get("edges") if isinstance(raw, dict) else None
    out: List[Dict[str, str]] = []
    for edge in edges or []:
        node = edge.get("node") if isinstance(edge, dict) else None
        if not isinstance(node, dict) or not node.get("url"):
            continue
        out.append({"url": str(node["url"]), "sourceName": str(node.get("source_name") or "")})
    return out


@tool(
    "get_report_detail",
    "Get detailed information about a specific threat report by its ID.",
    properties={"report_id": _name_prop("The report ID")},
    required=["report_id"],
)
def get_report_detail(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    rid = str(args.get("report_id") or "").strip()
    if not rid:
        return required("report_id")
    rows = fetch_entities(ctx, [eq("internal_id", rid)], limit=1)
    if not rows:
        return {"error": f'No report found with ID "{rid}"'}
    rep = rows[0]
    refs = resolve_forward(ctx.store, rep.internal_id, "object-ref")
    item = {
        "id": rep.internal_id,
        "name": rep.name,
        "description": rep.description(),
        "published": published(rep),
        "reportTypes": rep.attr("report_types", []),
        "source": created_by(rep),
        "externalReferences": _external_refs(rep.attr("externalReferences")),
        "threatActors": refs.refs(Bucket.THREAT_ACTORS),
        "malware": refs.refs(Bucket.MALWARE),
        "vulnerabilities": refs.refs(Bucket.VULNERABILITIES),
        "attackPatterns": refs.refs(Bucket.ATTACK_PATTERNS),
        "linkPath": rep.link_path,
    }
    return with_warnings(item, refs)
