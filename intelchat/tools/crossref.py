"""Cross-reference tools: hop from one named entity to a typed neighbor set."""

from __future__ import annotations

from typing import Any, Dict

from intelchat.core.entities import Bucket, EntityType
from intelchat.graph.resolver import resolve_forward, resolve_reverse
from intelchat.tools.base import (
    ToolContext,
    arg_limit,
    arg_term,
    find_one,
    not_found,
    required,
    tool,
    with_warnings,
)


@tool(
    "get_ttps_for_actor",
    "Get the TTPs (Tactics, Techniques, and Procedures) used by a specific threat actor. Use this when users ask "
    "what techniques or methods a threat actor uses.",
    properties={"actor_name": {"type": "string", "description": "Name of the threat actor (e.g., 'APT29')"}},
    required=["actor_name"],
)
def get_ttps_for_actor(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    name = arg_term(args, "actor_name")
    if name is None:
        return required("actor_name")
    actor = find_one(ctx, EntityType.INTRUSION_SET, name)
    if actor is None:
        return not_found("threat actor", name)
    uses = resolve_forward(ctx.store, actor.internal_id, "uses")
    ttps = [
        {
            "id": e.internal_id,
            "name": e.name,
            "mitreId": e.attr("x_mitre_id", ""),
            "description": e.description(200),
            "linkPath": e.link_path,
        }
        for e in uses.get(Bucket.ATTACK_PATTERNS)
    ]
    return with_warnings({"actor": actor.name, "actorLinkPath": actor.link_path, "ttps": ttps}, uses)


@tool(
    "get_malware_of_actor",
    "Get the malware tools and families used by a specific threat actor.",
    properties={"actor_name": {"type": "string", "description": "Name of the threat actor"}},
    required=["actor_name"],
)
def get_malware_of_actor(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    name = arg_term(args, "actor_name")
    if name is None:
        return required("actor_name")
    actor = find_one(ctx, EntityType.INTRUSION_SET, name)
    if actor is None:
        return not_found("threat actor", name)
    uses = resolve_forward(ctx.store, actor.internal_id, "uses")
    malware = [
        {
            "id": e.internal_id,
            "name": e.name,
            "types": e.attr("malware_types", []),
            "description": e.description(200),
            "linkPath": e.link_path,
        }
        for e in uses.get(Bucket.MALWARE)
    ]
    return with_warnings({"actor": actor.name, "actorLinkPath": actor.link_path, "malware": malware}, uses)


@tool(
    "get_actors_targeting_sector",
    "Find threat actors that target a specific industry sector.",
    properties={
        "sector": {"type": "string", "description": "The industry sector (e.g., 'Healthcare', 'Finance', 'Energy')"},
        "limit": {"type": "number", "description": "Maximum number of results (default: 10)"},
    },
    required=["sector"],
)
def get_actors_targeting_sector(ctx: ToolContext, args: Dict[str, Any]) -> Any:
    name = arg_term(args, "sector")
    if name is None:
        return required("sector")
    sector = find_one(ctx, EntityType.SECTOR, name)
    if sector is None:
        return not_found("sector", name)
    rev = resolve_reverse(ctx.store, sector.internal_id, ["targets"])
    actors = [
        {
            "id": e.internal_id,
            "name": e.name,
            "motivation": e.attr("primary_motivation", ""),
            "aliases": list(e.attr("aliases", []))[:3],
            "linkPath": e.link_path,
        }
        for e in rev.get("targeted_by")
        if e.bucket == Bucket.THREAT_ACTORS
    ][: arg_limit(args, 10)]
    return with_warnings({"sector": sector.name, "sectorLinkPath": sector.link_path, "actors": actors}, rev)
