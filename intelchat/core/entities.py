"""Intelligence-graph domain types.

Entity types are a closed vocabulary. Raw type tags from the store are parsed once, at the
row boundary (`Entity.from_row`); everything downstream works with `EntityType` members and
the explicit lookup tables below.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntityType(str, Enum):
    INTRUSION_SET = "Intrusion-Set"
    MALWARE = "Malware"
    VULNERABILITY = "Vulnerability"
    REPORT = "Report"
    INDICATOR = "Indicator"
    ATTACK_PATTERN = "Attack-Pattern"
    CAMPAIGN = "Campaign"
    TOOL = "Tool"
    SECTOR = "Sector"
    COUNTRY = "Country"
    REGION = "Region"
    COURSE_OF_ACTION = "Course-Of-Action"
    ORGANIZATION = "Organization"

    @classmethod
    def parse(cls, tag: Any) -> Optional["EntityType"]:
        """Return the member for a store tag, or None for anything outside the vocabulary."""
        if isinstance(tag, cls):
            return tag
        try:
            return cls(str(tag or "").strip())
        except ValueError:
            return None


class Bucket(str, Enum):
    SECTORS = "sectors"
    COUNTRIES = "countries"
    REGIONS = "regions"
    THREAT_ACTORS = "threat_actors"
    MALWARE = "malware"
    VULNERABILITIES = "vulnerabilities"
    ATTACK_PATTERNS = "attack_patterns"
    TOOLS = "tools"
    CAMPAIGNS = "campaigns"
    INDICATORS = "indicators"
    REPORTS = "reports"
    MITIGATIONS = "mitigations"
    ORGANIZATIONS = "organizations"


BUCKET_BY_TYPE: Dict[EntityType, Bucket] = {
    EntityType.SECTOR: Bucket.SECTORS,
    EntityType.COUNTRY: Bucket.COUNTRIES,
    EntityType.REGION: Bucket.REGIONS,
    EntityType.INTRUSION_SET: Bucket.THREAT_ACTORS,
    EntityType.MALWARE: Bucket.MALWARE,
    EntityType.VULNERABILITY: Bucket.VULNERABILITIES,
    EntityType.ATTACK_PATTERN: Bucket.ATTACK_PATTERNS,
    EntityType.TOOL: Bucket.TOOLS,
    EntityType.CAMPAIGN: Bucket.CAMPAIGNS,
    EntityType.INDICATOR: Bucket.INDICATORS,
    EntityType.REPORT: Bucket.REPORTS,
    EntityType.COURSE_OF_ACTION: Bucket.MITIGATIONS,
    EntityType.ORGANIZATION: Bucket.ORGANIZATIONS,
}

# Dashboard routes. Tools must only ever hand out paths built from this table.
ROUTE_BY_TYPE: Dict[EntityType, str] = {
    EntityType.INTRUSION_SET: "intrusion-sets",
    EntityType.MALWARE: "malware",
    EntityType.VULNERABILITY: "vulnerabilities",
    EntityType.REPORT: "threat-reports",
    EntityType.INDICATOR: "indicators",
    EntityType.ATTACK_PATTERN: "attack-patterns",
    EntityType.CAMPAIGN: "campaigns",
    EntityType.TOOL: "tools",
    EntityType.SECTOR: "sectors",
    EntityType.COUNTRY: "countries",
    EntityType.REGION: "regions",
    EntityType.COURSE_OF_ACTION: "courses-of-action",
    EntityType.ORGANIZATION: "organizations",
}

RANSOMWARE_VICTIM_ROUTE = "ransomware-victims"
ADVISORY_ROUTE = "advisories"

# Report subtypes stored in data->report_types.
REPORT_TYPE_RANSOMWARE = "Ransomware-report"
REPORT_TYPE_ADVISORY = "threat-advisory"
REPORT_TYPE_MEDIA = "media-report"
REPORT_TYPE_THREAT = "threat-report"


def link_path(entity_type: Optional[EntityType], internal_id: str, *, route: Optional[str] = None) -> str:
    r = route or (ROUTE_BY_TYPE.get(entity_type) if entity_type is not None else None) or "entities"
    return f"/{r}/{internal_id}"


def _as_utc(v: Any) -> Optional[datetime]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        dt = v
    else:
        try:
            dt = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    internal_id: str
    name: str = ""
    entity_type: Optional[EntityType] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    source_created_at: Optional[datetime] = None
    source_updated_at: Optional[datetime] = None

    @field_validator("attributes", mode="before")
    @classmethod
    def _attrs_obj(cls, v: Any) -> Dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @field_validator("source_created_at", "source_updated_at", mode="before")
    @classmethod
    def _ts(cls, v: Any) -> Optional[datetime]:
        return _as_utc(v)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Entity":
        """Build from an `object_current` row. Unknown type tags become `entity_type=None`."""
        return cls(
            internal_id=str(row.get("internal_id") or ""),
            name=str(row.get("name") or ""),
            entity_type=EntityType.parse(row.get("entity_type")),
            attributes=row.get("data"),
            source_created_at=row.get("source_created_at"),
            source_updated_at=row.get("source_updated_at"),
        )

    @property
    def bucket(self) -> Optional[Bucket]:
        return BUCKET_BY_TYPE.get(self.entity_type) if self.entity_type is not None else None

    @property
    def link_path(self) -> str:
        return link_path(self.entity_type, self.internal_id)

    def attr(self, key: str, default: Any = None) -> Any:
        v = self.attributes.get(key)
        return default if v is None else v

    def description(self, max_chars: int = 0) -> str:
        txt = str(self.attributes.get("description") or "")
        if max_chars > 0:
            return txt[:max_chars]
        return txt

    def labels(self) -> List[str]:
        out: List[str] = []
        for lbl in self.attributes.get("labels") or []:
            if isinstance(lbl, dict):
                v = lbl.get("value")
            else:
                v = lbl
            if v:
                out.append(str(v))
        return out

    def created_iso(self) -> Optional[str]:
        return self.source_created_at.isoformat() if self.source_created_at else None

    def updated_iso(self) -> Optional[str]:
        return self.source_updated_at.isoformat() if self.source_updated_at else None


class Relationship(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_id: str = ""
    target_id: str = ""
    relationship_type: str = ""
