from __future__ import annotations

from datetime import datetime, timezone

from intelchat.core.entities import (
    BUCKET_BY_TYPE,
    ROUTE_BY_TYPE,
    Bucket,
    Entity,
    EntityType,
    link_path,
)
from intelchat.core.time_window import window_start


def test_every_entity_type_has_bucket_and_route() -> None:
    for t in EntityType:
        assert t in BUCKET_BY_TYPE
        assert t in ROUTE_BY_TYPE


def test_parse_unknown_tag_is_none() -> None:
    assert EntityType.parse("Intrusion-Set") is EntityType.INTRUSION_SET
    assert EntityType.parse(" Malware ") is EntityType.MALWARE
    assert EntityType.parse("Stix-Cyber-Observable") is None
    assert EntityType.parse(None) is None


def test_entity_from_row() -> None:
    e = Entity.from_row(
        {
            "internal_id": "a1",
            "name": "APT29",
            "entity_type": "Intrusion-Set",
            "data": {"labels": [{"value": "apt"}, "russia", None], "description": "Cozy Bear"},
            "source_created_at": "2024-01-02T03:04:05Z",
            "source_updated_at": None,
        }
    )
    assert e.bucket is Bucket.THREAT_ACTORS
    assert e.link_path == "/intrusion-sets/a1"
    assert e.labels() == ["apt", "russia"]
    assert e.description(4) == "Cozy"
    assert e.created_iso() == "2024-01-02T03:04:05+00:00"
    assert e.updated_iso() is None


def test_entity_from_row_tolerates_bad_data() -> None:
    e = Entity.from_row({"internal_id": "x", "entity_type": "Nope", "data": "not-a-dict", "source_created_at": "?"})
    assert e.entity_type is None
    assert e.bucket is None
    assert e.attributes == {}
    assert e.source_created_at is None
    assert e.link_path == "/entities/x"


def test_link_path_route_override() -> None:
    assert link_path(EntityType.REPORT, "r1") == "/threat-reports/r1"
    assert link_path(EntityType.REPORT, "r1", route="ransomware-victims") == "/ransomware-victims/r1"


def test_window_start_today_is_midnight_utc() -> None:
    now = datetime(2026, 3, 10, 12, 30, tzinfo=timezone.utc)
    assert window_start(0, now=now) == datetime(2026, 3, 10, tzinfo=timezone.utc)


def test_window_start_rolling_and_clamped() -> None:
    now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
    assert window_start(7, now=now) == datetime(2026, 3, 3, 12, 0, tzinfo=timezone.utc)
    assert window_start(-3, now=now) == datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert window_start(10_000, now=now) == window_start(365, now=now)
