from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import quote

import pytest

from intelchat.core.entities import EntityType
from intelchat.store.predicates import (
    Column,
    build_query_string,
    contains,
    desc,
    eq,
    gte,
    ilike,
    in_,
    or_,
    sanitize_term,
)


def test_eq_with_enum_serializes_tag_value() -> None:
    qs = build_query_string(select=["internal_id"], filters=[eq("entity_type", EntityType.MALWARE)])
    assert qs == "select=internal_id&entity_type=eq.Malware"


def test_ilike_strips_grammar_characters_from_term() -> None:
    assert ilike("name", "APT(29),*").to_param() == ("name", "ilike.*APT%2029*")


def test_sanitize_term_collapses_whitespace_and_caps_length() -> None:
    assert sanitize_term('  "Cozy"   \\ Bear%  ') == "Cozy Bear"
    assert len(sanitize_term("x" * 500)) == 200
    assert sanitize_term("(),*") == ""


def test_json_path_columns_stay_raw() -> None:
    qs = build_query_string(select=["name"], filters=[ilike("data->>aliases", "lazarus")], limit=5)
    assert qs == "select=name&data->>aliases=ilike.*lazarus*&limit=5"


def test_or_group_uses_inner_form() -> None:
    p = or_(ilike("name", "lazarus"), ilike("data->>aliases", "lazarus"))
    assert p.to_param() == ("or", "(name.ilike.*lazarus*,data->>aliases.ilike.*lazarus*)")


def test_in_quotes_only_values_with_reserved_characters() -> None:
    assert in_("internal_id", ["a,b", "c"]).to_param() == ("internal_id", "in.(%22a%2Cb%22,c)")


def test_top_level_value_is_not_double_quoted() -> None:
    assert eq("name", "a,b").to_param() == ("name", "eq.a%2Cb")


def test_gte_datetime_is_iso_encoded() -> None:
    p = gte("source_created_at", datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert p.to_param() == ("source_created_at", "gte.2026-01-01T00%3A00%3A00%2B00%3A00")


def test_contains_serializes_json_array() -> None:
    p = contains("data->report_types", ["Ransomware-report"])
    assert p.to_param() == ("data->report_types", "cs." + quote('["Ransomware-report"]', safe=""))


def test_contains_is_rejected_inside_or_group() -> None:
    with pytest.raises(ValueError):
        or_(eq("name", "x"), contains("data->report_types", ["threat-report"]))


def test_empty_or_group_is_rejected() -> None:
    with pytest.raises(ValueError):
        or_()


@pytest.mark.parametrize("path", ["name; drop table", "Name", "data->", "data->>'x'", ""])
def test_invalid_column_paths_are_rejected(path: str) -> None:
    with pytest.raises(ValueError):
        Column(path)


def test_order_requires_plain_column() -> None:
    assert desc("source_updated_at").to_param() == ("order", "source_updated_at.desc")
    with pytest.raises(ValueError):
        desc("data->>modified")


def test_select_fields_must_be_plain_and_limit_is_at_least_one() -> None:
    assert build_query_string(select=[], limit=0) == "select=*&limit=1"
    with pytest.raises(ValueError):
        build_query_string(select=["data->>name"])
