"""Tests for RulePack compilation, tie-breaking and rule file loading."""

import json

import pytest

from ct_watch.errors import ConstructionError
from ct_watch.rules import RulePack, load_rules


def test_from_mapping_compiles_patterns():
    rules = RulePack.from_mapping({"acme": r"^acme\.", "shop": r"shop"})
    assert len(rules) == 2
    assert "acme" in rules
    assert rules.patterns["acme"].pattern == r"^acme\."


def test_invalid_pattern_names_category():
    with pytest.raises(ConstructionError) as excinfo:
        RulePack.from_mapping({"good": "^ok$", "broken": "([a-z"})
    assert excinfo.value.category == "broken"
    assert "broken" in str(excinfo.value)


def test_non_string_pattern_rejected():
    with pytest.raises(ConstructionError) as excinfo:
        RulePack.from_mapping({"numbers": 42})
    assert excinfo.value.category == "numbers"


def test_patterns_are_read_only():
    rules = RulePack.from_mapping({"acme": "acme"})
    with pytest.raises(TypeError):
        rules.patterns["other"] = None


def test_categories_in_lexicographic_order():
    rules = RulePack.from_mapping({"zulu": "z", "alpha": "a", "mike": "m"})
    assert rules.categories == ("alpha", "mike", "zulu")


def test_match_uses_search_semantics():
    rules = RulePack.from_mapping({"brand": "acme"})
    assert rules.match("login.acme.com") == "brand"
    assert rules.match("example.org") is None


def test_tie_break_is_category_order():
    rules = RulePack.from_mapping({"zeta": r"example", "beta": r"\.com$", "alpha": r"^www\."})
    assert rules.match("www.example.com") == "alpha"
    assert rules.match("shop.example.com") == "beta"


def test_match_any_prefers_category_over_value_order():
    rules = RulePack.from_mapping({"a-cn": r"^cn\.", "b-san": r"^san\."})
    # First value only matches the later category
    assert rules.match_any(["san.example.com", "cn.example.com"]) == "a-cn"
    assert rules.match_any(["", "nothing.here"]) is None


def test_coerce_accepts_pack_or_mapping():
    rules = RulePack.from_mapping({"x": "x"})
    assert RulePack.coerce(rules) is rules
    assert RulePack.coerce({"y": "y"}).categories == ("y",)
    with pytest.raises(ConstructionError):
        RulePack.coerce(["not", "a", "mapping"])


def test_load_rules_from_json(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"acme": r"^acme\.", "test": r"^test\."}))
    rules = load_rules(path)
    assert rules.categories == ("acme", "test")


def test_load_rules_invalid_json(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text("{not json")
    with pytest.raises(ConstructionError):
        load_rules(path)


def test_load_rules_requires_object(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(["^a"]))
    with pytest.raises(ConstructionError):
        load_rules(path)


def test_load_rules_missing_file(tmp_path):
    with pytest.raises(ConstructionError):
        load_rules(tmp_path / "absent.json")


def test_load_rules_rejects_non_utf8_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_bytes(b'{"a": "\xff\xfe"}')
    with pytest.raises(ConstructionError, match="UTF-8"):
        load_rules(path)
