"""Tests for quickfill.rule_store: indices, queries and bulk operations."""
from __future__ import annotations

import logging

import pytest

from quickfill.rule_store import RuleStore
from quickfill.rules import Computed, Rule, Subject


@pytest.fixture()
def store() -> RuleStore:
    return RuleStore()


class TestAdd:
    def test_assigns_increasing_numbers(self, store: RuleStore) -> None:
        a = store.create("equal", "vorn", "${Vorname}$")
        b = store.create("equal", "Vorname", "Anton")
        assert a is not None and b is not None
        assert (a.id, b.id) == ("R1", "R2")
        assert store.count() == 2
        assert len(store) == 2

    def test_template_counter_is_separate(self, store: RuleStore) -> None:
        store.create("equal", "a", "1")
        template = store.create("equal", "b", "2", owner="template")
        rule = store.create("equal", "c", "3")
        assert template is not None and rule is not None
        assert template.id == "T1"
        assert rule.id == "R2"

    def test_duplicate_rejected(self, store: RuleStore, caplog: pytest.LogCaptureFixture) -> None:
        store.create("equal", "a", "1", owner="case")
        with caplog.at_level(logging.WARNING, logger="quickfill.rule_store"):
            assert store.create("equal", "a", "1", owner="case") is None
        assert "duplicate" in caplog.text
        assert store.count() == 1

    def test_same_pattern_other_value_accepted(self, store: RuleStore) -> None:
        store.create("equal", "a", "1")
        assert store.create("equal", "a", "2") is not None

    def test_cannot_add_twice(self, store: RuleStore) -> None:
        rule = store.create("equal", "a", "1")
        assert rule is not None
        with pytest.raises(ValueError):
            RuleStore().add(rule)

    def test_numbers_never_reused(self, store: RuleStore) -> None:
        first = store.create("equal", "a", "1")
        assert first is not None
        store.remove(first)
        store.clear()
        again = store.create("equal", "a", "1")
        assert again is not None
        assert again.id == "R2"


class TestIndices:
    def test_by_pattern_per_alternative(self, store: RuleStore) -> None:
        rule = store.create("equal", "Vorname, vorname", "Anton")
        assert store.by_pattern("Vorname") == [rule]
        assert store.by_pattern("vorname") == [rule]
        assert store.by_pattern("Vorname, vorname") == []

    def test_by_pattern_is_exact(self, store: RuleStore) -> None:
        store.create("substring", "datum", "${heute}$")
        assert store.by_pattern("datum") != []
        assert store.by_pattern("ortdatum") == []

    def test_priority_case_first(self, store: RuleStore) -> None:
        general = store.create("equal", "a", "2")
        case = store.create("equal", "a", "1", owner="case")
        other = store.create("equal", "b", "3", owner="PVB")
        assert store.all_in_priority_order() == [case, general, other]
        assert list(store) == [case, general, other]

    def test_templates_not_indexed(self, store: RuleStore) -> None:
        template = store.create("equal", "a", "1", owner="template")
        assert store.by_pattern("a") == []
        assert store.all_in_priority_order() == []
        assert store.templates() == [template]
        assert template in store

    def test_cache_refreshed_after_mutation(self, store: RuleStore) -> None:
        a = store.create("equal", "a", "1")
        assert store.all_in_priority_order() == [a]
        b = store.create("equal", "b", "2", owner="case")
        assert store.all_in_priority_order() == [b, a]

    def test_rebuild(self, store: RuleStore) -> None:
        rule = store.create("equal", "a", "1")
        store.rebuild()
        assert store.by_pattern("a") == [rule]


class TestRemove:
    def test_remove(self, store: RuleStore) -> None:
        vorn = store.create("equal", "vorn", "${Vorname}$")
        store.create("equal", "Vorname", "Anton")
        assert store.get_by_key("vorn") is vorn
        store.remove(vorn)
        assert store.count() == 1
        assert store.by_pattern("vorn") == []
        assert vorn not in store

    def test_remove_unregistered_is_logged(self, store: RuleStore, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="quickfill.rule_store"):
            store.remove(Rule("equal", "a", "1"))
        assert "unregistered" in caplog.text

    def test_remove_all(self, store: RuleStore) -> None:
        store.create("equal", "vorn", "${Vorname}$")
        store.create("equal", "Vorname", "Anton", owner="case")
        assert store.count() == 2
        assert store.remove_all(lambda r: r.owner == "case") == 1
        assert store.count() == 1

    def test_remove_all_without_predicate(self, store: RuleStore) -> None:
        store.create("equal", "a", "1")
        assert store.remove_all() == 0
        assert store.count() == 1

    def test_clear(self, store: RuleStore) -> None:
        store.create("equal", "a", "1")
        store.clear()
        assert store.count() == 0
        assert store.by_pattern("a") == []


class TestQueries:
    def test_get(self, store: RuleStore) -> None:
        rule = store.create("equal", "a", "1")
        template = store.create("equal", "t", "x", owner="template")
        assert store.get("R1") is rule
        assert store.get("T1") is template
        assert store.get("R9") is None

    def test_find_and_filter(self, store: RuleStore) -> None:
        a = store.create("equal", "a", "1")
        b = store.create("substring", "b", "2")
        assert store.find(lambda r: r.kind == "substring") is b
        assert store.filter(lambda r: r.kind == "equal") == [a]
        assert store.find(lambda r: r.kind == "regex") is None

    def test_has_scoped_rule_for(self, store: RuleStore) -> None:
        store.create("equal", "aaa", "bbb", scope="123")
        store.create("equal", "aaa", "ccc")
        store.create("equal", "ddd", "eee")
        assert store.has_scoped_rule_for("aaa")
        assert not store.has_scoped_rule_for("ddd")


class TestRulesDependingOn:
    def test_one_hop(self, store: RuleStore) -> None:
        a = store.create("equal", "a", "${b}$")
        store.create("equal", "b", "${c}$")
        store.create("equal", "c", "3")
        assert store.rules_depending_on("b") == [a]
        assert store.rules_depending_on("c") != [a]

    def test_alternatives_and_expressions(self, store: RuleStore) -> None:
        alt = store.create("equal", "x", "${yyy, zzz}$")
        expr = store.create("equal", "y", "${(findrule equal zzz)}$")
        store.create("equal", "z", "zzz")
        assert store.rules_depending_on("zzz") == [alt, expr]

    def test_ignores_computed(self, store: RuleStore) -> None:
        store.create("equal", "heute", Computed("today"))
        assert store.rules_depending_on("today") == []


class TestFindRule:
    def test_equal_uses_index(self, store: RuleStore) -> None:
        rule = store.create("equal", "Vorname", "Anton")
        assert store.find_rule("equal", "Vorname") is rule
        assert store.find_rule("equal", "Vorn") is None

    def test_substring(self, store: RuleStore) -> None:
        rule = store.create("equal", "objekte.personalie.geburtsdatum", "20000125")
        assert store.find_rule("substring", "personalie.geburtsdatum") is rule

    def test_superstring(self, store: RuleStore) -> None:
        rule = store.create("equal", "gebdat", "x")
        assert store.find_rule("superstring", "f.gebdat.1") is rule

    def test_similar(self, store: RuleStore) -> None:
        rule = store.create("equal", "vorname", "Anton")
        assert store.find_rule("similar", "vornahme") is rule

    def test_regex(self, store: RuleStore) -> None:
        rule = store.create("equal", "f.gebdat.1", "x")
        assert store.find_rule("regex", r"gebdat\.\d") is rule
        assert store.find_rule("regex", "([") is None

    def test_formula(self, store: RuleStore) -> None:
        rule = store.create("equal", "f.ort.1", "Berlin")
        assert store.find_rule("formula", "(substring ort)") is rule

    def test_case_rules_searched_first(self, store: RuleStore) -> None:
        store.create("equal", "geburtsdatum", "1")
        case = store.create("equal", "personalie.geburtsdatum", "2", owner="case")
        assert store.find_rule("substring", "geburtsdatum") is case

    def test_unknown_kind(self, store: RuleStore, caplog: pytest.LogCaptureFixture) -> None:
        store.create("equal", "a", "1")
        with caplog.at_level(logging.WARNING, logger="quickfill.rule_store"):
            assert store.find_rule("fuzzy", "a") is None
        assert "Unknown rule kind" in caplog.text


class TestTemplates:
    def test_instantiate(self, store: RuleStore) -> None:
        store.create("equal", "anrede", "Herr ${name}$", owner="template")
        anton = Subject("Anton")
        (rule,) = store.instantiate_templates(anton)
        assert rule.owner == "case"
        assert rule.subject == anton
        assert rule.value == "Herr ${name}$"
        assert store.by_pattern("anrede") == [rule]

    def test_instantiate_twice_is_idempotent(self, store: RuleStore) -> None:
        store.create("equal", "anrede", "Herr", owner="template")
        store.instantiate_templates(Subject("Anton"))
        assert store.instantiate_templates(Subject("Anton")) == []


class TestRecords:
    def test_round_trip(self, store: RuleStore) -> None:
        store.create("equal", "a", "1", owner="case")
        store.create("date", "gebdat", "${raw}$", scope="123", subject=Subject("Anton"))
        store.create("equal", "heute", Computed("today"))
        store.create("equal", "t", "x", owner="template")
        records = store.to_records()

        other = RuleStore()
        other.load_records(records)
        assert [r.signature() for r in other.all_in_priority_order()] == [
            r.signature() for r in store.all_in_priority_order()
        ]
        assert len(other.templates()) == 1

    def test_to_records_with_predicate(self, store: RuleStore) -> None:
        store.create("equal", "a", "1", owner="case")
        store.create("equal", "b", "2")
        assert store.to_records(lambda r: r.owner == "case") == [
            {"kind": "equal", "pattern": "a", "value": "1", "owner": "case"},
        ]

    def test_load_replaces_owner(self, store: RuleStore) -> None:
        store.create("equal", "a", "old", owner="PVB")
        store.create("equal", "b", "kept", owner="case")
        added = store.load_records([{"kind": "equal", "pattern": "a", "value": "new"}], "PVB")
        assert [r.value for r in added] == ["new"]
        assert added[0].owner == "PVB"
        assert sorted(r.value for r in store) == ["kept", "new"]

    def test_load_owner_mapping(self, store: RuleStore) -> None:
        added = store.load_records({
            "case": [{"rule_type": "equal", "rule": "a", "value": "1"}],
            "template": [{"rule_type": "equal", "rule": "t", "value": "x"}],
        })
        assert [r.id for r in added] == ["R1", "T1"]
        assert added[0].is_case_rule()

    def test_load_skips_duplicates(self, store: RuleStore) -> None:
        record = {"kind": "equal", "pattern": "a", "value": "1"}
        assert len(store.load_records([record, record])) == 1
