"""In-memory rule store with identity, pattern and priority indices.

Ordinary rules are numbered ``R1, R2, ...`` and template rules
``T1, T2, ...`` from two independent counters; numbers are never reused,
not even after ``clear()``.

The pattern index and the priority order are derived data: they are built
lazily and dropped on every mutation (including ``rule.pattern = ...``).
Templates live only in the identity index and are never applied directly.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from typing import Any, TypeAlias

from quickfill.placeholders import find_containers
from quickfill.providers import ProviderRegistry
from quickfill.rules import (
    CASE_OWNER,
    TEMPLATE_OWNER,
    Rule,
    Subject,
    rule_from_record,
)
from quickfill.sexpr import DEFAULT_SIMILAR_THRESHOLD, evaluate, tokenize
from quickfill.textmatch import edit_distance

log = logging.getLogger(__name__)

RulePredicate: TypeAlias = Callable[[Rule], bool]


class RuleStore:
    """All rules of one process, queried by the resolution engine."""

    def __init__(self, *, similar_threshold: int = DEFAULT_SIMILAR_THRESHOLD) -> None:
        self.similar_threshold = similar_threshold
        self._rules: dict[str, Rule] = {}
        self._rule_counter = 0
        self._template_counter = 0
        self._index: dict[str, list[Rule]] | None = None
        self._priority: list[Rule] | None = None

    # ─── Mutation ─────────────────────────────────────────────────

    def add(self, rule: Rule) -> Rule | None:
        """Register *rule*; returns None when a structurally equal rule exists."""
        if rule._store is not None:
            raise ValueError(f"{rule!r} is already registered")
        for existing in self._rules.values():
            if existing.same_as(rule):
                log.warning("Rejecting duplicate of %s: %r", existing.id, rule)
                return None
        if rule.is_template():
            self._template_counter += 1
            rule.nr = self._template_counter
        else:
            self._rule_counter += 1
            rule.nr = self._rule_counter
        rule._store = self
        self._rules[rule.id] = rule
        self.invalidate()
        return rule

    def create(self, kind: str = "equal", pattern: str = "", value: Any = "", **fields: Any) -> Rule | None:
        """Construct a Rule and add it."""
        return self.add(Rule(kind, pattern, value, **fields))

    def remove(self, rule: Rule) -> None:
        if rule._store is not self:
            log.warning("Cannot remove unregistered rule %r", rule)
            return
        # owner edits after add() may change the id prefix
        key = next(k for k, r in self._rules.items() if r is rule)
        del self._rules[key]
        rule._store = None
        self.invalidate()

    def remove_all(self, predicate: RulePredicate | None = None) -> int:
        """Remove every rule (templates included) matching *predicate*."""
        if predicate is None:
            return 0
        doomed = [r for r in self._rules.values() if predicate(r)]
        for rule in doomed:
            self.remove(rule)
        return len(doomed)

    def clear(self) -> None:
        """Drop all rules; id counters keep running."""
        for rule in self._rules.values():
            rule._store = None
        self._rules.clear()
        self.invalidate()

    def rebuild(self) -> None:
        """Rebuild the derived indices now instead of on next access."""
        self.invalidate()
        self._build_index()
        self._build_priority()

    def invalidate(self) -> None:
        self._index = None
        self._priority = None

    # ─── Derived indices ──────────────────────────────────────────

    def _ordered(self) -> list[Rule]:
        return sorted(
            (r for r in self._rules.values() if not r.is_template()),
            key=lambda r: r.nr,
        )

    def _build_index(self) -> dict[str, list[Rule]]:
        index: dict[str, list[Rule]] = defaultdict(list)
        for rule in self._ordered():
            for alternative in dict.fromkeys(rule.alternatives):
                index[alternative].append(rule)
        self._index = dict(index)
        return self._index

    def _build_priority(self) -> list[Rule]:
        ordered = self._ordered()
        self._priority = (
            [r for r in ordered if r.owner == CASE_OWNER]
            + [r for r in ordered if r.owner != CASE_OWNER]
        )
        return self._priority

    def by_pattern(self, key: str) -> list[Rule]:
        """Rules declaring *key* as one of their pattern alternatives, by nr."""
        index = self._index if self._index is not None else self._build_index()
        return list(index.get(key, ()))

    def all_in_priority_order(self) -> list[Rule]:
        """Case-owned rules first, then the rest; each group by nr."""
        priority = self._priority if self._priority is not None else self._build_priority()
        return list(priority)

    # ─── Queries ──────────────────────────────────────────────────

    def get(self, rule_id: str) -> Rule | None:
        rule = self._rules.get(rule_id)
        if rule is not None and rule.id == rule_id:
            return rule
        return next((r for r in self._rules.values() if r.id == rule_id), None)

    def count(self) -> int:
        return len(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.all_in_priority_order())

    def __contains__(self, rule: object) -> bool:
        return isinstance(rule, Rule) and rule._store is self

    def find(self, predicate: RulePredicate) -> Rule | None:
        return next((r for r in self.all_in_priority_order() if predicate(r)), None)

    def filter(self, predicate: RulePredicate) -> list[Rule]:
        return [r for r in self.all_in_priority_order() if predicate(r)]

    def get_by_key(self, pattern: str) -> Rule | None:
        """First rule (priority order) whose whole pattern equals *pattern*."""
        return self.find(lambda r: r.pattern == pattern)

    def has_scoped_rule_for(self, key: str) -> bool:
        return any(r.scope for r in self.by_pattern(key))

    def templates(self) -> list[Rule]:
        return sorted((r for r in self._rules.values() if r.is_template()), key=lambda r: r.nr)

    def rules_depending_on(self, variable: str) -> list[Rule]:
        """Rules whose value references *variable* directly (one hop only).

        A reference is a container entry naming the variable, or a token of
        an S-expression entry equal to it.
        """
        dependents: list[Rule] = []
        for rule in self.all_in_priority_order():
            if not isinstance(rule.value, str):
                continue
            for container in find_containers(rule.value):
                if variable in container.variables or any(
                    token.strip('"') == variable
                    for expression in container.expressions
                    for token in tokenize(expression)
                ):
                    dependents.append(rule)
                    break
        return dependents

    def find_rule(self, kind: str, pattern: str) -> Rule | None:
        """Search a rule by *kind* applied to *pattern*.

        ``equal`` looks up the pattern index. The other kinds scan the
        priority order and test each alternative ``alt`` of a rule:
        ``substring`` -> alt contains pattern, ``superstring`` -> pattern
        contains alt, ``similar`` -> edit distance below the rule threshold,
        ``regex`` -> pattern (a regex) found in alt, ``formula`` -> pattern
        (an S-expression) is truthy for subject alt.
        """
        kind = kind.lower()
        if kind == "equal":
            matches = self.by_pattern(pattern)
            return matches[0] if matches else None

        regex: re.Pattern[str] | None = None
        if kind == "regex":
            try:
                regex = re.compile(pattern)
            except re.error as exc:
                log.debug("Invalid findrule regex %r: %s", pattern, exc)
                return None
        elif kind not in ("substring", "superstring", "similar", "formula"):
            log.warning("Unknown rule kind %r in findrule", kind)
            return None

        for rule in self.all_in_priority_order():
            for alt in rule.alternatives:
                if kind == "substring":
                    hit = pattern in alt
                elif kind == "superstring":
                    hit = alt in pattern
                elif kind == "similar":
                    hit = edit_distance(alt, pattern) < (rule.threshold or self.similar_threshold)
                elif kind == "regex":
                    hit = regex is not None and regex.search(alt) is not None
                else:
                    hit = bool(evaluate(alt, pattern, self, default_threshold=self.similar_threshold))
                if hit:
                    return rule
        return None

    # ─── Templates ────────────────────────────────────────────────

    def instantiate_templates(self, subject: Subject, owner: str = CASE_OWNER) -> list[Rule]:
        """Copy every template rule as a rule private to *subject*."""
        created: list[Rule] = []
        for template in self.templates():
            rule = self.create(
                template.kind,
                template.pattern,
                template.value,
                scope=template.scope,
                threshold=template.threshold,
                owner=owner,
                header=template.header,
                subject=subject,
            )
            if rule is not None:
                created.append(rule)
        log.info("Instantiated %d template rules for %s", len(created), subject.name)
        return created

    # ─── Records ──────────────────────────────────────────────────

    def to_records(self, predicate: RulePredicate | None = None) -> list[dict[str, Any]]:
        """Persisted records: priority order, then templates."""
        rules = self.all_in_priority_order() + self.templates()
        return [r.to_record() for r in rules if predicate is None or predicate(r)]

    def load_records(
        self,
        records: Iterable[dict[str, Any]] | dict[str, list[dict[str, Any]]],
        owner: str | None = None,
        *,
        providers: ProviderRegistry | None = None,
    ) -> list[Rule]:
        """Import rule records.

        With *owner*, all existing rules of that owner are replaced and the
        imported rules are assigned to it. A mapping ``{owner: [records]}``
        imports each group that way.
        """
        if isinstance(records, dict):
            added: list[Rule] = []
            for group_owner, group in records.items():
                added.extend(self.load_records(group, group_owner, providers=providers))
            return added

        if owner is not None:
            removed = self.remove_all(lambda r: r.owner == owner)
            if removed:
                log.info("Replaced %d rules of owner %s", removed, owner)

        added = []
        for record in records:
            rule = rule_from_record(record, providers=providers)
            if owner is not None:
                rule.owner = owner
            if self.add(rule) is not None:
                added.append(rule)
        return added
