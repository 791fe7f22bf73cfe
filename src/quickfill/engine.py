"""Resolution engine: expands ``${...}$`` placeholders using a RuleStore.

Traversal keeps an explicit stack of one-step candidate iterators. Candidates
of a string are taken in rule priority order; a final one is reported, a
non-final one is expanded before any later candidate is looked at, so a
higher-priority rule wins even when its path is longer. A per-call
``visited`` set stops cycles, and every expansion spends one unit of a
per-call budget of ``max_depth``, so total work stays bounded even when
rules keep producing new strings.

Rule selection for a variable ``K`` runs in tiers; the first tier that
produces a candidate wins, and environment defaults are always appended:

1. header rules of the active subject
2. when a rule under ``K`` is scoped to the current document:
   case rules, then the scope-matching rules
3. personal rules, then case rules, then unscoped general rules
4. when nothing is indexed under ``K``: every non-equal rule in priority order
5. environment default for ``K`` from ``EngineConfig.defaults``
"""
from __future__ import annotations

from typing import TypeAlias

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field, replace

from quickfill.config import EngineConfig
from quickfill.placeholders import (
    find_containers,
    is_final,
    single_variable,
    strip_containers,
)
from quickfill.providers import ProviderRegistry, UnknownProviderError, default_registry
from quickfill.rule_store import RuleStore
from quickfill.rules import Computed, Rule, RuleValue, Subject
from quickfill.sexpr import evaluate
from quickfill.textmatch import edit_distance, reformat_compact_date, terminal_length

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FieldRef:
    """A form field to fill: its key plus the document it belongs to."""

    key: str
    document: str | None = None

    @property
    def source(self) -> str:
        return "${" + self.key + "}$"


@dataclass(frozen=True, slots=True)
class ResolutionContext:
    """Caller-supplied state for resolution calls."""

    active_subject: Subject | None = None
    document: str | None = None
    max_depth: int | None = None                 # None -> EngineConfig.max_depth


@dataclass(frozen=True, slots=True)
class ResolutionReason:
    """Why a key resolved the way it did."""

    result: str
    rule_chain: tuple[str, ...]


@dataclass(slots=True)
class EngineStats:
    fields_filled: int = 0
    chars_filled: int = 0


@dataclass(slots=True)
class _CallState:
    """Mutable state of one top-level call (or one nested date/switch call)."""

    origin: str
    key: str
    subject: Subject | None
    document: str | None
    max_depth: int
    visited: set[str] = field(default_factory=set)
    trail: list[str] = field(default_factory=list)  # visited, in order
    expansions: int = 0  # capped by max_depth
    rule_chain: list[str] = field(default_factory=list)
    nesting: list[str] = field(default_factory=list)

    def visit(self, text: str) -> None:
        self.visited.add(text)
        self.trail.append(text)

    def record(self, entry: str) -> None:
        if entry not in self.rule_chain:
            self.rule_chain.append(entry)


Resolvable: TypeAlias = str | FieldRef


class ResolutionEngine:
    """Resolves placeholder strings against a RuleStore."""

    def __init__(
        self,
        store: RuleStore,
        context: ResolutionContext | None = None,
        *,
        config: EngineConfig | None = None,
        providers: ProviderRegistry | None = None,
    ) -> None:
        self.store = store
        self.context = context or ResolutionContext()
        self.config = config or EngineConfig()
        self.providers = providers or default_registry()
        self.reasons: dict[str, ResolutionReason] = {}
        self.stats = EngineStats()

    # ─── Public API ───────────────────────────────────────────────

    def resolve_first(
        self, source: Resolvable, context: ResolutionContext | None = None,
    ) -> str | None:
        """First fully resolved string reachable from *source*, or None."""
        text, state = self._start(source, context)
        return self._first(text, state)

    def resolve_all(
        self, source: Resolvable, context: ResolutionContext | None = None,
    ) -> Iterator[str]:
        """Every fully resolved string reachable from *source*, in traversal order."""
        text, state = self._start(source, context)
        yield from self._finals(text, state)

    def reachable(
        self, source: Resolvable, context: ResolutionContext | None = None,
    ) -> list[str]:
        """*source* followed by every distinct string reachable from it."""
        text, state = self._start(source, context)
        return self._reachable(text, state)

    def resolve_best(
        self, source: Resolvable, context: ResolutionContext | None = None,
    ) -> str:
        """Reachable string with the most terminal characters; *source* if none beats it."""
        text, state = self._start(source, context)
        return self._best(text, state)

    def value_of(
        self, source: Resolvable, context: ResolutionContext | None = None,
    ) -> str | None:
        """Final value, else the best partial with leftover containers removed."""
        text, state = self._start(source, context)
        result = self._first(text, state)
        if result is not None:
            return result
        return self._partial(text, state)

    def one_step(
        self, source: Resolvable, context: ResolutionContext | None = None,
    ) -> Iterator[str]:
        """Candidates from substituting one container entry of *source* once."""
        text, state = self._start(source, context)
        yield from self._one_step(text, state)

    # ─── Call setup ───────────────────────────────────────────────

    def _start(
        self, source: Resolvable, context: ResolutionContext | None,
    ) -> tuple[str, _CallState]:
        ctx = context or self.context
        if isinstance(source, FieldRef):
            text = source.source
            key = source.key
            document = source.document or ctx.document
        else:
            text = source
            key = single_variable(source) or source
            document = ctx.document
        state = _CallState(
            origin=text,
            key=key,
            subject=ctx.active_subject,
            document=document,
            max_depth=ctx.max_depth if ctx.max_depth is not None else self.config.max_depth,
        )
        return text, state

    def _nested(self, template: str, parent: _CallState) -> _CallState:
        return replace(
            parent,
            origin=template,
            key=single_variable(template) or template,
            visited=set(),
            trail=[],
            expansions=0,
        )

    # ─── Traversal ────────────────────────────────────────────────

    def _first(self, text: str, state: _CallState) -> str | None:
        result = next(self._finals(text, state), None)
        if result is not None and result.strip() and state.rule_chain:
            self.stats.fields_filled += 1
            self.stats.chars_filled += len(result)
            self.reasons[state.key] = ResolutionReason(result, tuple(state.rule_chain))
            log.debug("%s = %r via %s", state.key, result, ", ".join(state.rule_chain))
        return result

    def _partial(self, text: str, state: _CallState) -> str | None:
        """Longest string the traversal of *text* visited, containers removed."""
        best = self._longest(text, state.trail)
        return strip_containers(best) if best != text else None

    def _descend(self, state: _CallState, at: str) -> bool:
        """Spend one expansion; False once the call's budget is used up."""
        state.expansions += 1
        if state.expansions > state.max_depth:
            if state.expansions == state.max_depth + 1:
                log.warning("Max nesting level %d exceeded at %r", state.max_depth, at)
            return False
        return True

    def _finals(self, source: str, state: _CallState) -> Iterator[str]:
        if is_final(source):
            yield source
            return
        state.visit(source)
        levels: list[Iterator[str]] = [self._one_step(source, state)]
        while levels:
            candidate = next(levels[-1], None)
            if candidate is None:
                levels.pop()
                continue
            if candidate in state.visited:
                continue
            state.visit(candidate)
            if is_final(candidate):
                yield candidate
            elif self._descend(state, candidate):
                levels.append(self._one_step(candidate, state))
            else:
                levels.pop()

    def _reachable(self, source: str, state: _CallState) -> list[str]:
        found: list[str] = []
        stack: list[tuple[str, bool]] = [(source, False)]
        while stack:
            current, nested = stack.pop()
            if nested and not self._descend(state, current):
                break
            if current not in state.visited:
                state.visit(current)
                found.append(current)
            fresh: list[str] = []
            for candidate in self._one_step(current, state):
                if candidate not in state.visited:
                    state.visit(candidate)
                    found.append(candidate)
                    fresh.append(candidate)
            # a final candidate ends the descent below this level
            if not fresh or any(is_final(c) for c in fresh):
                continue
            stack.extend((candidate, True) for candidate in reversed(fresh))
        return found

    @staticmethod
    def _longest(source: str, partials: list[str]) -> str:
        best, best_length = source, 0
        for partial in partials:
            length = terminal_length(partial)
            if length > best_length:
                best, best_length = partial, length
        return best

    def _best(self, source: str, state: _CallState) -> str:
        return self._longest(source, self._reachable(source, state))

    def _one_step(self, source: str, state: _CallState) -> Iterator[str]:
        for container in find_containers(source):
            for variable in container.variables:
                for value in self._values_for(variable, state):
                    if value != source and value != state.origin:
                        yield source.replace(container.text, value, 1)
            for expression in container.expressions:
                result = evaluate(
                    state.key, expression, self.store,
                    default_threshold=self.config.default_similar_threshold,
                )
                if isinstance(result, str) and result:
                    yield source.replace(container.text, result)

    # ─── Rule selection ───────────────────────────────────────────

    def _tiers(self, key: str, state: _CallState) -> list[list[Rule]]:
        indexed = self.store.by_pattern(key)
        if not indexed:
            return [[r for r in self.store.all_in_priority_order() if r.kind != "equal"]]

        subject = state.subject
        case_rules = [r for r in indexed if r.is_case_rule()]
        tiers: list[list[Rule]] = []
        if subject is not None:
            tiers.append([r for r in indexed if r.header and r.subject == subject])
        if self.store.has_scoped_rule_for(key):
            scoped = [
                r for r in indexed
                if r.scope and r.is_general_rule() and r.applies_to_document(state.document)
            ]
            if scoped:
                tiers.append(case_rules + scoped)
        personal = [
            r for r in indexed
            if r.is_person_rule() and r.subject == subject and not r.header
        ]
        specific = [r for r in indexed if r.is_general_rule() and not r.scope]
        tiers.append(personal + case_rules + specific)
        return tiers

    def _values_for(self, key: str, state: _CallState) -> Iterator[str]:
        for tier in self._tiers(key, state):
            produced = False
            for rule in tier:
                value = self._apply(rule, key, state)
                if value and value != key:
                    produced = True
                    state.record(rule.id)
                    yield value
            if produced:
                break

        default = self.config.defaults.get(key)
        if default is not None:
            value = self._render(default, state.key)
            if value and value != key:
                state.record(f"default({key})")
                yield value

    def _render(self, value: RuleValue, key: str) -> str | None:
        if isinstance(value, Computed):
            try:
                return self.providers.render(value.provider, key)
            except UnknownProviderError:
                log.warning("Unknown computed-value provider %r for %s", value.provider, key)
                return None
        return value

    def _apply(self, rule: Rule, key: str, state: _CallState) -> str | None:
        """Value of *rule* for *key*, or None when it does not apply."""
        if rule.is_template() or (rule.kind != "formula" and not rule.has_value()):
            return None
        if rule.is_person_rule() and rule.subject != state.subject:
            return None
        if not rule.applies_to_document(state.document):
            return None

        alternatives = rule.alternatives
        for alt in alternatives:
            kind = rule.kind
            if kind == "equal":
                if alt == key:
                    return self._render(rule.value, state.key)
            elif kind == "substring":
                if alt in key:
                    return self._render(rule.value, state.key)
            elif kind == "superstring":
                if key in alt:
                    return self._render(rule.value, state.key)
            elif kind == "similar":
                threshold = rule.threshold or self.config.default_similar_threshold
                if edit_distance(alt, key) < threshold:
                    return self._render(rule.value, state.key)
            elif kind == "regex":
                try:
                    matched = re.search(alt, key) is not None
                except re.error as exc:
                    log.debug("Invalid regex %r in %s: %s", alt, rule.id, exc)
                    matched = False
                if matched:
                    return self._render(rule.value, state.key)
            elif kind == "formula":
                result = evaluate(
                    key, alt, self.store,
                    default_threshold=self.config.default_similar_threshold,
                )
                if result:
                    value = self._render(rule.value, state.key)
                    return value or (result if isinstance(result, str) else None)
            elif kind == "date":
                if alt == key:
                    return self._date_value(rule, key, state)
            elif kind == "switch":
                if alt == key:
                    return self._switch_value(rule, alternatives.index(alt), state)
        return None

    # ─── Nested resolution for date and switch rules ──────────────

    def _nested_value(self, template: str, state: _CallState) -> str | None:
        if template in state.nesting or len(state.nesting) >= state.max_depth:
            log.warning("Skipping recursive resolution of %r", template)
            return None
        state.nesting.append(template)
        try:
            nested = self._nested(template, state)
            result = next(self._finals(template, nested), None)
            if result is not None:
                return result
            return self._partial(template, nested)
        finally:
            state.nesting.pop()

    def _date_value(self, rule: Rule, key: str, state: _CallState) -> str | None:
        raw = self._render(rule.value, state.key)
        if not raw:
            return None
        return reformat_compact_date(self._nested_value(raw, state) or raw)

    def _switch_value(self, rule: Rule, index: int, state: _CallState) -> str | None:
        if not isinstance(rule.value, str):
            return None
        parts = rule.value.split()
        if not parts:
            return None
        resolved = self._nested_value("${" + parts[0] + "}$", state)
        expected = parts[index + 1] if index + 1 < len(parts) else None
        return "1" if resolved is not None and resolved == expected else "0"
