"""Rule entity: one pattern -> value substitution declaration.

A rule's ``pattern`` is a comma-separated list of alternatives that are
tried independently. Its ``value`` is a template string (possibly holding
``${...}$`` placeholders) or a ``Computed`` reference to a named provider.

Rules are registered in a ``RuleStore``; the store assigns ``nr`` from one
of two counters (ordinary rules ``R<n>``, templates ``T<n>``).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias

from quickfill.placeholders import OPEN, CLOSE, delimiters_balanced
from quickfill.providers import ProviderRegistry

if TYPE_CHECKING:
    from quickfill.rule_store import RuleStore

log = logging.getLogger(__name__)

RuleKind: TypeAlias = Literal[
    "equal", "substring", "superstring", "similar",
    "regex", "formula", "date", "switch",
]

RULE_KINDS: frozenset[str] = frozenset({
    "equal", "substring", "superstring", "similar",
    "regex", "formula", "date", "switch",
})

CASE_OWNER = "case"
PERSON_OWNER = "person"
TEMPLATE_OWNER = "template"

_ALTERNATIVE_SPLIT_RE = re.compile(r"\s*,\s*")


@dataclass(frozen=True, slots=True)
class Subject:
    """The entity (person, case) that private rules belong to."""

    name: str


@dataclass(frozen=True, slots=True)
class Computed:
    """A value produced at resolution time by a named provider."""

    provider: str


RuleValue: TypeAlias = str | Computed


def split_alternatives(text: str) -> tuple[str, ...]:
    """Split a comma-separated pattern or scope list, dropping blanks."""
    return tuple(p for p in (s.strip() for s in _ALTERNATIVE_SPLIT_RE.split(text or "")) if p)


def _coerce_scope(scope: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    if not scope:
        return ()
    if isinstance(scope, str):
        return split_alternatives(scope)
    return tuple(s.strip() for s in scope if s and s.strip())


class Rule:
    """A single substitution rule.

    Identity is the object itself: two distinct Rule objects are never
    ``==`` even when structurally equal (see ``same_as``).
    """

    __slots__ = (
        "kind", "_pattern", "value", "scope", "threshold",
        "owner", "header", "subject", "nr", "_store",
    )

    def __init__(
        self,
        kind: str = "equal",
        pattern: str = "",
        value: RuleValue = "",
        *,
        scope: str | tuple[str, ...] | list[str] | None = None,
        threshold: int | None = None,
        owner: str | None = None,
        header: bool = False,
        subject: Subject | None = None,
    ) -> None:
        kind = (kind or "equal").lower()
        if kind not in RULE_KINDS:
            raise ValueError(f"Unknown rule kind: {kind!r}")
        self.kind: str = kind
        self._pattern = pattern or ""
        self.value: RuleValue = value if value is not None else ""
        self.scope: tuple[str, ...] = _coerce_scope(scope)
        self.threshold = threshold
        self.owner = owner
        self.header = header
        self.subject = subject
        self.nr = 0
        self._store: RuleStore | None = None
        self.check()

    # ─── Pattern ──────────────────────────────────────────────────

    @property
    def pattern(self) -> str:
        return self._pattern

    @pattern.setter
    def pattern(self, new_pattern: str) -> None:
        self._pattern = new_pattern or ""
        if self._store is not None:
            self._store.invalidate()

    @property
    def alternatives(self) -> tuple[str, ...]:
        return split_alternatives(self._pattern)

    # ─── Classification ───────────────────────────────────────────

    @property
    def id(self) -> str:
        return f"{'T' if self.is_template() else 'R'}{self.nr}"

    def is_template(self) -> bool:
        return self.owner == TEMPLATE_OWNER

    def is_person_rule(self) -> bool:
        return self.subject is not None

    def is_case_rule(self) -> bool:
        return self.owner == CASE_OWNER and self.subject is None

    def is_general_rule(self) -> bool:
        return (
            self.subject is None
            and self.owner != CASE_OWNER
            and self.owner != TEMPLATE_OWNER
        )

    def is_computed(self) -> bool:
        return isinstance(self.value, Computed)

    def has_value(self) -> bool:
        return self.is_computed() or bool(self.value)

    def applies_to_document(self, document: str | None) -> bool:
        """True if the rule is universal or *document* contains a scope entry."""
        if not self.scope:
            return True
        if not document:
            return False
        return any(entry in document for entry in self.scope)

    # ─── Validation and equality ──────────────────────────────────

    def check(self) -> bool:
        """Check delimiter balance of the value; imbalance is logged only."""
        if not isinstance(self.value, str) or not self.value:
            return True
        if not delimiters_balanced(self.value):
            log.warning(
                "%d %r but %d %r in %s",
                self.value.count(OPEN), OPEN, self.value.count(CLOSE), CLOSE, self,
            )
            return False
        return True

    def signature(self) -> tuple[Any, ...]:
        return (
            self._pattern, self.kind, self.value, self.scope,
            self.threshold, self.owner, self.header, self.subject,
        )

    def same_as(self, other: Rule) -> bool:
        """Structural equality: same pattern, kind, value, scope, owner, subject."""
        return self.signature() == other.signature()

    # ─── Rendering ────────────────────────────────────────────────

    def __repr__(self) -> str:
        value = f"<{self.value.provider}>" if self.is_computed() else repr(self.value)
        parts = [self.id, self.kind, repr(self._pattern), value]
        if self.scope:
            parts.append(f"scope={', '.join(self.scope)}")
        if self.subject is not None:
            parts.append(f"subject={self.subject.name}")
        if self.header:
            parts.append("header")
        return f"Rule({' '.join(parts)})"

    def to_record(self) -> dict[str, Any]:
        """Persisted shape; optional keys only when set."""
        record: dict[str, Any] = {
            "kind": self.kind,
            "pattern": self._pattern,
            "value": (
                {"computed": self.value.provider}
                if self.is_computed()
                else self.value
            ),
        }
        if self.scope:
            record["scope"] = list(self.scope)
        if self.threshold is not None:
            record["threshold"] = self.threshold
        if self.owner:
            record["owner"] = self.owner
        if self.header:
            record["header"] = True
        if self.subject is not None:
            record["subject"] = self.subject.name
        return record


def value_from_record(raw: Any, providers: ProviderRegistry | None = None) -> RuleValue:
    """Decode a persisted value: a string or ``{"computed": name}``."""
    if isinstance(raw, dict):
        name = raw.get("computed")
        if not isinstance(name, str) or not name:
            raise ValueError(f"Computed value needs a provider name: {raw!r}")
        if providers is not None:
            providers.get(name)  # raises UnknownProviderError
        return Computed(name)
    if raw is None:
        return ""
    return str(raw)


def rule_from_record(
    record: dict[str, Any],
    *,
    providers: ProviderRegistry | None = None,
) -> Rule:
    """Build an unregistered Rule from a persisted record.

    Accepts the legacy keys ``rule_type``, ``rule`` and ``pdf`` alongside
    ``kind``, ``pattern`` and ``scope``.
    """
    subject = record.get("subject")
    threshold = record.get("threshold")
    return Rule(
        kind=str(record.get("kind") or record.get("rule_type") or "equal"),
        pattern=str(record.get("pattern") or record.get("rule") or ""),
        value=value_from_record(record.get("value"), providers),
        scope=record.get("scope") or record.get("pdf"),
        threshold=int(threshold) if threshold not in (None, "") else None,
        owner=record.get("owner"),
        header=bool(record.get("header", False)),
        subject=Subject(str(subject)) if subject else None,
    )
