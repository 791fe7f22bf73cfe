"""S-expression DSL for conditional and formula rules.

Grammar::

    expr     := atom | '(' operator operand* ')'
    operand  := expr
    atom     := QUOTED_STRING | BARE_WORD
    QUOTED_STRING := '"' [^"]* '"'     (may contain spaces and parens)
    BARE_WORD     := [^\\s()"]+

Expressions are evaluated against a *subject*: the name of the field being
filled. Operators (German aliases in brackets):

* ``equal`` (gleich), ``substring`` (teilwort), ``superstring`` (oberwort),
  ``regex`` (muster): ``(op PATTERN [RESULT])`` tests the subject.
* ``similar`` (ähnlich): ``(similar PATTERN THRESHOLD RESULT)``.
* ``or`` (oder): first truthy operand wins.
* ``and`` (und): ``(and COND... [RESULT])``; every condition truthy.
* ``not`` (nicht): ``(not COND [RESULT])``.
* ``re-format-date`` (datum-reformatieren): ``YYYY?MM?DD`` -> ``DD.MM.YYYY``.
* ``transform`` (umstellen, umordnen): ``(transform REGEX TEMPLATE TEXT)``,
  global replace with ``$1`` back-references.
* ``findrule`` (find, rule, regel): ``(findrule KIND PATTERN)``, raw value
  of the first matching rule in the store.

A successful test returns its RESULT operand or ``True``; a failed test
returns ``None``. Quotes are stripped from returned atoms.

Public API:

* ``evaluate(subject, expression, store)``: parse and evaluate.
* ``parse(expression)``: parse into an ``SExpr`` tree or a bare atom.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias

from quickfill.textmatch import edit_distance, expand_backrefs, reformat_date

if TYPE_CHECKING:
    from quickfill.rule_store import RuleStore

log = logging.getLogger(__name__)

DEFAULT_SIMILAR_THRESHOLD = 5

Result: TypeAlias = str | bool | None


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

_OPERATOR_ALIASES: dict[str, str] = {
    "gleich": "equal",
    "teilwort": "substring",
    "oberwort": "superstring",
    "ähnlich": "similar",
    "muster": "regex",
    "oder": "or",
    "und": "and",
    "nicht": "not",
    "datum-reformatieren": "re-format-date",
    "umstellen": "transform",
    "umordnen": "transform",
    "find": "findrule",
    "rule": "findrule",
    "regel": "findrule",
}


def canonical_operator(name: str) -> str:
    """Map an operator or one of its aliases to the canonical name."""
    lowered = name.strip().lower()
    return _OPERATOR_ALIASES.get(lowered, lowered)


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SExpr:
    """A parenthesised expression: operator plus operands."""

    operator: str
    operands: tuple[Node, ...]


Node: TypeAlias = SExpr | str


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class _Token:
    """A single lexical token."""

    kind: str  # LPAREN | RPAREN | QUOTED | ATOM | EOF
    value: str
    pos: int


# Order matters (first match wins)
_TOKEN_PATTERNS: list[tuple[str, str]] = [
    ("WHITESPACE", r"\s+"),
    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("QUOTED", r'"[^"]*"?'),   # unterminated quote runs to the end
    ("ATOM", r'[^\s()"]+'),
]

_COMPILED_PATTERNS = [(name, re.compile(pat)) for name, pat in _TOKEN_PATTERNS]


def _tokenize(text: str) -> list[_Token]:
    """Tokenize an S-expression into a list of tokens ending with EOF."""
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        for name, pattern in _COMPILED_PATTERNS:
            m = pattern.match(text, pos)
            if m:
                if name != "WHITESPACE":
                    tokens.append(_Token(kind=name, value=m.group(), pos=pos))
                pos = m.end()
                break
    tokens.append(_Token(kind="EOF", value="", pos=pos))
    return tokens


def tokenize(text: str) -> list[str]:
    """Token strings of *text*; quoted atoms keep their quotes."""
    return [t.value for t in _tokenize(text) if t.kind != "EOF"]


def _unquote(value: str) -> str:
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"'):
        value = value[:-1]
    return value


# ---------------------------------------------------------------------------
# Recursive descent parser
# ---------------------------------------------------------------------------

class _Parser:
    """Recursive descent parser with best-effort recovery."""

    def __init__(self, tokens: list[_Token], source_text: str) -> None:
        self._tokens = tokens
        self._source = source_text
        self._pos = 0

    def _peek(self) -> _Token:
        return self._tokens[self._pos]

    def _advance(self) -> _Token:
        tok = self._tokens[self._pos]
        if self._pos < len(self._tokens) - 1:
            self._pos += 1
        return tok

    def parse(self) -> Node | None:
        while self._peek().kind == "RPAREN":
            log.warning("Ignoring stray ')' at %d in %r", self._peek().pos, self._source)
            self._advance()
        if self._peek().kind == "EOF":
            return None
        node = self._parse_node()
        if self._peek().kind != "EOF":
            log.warning(
                "Ignoring trailing input at %d in %r", self._peek().pos, self._source,
            )
        return node

    def _parse_node(self) -> Node:
        tok = self._peek()
        if tok.kind == "LPAREN":
            return self._parse_list()
        self._advance()
        return _unquote(tok.value)

    def _parse_list(self) -> SExpr:
        start = self._advance()  # '('
        head = self._peek()
        if head.kind in ("ATOM", "QUOTED"):
            operator = _unquote(self._advance().value)
        else:
            operator = ""
        operands: list[Node] = []
        while True:
            tok = self._peek()
            if tok.kind == "RPAREN":
                self._advance()
                break
            if tok.kind == "EOF":
                log.warning(
                    "Missing ')' for expression opened at %d in %r",
                    start.pos, self._source,
                )
                break
            operands.append(self._parse_node())
        return SExpr(operator=operator, operands=tuple(operands))


def parse(expression: str) -> Node | None:
    """Parse *expression* into an ``SExpr`` tree, a bare atom, or None if empty."""
    return _Parser(_tokenize(expression), expression).parse()


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class _Evaluator:
    """Evaluates a parsed tree against one subject."""

    def __init__(
        self,
        subject: str,
        store: RuleStore | None,
        default_threshold: int,
    ) -> None:
        self._subject = subject
        self._store = store
        self._default_threshold = default_threshold

    def eval(self, node: Node) -> Result:
        if isinstance(node, str):
            return node
        op = canonical_operator(node.operator)
        handler = _HANDLERS.get(op)
        if handler is None:
            log.warning("Unknown operator %r", node.operator)
            return None
        return handler(self, node.operands)

    # ─── Operand helpers ──────────────────────────────────────────

    def _text(self, operands: tuple[Node, ...], index: int) -> str | None:
        """Operand *index* as text; nested expressions are evaluated."""
        if index >= len(operands):
            return None
        value = self.eval(operands[index])
        return value if isinstance(value, str) else None

    def _result(self, operands: tuple[Node, ...], index: int) -> Result:
        return self._text(operands, index) or True

    @staticmethod
    def _compile(pattern: str, flags: int = 0) -> re.Pattern[str] | None:
        try:
            return re.compile(pattern, flags)
        except re.error as exc:
            log.debug("Invalid regex %r: %s", pattern, exc)
            return None

    # ─── Tests against the subject ────────────────────────────────

    def _equal(self, operands: tuple[Node, ...]) -> Result:
        pattern = self._text(operands, 0)
        if pattern is not None and self._subject == pattern:
            return self._result(operands, 1)
        return None

    def _substring(self, operands: tuple[Node, ...]) -> Result:
        pattern = self._text(operands, 0)
        if pattern is not None and pattern in self._subject:
            return self._result(operands, 1)
        return None

    def _superstring(self, operands: tuple[Node, ...]) -> Result:
        pattern = self._text(operands, 0)
        if pattern is not None and self._subject in pattern:
            return self._result(operands, 1)
        return None

    def _similar(self, operands: tuple[Node, ...]) -> Result:
        pattern = self._text(operands, 0)
        if pattern is None:
            return None
        try:
            threshold = int(self._text(operands, 1) or self._default_threshold)
        except ValueError:
            threshold = self._default_threshold
        if edit_distance(pattern, self._subject) < threshold:
            return self._result(operands, 2)
        return None

    def _regex(self, operands: tuple[Node, ...]) -> Result:
        pattern = self._text(operands, 0)
        if pattern is None:
            return None
        regex = self._compile(pattern, re.MULTILINE)
        if regex is not None and regex.search(self._subject):
            return self._result(operands, 1)
        return None

    # ─── Boolean combinators ──────────────────────────────────────

    def _or(self, operands: tuple[Node, ...]) -> Result:
        for operand in operands:
            value = self.eval(operand)
            if value:
                return value
        return None

    def _and(self, operands: tuple[Node, ...]) -> Result:
        conditions = [o for o in operands if isinstance(o, SExpr)]
        results = [o for o in operands if isinstance(o, str)]
        if all(self.eval(c) for c in conditions):
            return results[0] if results else True
        return None

    def _not(self, operands: tuple[Node, ...]) -> Result:
        if not operands:
            return None
        if self.eval(operands[0]):
            return None
        return self._result(operands, 1)

    # ─── Value producers ──────────────────────────────────────────

    def _reformat_date(self, operands: tuple[Node, ...]) -> Result:
        date_string = self._text(operands, 0)
        if not date_string:
            return None
        formatted = reformat_date(date_string)
        if formatted is None:
            log.warning("Unknown date format %r", date_string)
            return date_string
        return formatted

    def _transform(self, operands: tuple[Node, ...]) -> Result:
        pattern = self._text(operands, 0)
        template = self._text(operands, 1)
        target = self._text(operands, 2)
        if pattern is None or template is None or target is None:
            return None
        regex = self._compile(pattern, re.MULTILINE)
        if regex is None:
            return None
        return regex.sub(lambda m: expand_backrefs(template, m), target)

    def _findrule(self, operands: tuple[Node, ...]) -> Result:
        kind = self._text(operands, 0)
        pattern = self._text(operands, 1)
        if kind is None or pattern is None:
            return None
        if self._store is None:
            log.debug("findrule %s %s without a rule store", kind, pattern)
            return None
        rule = self._store.find_rule(kind, pattern)
        if rule is None or not isinstance(rule.value, str):
            return None
        return rule.value


_HANDLERS = {
    "equal": _Evaluator._equal,
    "substring": _Evaluator._substring,
    "superstring": _Evaluator._superstring,
    "similar": _Evaluator._similar,
    "regex": _Evaluator._regex,
    "or": _Evaluator._or,
    "and": _Evaluator._and,
    "not": _Evaluator._not,
    "re-format-date": _Evaluator._reformat_date,
    "transform": _Evaluator._transform,
    "findrule": _Evaluator._findrule,
}


def evaluate(
    subject: str,
    expression: str,
    store: RuleStore | None = None,
    *,
    default_threshold: int = DEFAULT_SIMILAR_THRESHOLD,
) -> Result:
    """Evaluate *expression* for the field named *subject*.

    Args:
        subject: Name of the field the expression is evaluated for.
        expression: S-expression text, or a bare atom returned as-is.
        store: Rule store consulted by ``findrule``; optional.
        default_threshold: Edit distance used by ``similar`` when the
            threshold operand is missing or not a number.

    Returns:
        A string value, ``True`` for a successful test without a result
        operand, or ``None`` for no match / unknown operator.
    """
    node = parse(expression)
    if node is None:
        return None
    return _Evaluator(subject, store, default_threshold).eval(node)
