"""Placeholder containers: ``${...}$`` spans inside rule values and sources.

A container body is a comma-separated list of alternatives. Each entry is
either a bare variable name or a parenthesised S-expression::

    Born ${Geburtsdatum, (re-format-date (findrule substring geburtsdatum))}$

Containers do not nest; the narrowest ``${ ... }$`` span wins.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

log = logging.getLogger(__name__)

OPEN = "${"
CLOSE = "}$"

_CONTAINER_RE = re.compile(r"\$\{.+?\}\$")


@dataclass(frozen=True, slots=True)
class Container:
    """One placeholder span found in a string."""

    start: int
    text: str  # full span including delimiters
    variables: tuple[str, ...]
    expressions: tuple[str, ...]

    @property
    def end(self) -> int:
        return self.start + len(self.text)


def trim_quotes(token: str) -> str:
    """Strip surrounding whitespace and one pair of double quotes."""
    result = token.strip()
    if result.startswith('"'):
        result = result[1:]
    if result.endswith('"'):
        result = result[:-1]
    return result


def split_entries(body: str) -> list[str]:
    """Split a container body at top-level commas.

    Commas inside double quotes or parentheses belong to the entry, so
    S-expressions may carry regex patterns such as ``"(\\w+),\\s*(\\w+)"``.
    """
    entries: list[str] = []
    current: list[str] = []
    depth = 0
    quoted = False
    for ch in body:
        if ch == '"':
            quoted = not quoted
        elif not quoted and ch == "(":
            depth += 1
        elif not quoted and ch == ")" and depth > 0:
            depth -= 1
        elif not quoted and depth == 0 and ch == ",":
            entries.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    entries.append("".join(current).strip())
    return [e for e in entries if e]


def parse_container(text: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Split a container into its variable names and S-expressions.

    Accepts the body with or without ``${``/``}$`` delimiters.
    """
    body = text.strip()
    if body.startswith(OPEN):
        body = body[len(OPEN):]
    if body.endswith(CLOSE):
        body = body[:-len(CLOSE)]

    variables: list[str] = []
    expressions: list[str] = []
    for entry in split_entries(body):
        if entry.startswith("("):
            if entry.endswith(")"):
                expressions.append(entry)
            else:
                log.warning("No closing bracket found in container entry %r", entry)
        else:
            name = trim_quotes(entry)
            if name:
                variables.append(name)
    return tuple(variables), tuple(expressions)


def find_containers(text: str) -> list[Container]:
    """Return every container in *text*, left to right."""
    containers: list[Container] = []
    for m in _CONTAINER_RE.finditer(text):
        variables, expressions = parse_container(m.group(0))
        containers.append(Container(
            start=m.start(),
            text=m.group(0),
            variables=variables,
            expressions=expressions,
        ))
    return containers


def is_final(text: str) -> bool:
    """True if *text* contains no placeholder container."""
    return _CONTAINER_RE.search(text) is None


def single_variable(text: str) -> str | None:
    """Return the variable name if *text* is exactly one ``${name}$`` container."""
    m = _CONTAINER_RE.fullmatch(text.strip())
    if not m:
        return None
    variables, expressions = parse_container(m.group(0))
    if len(variables) == 1 and not expressions:
        return variables[0]
    return None


def strip_containers(text: str) -> str:
    """Remove all containers, leaving the resolved text around them."""
    return _CONTAINER_RE.sub("", text)


def delimiters_balanced(value: str) -> bool:
    """True if *value* has as many ``${`` as ``}$`` delimiters."""
    return value.count(OPEN) == value.count(CLOSE)

