"""Reusable text primitives for rule matching and result scoring.

Pure text operations with zero domain dependencies: edit distance for
``similar`` rules, terminal-length scoring for partial results, date
reformatting and JavaScript-style ``$1`` back-reference expansion.
"""
from __future__ import annotations

import re

# A placeholder container or a filler character that does not count as content
_NON_TERMINAL_RE = re.compile(r"(\$\{.+?\}\$)|[-_,;+?#*.:/\s]")

# 20131030 -> 30.10.2013 (first occurrence only)
_COMPACT_DATE_RE = re.compile(r"(\d{4})(\d{2})(\d{2})")

# 2000-01-25, 2000/01/25, 2000.01.25, 20000125, ...
_LOOSE_DATE_RE = re.compile(r"(\d{4}).*?(\d{2}).*?(\d{2})")

_BACKREF_RE = re.compile(r"\$(\$|&|\d{1,2})")


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings.

    Args:
        a: First string.
        b: Second string.

    Returns:
        Minimum number of single-character insertions, deletions or
        substitutions turning *a* into *b*.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,        # deletion
                current[j - 1] + 1,     # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def terminal_length(text: str) -> int:
    """Count characters outside placeholders, ignoring whitespace and punctuation."""
    return len(_NON_TERMINAL_RE.sub("", text))


def reformat_compact_date(text: str) -> str:
    """Rewrite the first ``YYYYMMDD`` run in *text* as ``DD.MM.YYYY``."""
    return _COMPACT_DATE_RE.sub(r"\3.\2.\1", text, count=1)


def reformat_date(text: str) -> str | None:
    """Reorder a year-first date with any separators into ``DD.MM.YYYY``.

    Returns None when *text* has no recognisable year-month-day sequence.
    """
    m = _LOOSE_DATE_RE.search(text)
    if not m:
        return None
    return f"{m.group(3)}.{m.group(2)}.{m.group(1)}"


def expand_backrefs(template: str, match: re.Match[str]) -> str:
    """Expand ``$1``/``$&``/``$$`` references in *template* against *match*.

    Mirrors the replacement-string conventions users write in rule
    formulas. Backslashes in *template* are kept literally.
    """
    groups = match.re.groups

    def _sub(ref: re.Match[str]) -> str:
        token = ref.group(1)
        if token == "$":
            return "$"
        if token == "&":
            return match.group(0)
        index = int(token)
        if 0 < index <= groups:
            return match.group(index) or ""
        # "$12" with fewer than 12 groups means group 1 followed by "2"
        if len(token) == 2 and 0 < int(token[0]) <= groups:
            return (match.group(int(token[0])) or "") + token[1]
        return ref.group(0)

    return _BACKREF_RE.sub(_sub, template)
