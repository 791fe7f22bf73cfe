"""I/O utilities for JSON rule sets and JSON Lines files.

orjson-based; rule sets are either a flat list of rule records or an
``{owner: [records]}`` mapping.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, TypeAlias

import orjson

RuleSet: TypeAlias = list[dict[str, Any]] | dict[str, list[dict[str, Any]]]


def load_json(path: Path) -> Any:
    """Load JSON from a file."""
    return orjson.loads(path.read_bytes())


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    opts = orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS if pretty else orjson.OPT_SORT_KEYS
    path.write_bytes(orjson.dumps(obj, option=opts))


def load_jsonl(path: Path) -> list[dict[str, Any]]:
    """Load a JSON Lines file (one JSON object per line). Blank lines skipped."""
    records: list[dict[str, Any]] = []
    for line in path.read_bytes().split(b"\n"):
        line = line.strip()
        if line:
            records.append(orjson.loads(line))
    return records


def save_jsonl(records: list[dict[str, Any]], path: Path) -> None:
    """Save a list of dicts as a JSON Lines file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [orjson.dumps(r, option=orjson.OPT_SORT_KEYS) for r in records]
    path.write_bytes(b"\n".join(lines) + b"\n" if lines else b"")


def load_rule_set(path: Path) -> RuleSet:
    """Load a rule set file; ``.jsonl`` files hold one record per line."""
    if path.suffix == ".jsonl":
        return load_jsonl(path)
    payload = load_json(path)
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        rules = payload.get("rules")
        if isinstance(rules, list):
            return rules
        if all(isinstance(v, list) for v in payload.values()):
            return payload
    raise ValueError(f"Rule set must be a list or an owner -> records mapping: {path}")


def save_rule_set(records: RuleSet, path: Path) -> None:
    if path.suffix == ".jsonl":
        if not isinstance(records, list):
            records = [
                {"owner": owner, **r}
                for owner, group in records.items()
                for r in group
            ]
        save_jsonl(records, path)
    else:
        save_json(records, path)
