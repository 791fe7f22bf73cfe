#!/usr/bin/env python3
"""Resolve form-field placeholders against a rule set.

Loads a rule set (JSON list, ``{owner: [records]}`` mapping, or ``.jsonl``),
optionally an engine config, and resolves each PLACEHOLDER. A bare name is
treated as the field key; anything else is resolved as free text.

Usage::

    python3 scripts/resolve_fields.py --rules rules.json f.vorname.1 f.ortdatum.1
    python3 scripts/resolve_fields.py --rules rules.json --subject "Anton Berlinger" \
      --document antrag_123.pdf --best --json 'Geboren am ${f.gebdat.1}$'

Plain output is one ``key = value`` line per placeholder on stdout; with
``--json`` a JSON array of ``{placeholder, value, rule_chain}`` objects.
Unresolved placeholders are reported with a null value.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

import orjson

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from quickfill.config import EngineConfig, load_engine_config
from quickfill.engine import FieldRef, ResolutionContext, ResolutionEngine
from quickfill.io_utils import load_rule_set
from quickfill.placeholders import OPEN, single_variable
from quickfill.rule_store import RuleStore
from quickfill.rules import Subject

log = logging.getLogger("resolve_fields")


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def build_engine(
    rules_path: Path,
    *,
    config_path: Path | None = None,
    subject: str | None = None,
    document: str | None = None,
) -> ResolutionEngine:
    config = load_engine_config(config_path) if config_path else EngineConfig()
    store = RuleStore(similar_threshold=config.default_similar_threshold)
    engine = ResolutionEngine(
        store,
        ResolutionContext(
            active_subject=Subject(subject) if subject else None,
            document=document,
        ),
        config=config,
    )
    added = store.load_records(load_rule_set(rules_path), providers=engine.providers)
    log.info("Loaded %d rules from %s", len(added), rules_path)
    if subject:
        store.instantiate_templates(Subject(subject))
    return engine


def resolve_placeholders(
    engine: ResolutionEngine,
    placeholders: list[str],
    *,
    best: bool = False,
) -> list[dict[str, Any]]:
    """Resolve each placeholder; returns one result record per input."""
    results: list[dict[str, Any]] = []
    for placeholder in placeholders:
        source: str | FieldRef = placeholder if OPEN in placeholder else FieldRef(placeholder)
        value = engine.value_of(source) if best else engine.resolve_first(source)
        key = source.key if isinstance(source, FieldRef) else single_variable(placeholder) or placeholder
        reason = engine.reasons.get(key)
        results.append({
            "placeholder": placeholder,
            "value": value,
            "rule_chain": list(reason.rule_chain) if reason and value == reason.result else [],
        })
    return results


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Resolve form-field placeholders against a rule set.",
    )
    parser.add_argument("--rules", required=True, type=Path, help="Rule set JSON/JSONL file")
    parser.add_argument("--config", type=Path, default=None, help="Engine config JSON file")
    parser.add_argument("--document", default=None, help="Current document name (scope filter)")
    parser.add_argument("--subject", default=None, help="Active subject name")
    parser.add_argument(
        "--best", action="store_true",
        help="Fall back to the most complete partial value when nothing resolves fully",
    )
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text lines")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("placeholders", nargs="+", metavar="PLACEHOLDER")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    if not args.rules.exists():
        log.error("Rule set not found: %s", args.rules)
        sys.exit(1)
    if args.config is not None and not args.config.exists():
        log.error("Config not found: %s", args.config)
        sys.exit(1)

    engine = build_engine(
        args.rules,
        config_path=args.config,
        subject=args.subject,
        document=args.document,
    )
    results = resolve_placeholders(engine, args.placeholders, best=args.best)

    if args.json:
        dump_json(results)
    else:
        for row in results:
            value = row["value"] if row["value"] is not None else "<unresolved>"
            print(f"{row['placeholder']} = {value}")

    unresolved = sum(1 for row in results if row["value"] is None)
    if unresolved:
        log.info("%d of %d placeholders unresolved", unresolved, len(results))
    log.info(
        "Filled %d fields, %d characters",
        engine.stats.fields_filled, engine.stats.chars_filled,
    )


if __name__ == "__main__":
    main()
