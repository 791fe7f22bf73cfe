#!/usr/bin/env python3
"""Learn ``equal`` rules from filled example documents.

Input is a JSON object mapping document names to their filled fields::

    {"antrag_1.pdf": {"f.vorname.1": "Anton", "name": "Berlinger"}, ...}

Values shared by at least ``rule_threshold`` documents (engine config,
overridable with --min-documents) become rules owned by --owner.

Usage:
    python3 scripts/learn_rules.py --documents filled.json --owner PVB \
      --output rules/pvb.json
    python3 scripts/learn_rules.py --documents filled.json --owner PVB \
      --rules rules/pvb.json --output rules/pvb.json --config engine.json

Writes the owner's rules (existing plus learned) to --output and a JSON
summary to stdout.
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
from quickfill.io_utils import load_json, load_rule_set, save_rule_set
from quickfill.learning import infer_rules
from quickfill.rule_store import RuleStore

log = logging.getLogger("learn_rules")


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def _filled_documents(payload: Any) -> dict[str, dict[str, str]]:
    if not isinstance(payload, dict):
        raise ValueError("Documents file must hold a JSON object of document -> fields")
    documents: dict[str, dict[str, str]] = {}
    for name, fields in payload.items():
        if not isinstance(fields, dict):
            log.warning("Skipping %s: fields are not an object", name)
            continue
        documents[name] = {k: v for k, v in fields.items() if isinstance(v, str)}
    return documents


def learn(
    documents: dict[str, dict[str, str]],
    *,
    owner: str,
    config: EngineConfig,
    existing: list[dict[str, Any]] | None = None,
    min_documents: int | None = None,
) -> tuple[RuleStore, list[str]]:
    """Learn rules into a fresh store seeded with *existing* owner records."""
    store = RuleStore(similar_threshold=config.default_similar_threshold)
    if existing:
        store.load_records(existing, owner)
    created = infer_rules(
        documents,
        owner=owner,
        store=store,
        min_documents=min_documents or config.rule_threshold,
        ignore_fields=config.ignore_fields,
    )
    return store, [r.id for r in created]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Learn equal rules from filled example documents.",
    )
    parser.add_argument("--documents", required=True, type=Path, help="Filled documents JSON")
    parser.add_argument("--owner", required=True, help="Owner (profile name) of learned rules")
    parser.add_argument("--output", required=True, type=Path, help="Rule set JSON/JSONL to write")
    parser.add_argument("--rules", type=Path, default=None, help="Existing rules of the owner")
    parser.add_argument("--config", type=Path, default=None, help="Engine config JSON file")
    parser.add_argument(
        "--min-documents", type=int, default=None,
        help="Override rule_threshold from the config",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    for label, path in (("Documents", args.documents), ("Rule set", args.rules),
                        ("Config", args.config)):
        if path is not None and not path.exists():
            log.error("%s not found: %s", label, path)
            sys.exit(1)

    config = load_engine_config(args.config) if args.config else EngineConfig()
    existing = load_rule_set(args.rules) if args.rules else None
    if isinstance(existing, dict):
        existing = existing.get(args.owner, [])

    store, created = learn(
        _filled_documents(load_json(args.documents)),
        owner=args.owner,
        config=config,
        existing=existing,
        min_documents=args.min_documents,
    )
    records = store.to_records(lambda r: r.owner == args.owner)
    save_rule_set(records, args.output)
    log.info("Wrote %d rules to %s", len(records), args.output)
    dump_json({"owner": args.owner, "learned": created, "total": len(records)})


if __name__ == "__main__":
    main()
