"""Infer ``equal`` rules from already filled example documents.

Every value that shows up in at least ``min_documents`` documents becomes
one rule mapping all field names that carried it to that value::

    {"a.pdf": {"name": "Anton", "vorname": "Anton"},
     "b.pdf": {"f.vorname.1": "Anton"}}
    -> equal "f.vorname.1, name, vorname" -> "Anton"
"""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping

from quickfill.rule_store import RuleStore
from quickfill.rules import Rule

log = logging.getLogger(__name__)

DEFAULT_MIN_DOCUMENTS = 2


def infer_rules(
    documents: Mapping[str, Mapping[str, str]],
    *,
    owner: str,
    store: RuleStore,
    min_documents: int | None = None,
    ignore_fields: Iterable[str] = (),
) -> list[Rule]:
    """Create one equal rule per value shared by enough documents.

    Args:
        documents: document name -> {field name: filled value}.
        owner: Owner tag (profile name) of the created rules.
        store: Store receiving the rules; duplicates are rejected there.
        min_documents: Minimum number of distinct documents a value must
            appear in. Defaults to 2.
        ignore_fields: Field names never learned from.

    Returns:
        The rules actually added, ordered by value.
    """
    threshold = DEFAULT_MIN_DOCUMENTS if min_documents is None else min_documents
    ignored = set(ignore_fields)

    fields_by_value: dict[str, set[str]] = defaultdict(set)
    documents_by_value: dict[str, set[str]] = defaultdict(set)
    for document, fields in documents.items():
        for name, value in fields.items():
            if not value or not value.strip() or name in ignored:
                continue
            fields_by_value[value].add(name)
            documents_by_value[value].add(document)

    created: list[Rule] = []
    for value in sorted(fields_by_value):
        seen_in = len(documents_by_value[value])
        if seen_in < threshold:
            log.debug("Skipping %r: seen in %d document(s)", value, seen_in)
            continue
        rule = store.create("equal", ", ".join(sorted(fields_by_value[value])), value, owner=owner)
        if rule is not None:
            created.append(rule)
    log.info(
        "Learned %d rules for %s from %d documents", len(created), owner, len(documents),
    )
    return created
