"""Engine configuration: depth bound, thresholds and environment defaults.

Loaded from a JSON object such as::

    {
      "max_depth": 100,
      "default_similar_threshold": 5,
      "rule_threshold": 2,
      "defaults": {"heute": {"computed": "today"}, "firma": "ACME GmbH"},
      "ignore_fields": ["Unterschrift"]
    }

Keys starting with ``_`` are treated as comments and ignored.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import orjson

from quickfill.rules import Computed, RuleValue, value_from_record

log = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a configuration payload has an invalid value."""


def _builtin_defaults() -> dict[str, RuleValue]:
    return {
        "heute": Computed("today"),
        "heutePlus2Tage": Computed("today_plus_2_days"),
        "jetzt": Computed("now"),
        "uhrzeit": Computed("time_of_day"),
        "ID": Computed("field_name"),
    }


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunables shared by the store, the engine and rule learning."""

    max_depth: int = 100
    default_similar_threshold: int = 5
    rule_threshold: int = 2                      # min documents for learned rules
    defaults: dict[str, RuleValue] = field(default_factory=_builtin_defaults)
    ignore_fields: tuple[str, ...] = ()

    def with_defaults(self, **values: RuleValue) -> EngineConfig:
        """Copy with extra environment defaults merged in."""
        merged = dict(self.defaults)
        merged.update(values)
        return replace(self, defaults=merged)


def _positive_int(payload: dict[str, Any], key: str, fallback: int) -> int:
    raw = payload.get(key, fallback)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if raw < 1:
        raise ConfigError(f"{key} must be >= 1, got {raw}")
    return raw


def engine_config_from_dict(payload: dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from a decoded JSON object.

    Missing keys keep their built-in values. ``defaults`` entries are merged
    over the built-in defaults; a ``null`` entry removes a built-in one.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Config payload must be a JSON object, got {type(payload).__name__}")
    base = EngineConfig()
    unknown = sorted(
        k for k in payload
        if not k.startswith("_")
        and k not in {"max_depth", "default_similar_threshold", "rule_threshold",
                      "defaults", "ignore_fields"}
    )
    if unknown:
        log.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

    defaults = dict(base.defaults)
    raw_defaults = payload.get("defaults") or {}
    if not isinstance(raw_defaults, dict):
        raise ConfigError("defaults must be a JSON object")
    for key, raw in raw_defaults.items():
        if raw is None:
            defaults.pop(key, None)
            continue
        try:
            defaults[key] = value_from_record(raw)
        except ValueError as exc:
            raise ConfigError(f"Invalid default for {key!r}: {exc}") from exc

    ignore = payload.get("ignore_fields") or []
    if not isinstance(ignore, list) or not all(isinstance(f, str) for f in ignore):
        raise ConfigError("ignore_fields must be a list of strings")

    return EngineConfig(
        max_depth=_positive_int(payload, "max_depth", base.max_depth),
        default_similar_threshold=_positive_int(
            payload, "default_similar_threshold", base.default_similar_threshold,
        ),
        rule_threshold=_positive_int(payload, "rule_threshold", base.rule_threshold),
        defaults=defaults,
        ignore_fields=tuple(ignore),
    )


def load_engine_config(path: Path) -> EngineConfig:
    """Load an EngineConfig from a JSON file."""
    payload = orjson.loads(path.read_bytes())
    if not isinstance(payload, dict):
        raise ValueError(f"Config payload must be a JSON object: {path}")
    return engine_config_from_dict(payload)
