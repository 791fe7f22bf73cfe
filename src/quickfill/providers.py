"""Registry of named computed-value providers.

Rules and environment defaults may carry a ``Computed("today")`` value
instead of a literal string. The registry maps such names to callables
receiving the key of the field being resolved. Persisted rule sets store
only the name, so a rule set never carries executable code.
"""
from __future__ import annotations

from typing import TypeAlias

import logging
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta

log = logging.getLogger(__name__)

Provider: TypeAlias = Callable[[str], str]
Clock: TypeAlias = Callable[[], datetime]


class UnknownProviderError(KeyError):
    """Raised when a computed value names a provider that is not registered."""


class ProviderRegistry:
    """Name -> provider mapping with alias support."""

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}

    def register(self, name: str, provider: Provider, *aliases: str) -> None:
        for key in (name, *aliases):
            if key in self._providers:
                log.debug("Replacing computed-value provider %r", key)
            self._providers[key] = provider

    def get(self, name: str) -> Provider:
        try:
            return self._providers[name]
        except KeyError:
            raise UnknownProviderError(name) from None

    def render(self, name: str, key: str) -> str:
        """Call provider *name* for the field *key*."""
        return self.get(name)(key)

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())


def _date(moment: datetime) -> str:
    return moment.strftime("%d.%m.%Y")


def _time(moment: datetime) -> str:
    return moment.strftime("%H:%M:%S")


def default_registry(clock: Clock = datetime.now) -> ProviderRegistry:
    """Registry with the built-in date/time providers.

    ``today`` -> ``19.07.2024``, ``today_plus_2_days`` -> ``21.07.2024``,
    ``now`` -> ``19.7.2024, 14:48:56``, ``time_of_day`` -> ``14:48:56``,
    ``field_name`` -> the key itself. German names are registered as aliases.
    """
    registry = ProviderRegistry()
    registry.register("today", lambda _key: _date(clock()), "heute")
    registry.register(
        "today_plus_2_days",
        lambda _key: _date(clock() + timedelta(days=2)),
        "heutePlus2Tage",
    )

    def _now(_key: str) -> str:
        moment = clock()
        return f"{moment.day}.{moment.month}.{moment.year}, {_time(moment)}"

    registry.register("now", _now, "jetzt")
    registry.register("time_of_day", lambda _key: _time(clock()), "uhrzeit")
    registry.register("field_name", lambda key: key, "ID")
    return registry
