"""Collector Registry: name → factory, enable state and memoized instances.

Manifesto:
    Which collectors run is decided once, from startup configuration. A
    request may narrow that set with ``collect[]`` filters but never widen
    it. Collector objects are built lazily and then reused for the life of
    the registry, so a collector that pre-compiles queries or keeps a cache
    pays that cost once.

ARCHITECTURE
────────────
::

    CollectorRegistry
      ├── .register(name, default_enabled, factory)   startup, fail on duplicate
      ├── .configure(enable, disable, disable_defaults)
      ├── .build_enabled_set(filters, exclude_databases)
      │        └── factory(CollectorConfig) → Collector   memoized under a lock
      ├── .is_enabled(name) / .names() / .registrations()
      └── .clear_instances()

    create_default_registry(settings, ...)   built-in collectors, fixed order

Tags:
    collectors, registry, factory, memoization, pgspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from pgspine.collectors.base import Collector, CollectorConfig
from pgspine.core.errors import DisabledCollectorError, InvalidConfigError, UnknownCollectorError
from pgspine.core.logging import get_logger

logger = get_logger(__name__)

CollectorFactory = Callable[[CollectorConfig], Collector]


@dataclass
class CollectorRegistration:
    name: str
    default_enabled: bool
    factory: CollectorFactory
    enabled: bool
    explicitly_set: bool = False


class CollectorRegistry:
    """Injectable collector registry.

    Several registries may coexist, e.g. one per test.

    Example:
        >>> registry = CollectorRegistry()
        >>> registry.register("database", True, lambda config: DatabaseCollector(config))
        >>> collectors = registry.build_enabled_set()
    """

    def __init__(self):
        self._registrations: dict[str, CollectorRegistration] = {}
        self._instances: dict[str, Collector] = {}
        self._lock = threading.Lock()

    def register(self, name: str, default_enabled: bool, factory: CollectorFactory) -> None:
        """Register a collector type.

        Raises:
            ValueError: if ``name`` is already registered
        """
        if name in self._registrations:
            raise ValueError(f"collector {name!r} is already registered")
        self._registrations[name] = CollectorRegistration(
            name=name,
            default_enabled=default_enabled,
            factory=factory,
            enabled=default_enabled,
        )

    def configure(
        self,
        enable: Iterable[str] = (),
        disable: Iterable[str] = (),
        disable_defaults: bool = False,
    ) -> None:
        """Apply operator overrides. Call once at startup.

        Raises:
            InvalidConfigError: if a name is not registered
        """
        for names, state in ((enable, True), (disable, False)):
            for name in names:
                registration = self._registrations.get(name)
                if registration is None:
                    raise InvalidConfigError("collectors", name, f"unknown collector: {name}")
                registration.enabled = state
                registration.explicitly_set = True

        if disable_defaults:
            for registration in self._registrations.values():
                if not registration.explicitly_set:
                    registration.enabled = False

        logger.debug("collectors.configured", enabled=[r.name for r in self._registrations.values() if r.enabled])

    def build_enabled_set(
        self,
        filters: Iterable[str] | None = None,
        exclude_databases: Iterable[str] = (),
    ) -> dict[str, Collector]:
        """Materialize the collectors one scrape should run.

        Raises:
            UnknownCollectorError: a filter names an unregistered collector
            DisabledCollectorError: a filter names a disabled collector
        """
        wanted = [name for name in (filters or ()) if name]
        for name in wanted:
            registration = self._registrations.get(name)
            if registration is None:
                raise UnknownCollectorError(name)
            if not registration.enabled:
                raise DisabledCollectorError(name)

        excluded = list(exclude_databases)
        selected: dict[str, Collector] = {}
        for name, registration in self._registrations.items():
            if not registration.enabled:
                continue
            if wanted and name not in wanted:
                continue
            selected[name] = self._materialize(registration, excluded)
        return selected

    def _materialize(self, registration: CollectorRegistration, exclude_databases: list[str]) -> Collector:
        with self._lock:
            collector = self._instances.get(registration.name)
            if collector is None:
                config = CollectorConfig(
                    logger=logger.bind(collector=registration.name),
                    exclude_databases=exclude_databases,
                )
                collector = registration.factory(config)
                self._instances[registration.name] = collector
            return collector

    def is_enabled(self, name: str) -> bool:
        registration = self._registrations.get(name)
        return registration is not None and registration.enabled

    def has(self, name: str) -> bool:
        return name in self._registrations

    def names(self) -> list[str]:
        """Registered names in registration order."""
        return list(self._registrations)

    def registrations(self) -> list[CollectorRegistration]:
        return list(self._registrations.values())

    def clear_instances(self) -> None:
        """Drop memoized collectors so the next build constructs fresh ones."""
        with self._lock:
            self._instances.clear()


__all__ = ["CollectorRegistry", "CollectorRegistration", "CollectorFactory"]
