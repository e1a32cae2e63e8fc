"""
The namespace collector: runs every mapped namespace query against a server.

Manifesto:
    Most of what the exporter reports is declarative. A namespace is a query
    plus a description of its columns, either built in or loaded from YAML.
    This collector resolves the active definitions for the server's version
    once, then runs each namespace through the mapping engine on every
    scrape.

Architecture:
    ::

        QueryLibrary.current ──┐
                               │ _resolve(version)   cached per version,
        instance.version ──────┤                     dropped when the
                               ▼                     library reloads
        (desc map, query override map)
              │
              │ per namespace, in definition order
              ├── master only and not master       → skip
              ├── runonserver does not match       → skip
              ├── cache_seconds and fresh entry    → reuse samples
              └── query_namespace_mapping()        → samples + non-fatal errors
              │
              ▼
        sink  + pg_static{version, short_version} 1

Failure semantics:
    A namespace whose query fails is recorded and the remaining namespaces
    still run. After the loop the collector raises one CollectorError naming
    every failed namespace. Column level errors are logged at info.

Tags:
    collectors, namespaces, mapping, caching, pgspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from packaging.version import Version

from pgspine.collectors.base import CollectorConfig, ScrapeContext
from pgspine.core.errors import CollectorError, ScrapeSetupError
from pgspine.core.instance import Instance
from pgspine.core.sink import MetricSample, MetricSink, ValueType
from pgspine.mapping.descriptors import MetricMapNamespace, make_desc_map, metric_namespace_name
from pgspine.mapping.namespace import query_namespace_mapping
from pgspine.mapping.overrides import make_query_override_map
from pgspine.mapping.user_queries import QueryLibrary, QuerySet


@dataclass(frozen=True)
class ResolvedQueries:
    """Everything the collector needs for one server version."""

    desc_map: dict[str, MetricMapNamespace]
    query_overrides: dict[str, str]


@dataclass
class CachedResult:
    collected_at: float  # time.monotonic() value
    samples: list[MetricSample]


class NamespaceCollector:
    """Runs the built-in and user namespace queries."""

    def __init__(self, config: CollectorConfig, library: QueryLibrary, *, metric_prefix: str = "pg"):
        self.logger = config.logger
        self.library = library
        self.metric_prefix = metric_prefix
        self._lock = threading.Lock()
        self._query_set: QuerySet | None = None
        self._resolved: dict[Version, ResolvedQueries] = {}
        self._cache: dict[tuple[str, str], CachedResult] = {}

    def resolve(self, version: Version) -> ResolvedQueries:
        """Descriptors and query texts for ``version``."""
        query_set = self.library.current
        with self._lock:
            if query_set is not self._query_set:
                # the library was reloaded
                self._query_set = query_set
                self._resolved.clear()
                self._cache.clear()
            resolved = self._resolved.get(version)
            if resolved is None:
                self.logger.debug("namespaces.resolving", version=str(version), namespaces=len(query_set))
                resolved = ResolvedQueries(
                    desc_map=make_desc_map(version, query_set.definitions, self.metric_prefix),
                    query_overrides=make_query_override_map(version, query_set.overrides),
                )
                self._resolved[version] = resolved
            return resolved

    def _cached(self, key: tuple[str, str], ttl: int) -> list[MetricSample] | None:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None or time.monotonic() - entry.collected_at > ttl:
            return None
        return entry.samples

    def _store(self, key: tuple[str, str], samples: list[MetricSample]) -> None:
        with self._lock:
            self._cache[key] = CachedResult(time.monotonic(), samples)

    async def update(self, ctx: ScrapeContext, instance: Instance, sink: MetricSink) -> None:
        version = instance.version
        if version is None:
            raise ScrapeSetupError("namespace collector needs a detected server version").with_context(
                server=instance.server
            )

        resolved = self.resolve(version)
        db = instance.get_db()
        failed: list[str] = []

        for namespace, mapping in resolved.desc_map.items():
            if mapping.master and not instance.master:
                self.logger.debug("namespaces.skip_not_master", namespace=namespace)
                continue
            if mapping.run_on_server is not None and not mapping.run_on_server(version):
                self.logger.debug(
                    "namespaces.skip_version",
                    namespace=namespace,
                    version=str(version),
                    runonserver=mapping.run_on_server.expression,
                )
                continue

            key = (instance.dsn_text, namespace)
            if mapping.cache_seconds > 0:
                cached = self._cached(key, mapping.cache_seconds)
                if cached is not None:
                    sink.extend(cached)
                    continue

            try:
                samples, errors = await query_namespace_mapping(
                    db, mapping, resolved.query_overrides, timeout=ctx.remaining()
                )
            except CollectorError as exc:
                self.logger.error("namespaces.query_failed", namespace=namespace, error=exc.message)
                failed.append(namespace)
                continue

            for error in errors:
                self.logger.info("namespaces.column_error", namespace=namespace, error=error.message)
            if mapping.cache_seconds > 0:
                self._store(key, samples)
            sink.extend(samples)

        sink.emit(
            metric_namespace_name("pg_static", self.metric_prefix),
            "Version string as reported by postgres",
            1.0,
            value_type=ValueType.UNTYPED,
            labels={"version": instance.version_string, "short_version": str(version)},
        )

        if failed:
            raise CollectorError(f"queries failed for namespace(s): {', '.join(failed)}").with_context(
                server=instance.server
            )


__all__ = ["NamespaceCollector", "ResolvedQueries"]
