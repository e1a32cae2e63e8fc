"""
The Exporter: multi-target local scrapes, bounded probes and reloads.

Manifesto:
    The HTTP layer should only translate requests and responses. Everything
    that decides *what* is scraped lives here: which DSNs are targets, which
    collectors run, which labels every sample carries and how the exporter's
    own health gauges move.

Architecture:
    ::

        Exporter
          ├── .load()              strict startup: query files, config file
          ├── .targets()           configured DSNs, or discovery
          ├── .scrape_local()      every target concurrently → MetricSink
          │       ├── server const label when more than one target
          │       └── pg_up / pg_exporter_* gauges
          ├── .probe_target()      one ad-hoc target, semaphore bounded
          ├── .reload()            config file + query files, lenient
          ├── .render(sink)        self-metrics + sink, text format 0.0.4
          └── .close()             persistent connections

Tags:
    exporter, orchestration, multi-target, probe, reload, pgspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from typing import Any

from prometheus_client import CollectorRegistry as PrometheusRegistry
from prometheus_client import generate_latest

from pgspine.collectors.base import Collector, ScrapeContext
from pgspine.collectors.defaults import create_default_registry
from pgspine.collectors.external import IntegerSource
from pgspine.collectors.registry import CollectorRegistry
from pgspine.core.config import ConfigHandler
from pgspine.core.datasource import get_data_sources
from pgspine.core.dsn import loggable_dsn
from pgspine.core.errors import ConfigError, RequestError, ScrapeSetupError
from pgspine.core.instance import Instance
from pgspine.core.logging import LogContext, get_logger
from pgspine.core.settings import ExporterSettings
from pgspine.core.sink import MetricSink
from pgspine.mapping.user_queries import QueryLibrary
from pgspine.observability.metrics import (
    EXPORTER_REGISTRY,
    last_scrape_duration_gauge,
    last_scrape_error_gauge,
    scrapes_total_counter,
    up_gauge,
)
from pgspine.orchestration.discovery import discover_database_dsns
from pgspine.orchestration.scrape import ScrapeOrchestrator, ScrapeResult, probe

logger = get_logger(__name__)


class Exporter:
    """Everything one exporter process scrapes."""

    def __init__(
        self,
        settings: ExporterSettings,
        *,
        dsns: Iterable[str] | None = None,
        library: QueryLibrary | None = None,
        registry: CollectorRegistry | None = None,
        config_handler: ConfigHandler | None = None,
        instance_factory: Callable[[str], Instance] = Instance,
        capacity_source: IntegerSource | None = None,
        connections_source: IntegerSource | None = None,
    ):
        self.settings = settings
        self.dsns = list(dsns) if dsns is not None else get_data_sources()
        self.library = library or QueryLibrary(
            settings.query_file_paths(), include_builtin=not settings.disable_default_metrics
        )
        self.registry = registry or create_default_registry(
            settings, self.library, capacity_source=capacity_source, connections_source=connections_source
        )
        self.config_handler = config_handler or ConfigHandler()
        self.instance_factory = instance_factory
        self.orchestrator = ScrapeOrchestrator(persistent=settings.persistent_connections)
        self._instances: dict[str, Instance] = {}
        self._probe_semaphore = asyncio.Semaphore(settings.max_connections)
        self._scrape_lock = asyncio.Lock()

    # ── Lifecycle ────────────────────────────────────────────────────

    def load(self) -> None:
        """Load query files and the config file. Any failure is fatal.

        Raises:
            ConfigError: on a missing DSN, bad query file or bad config file
        """
        if not self.dsns:
            raise ConfigError("no data source configured; set DATA_SOURCE_NAME or DATA_SOURCE_URI")
        self.library.load()
        if self.settings.config_file is not None:
            self.config_handler.reload(self.settings.config_file)
        logger.info(
            "exporter.loaded",
            targets=[loggable_dsn(dsn) for dsn in self.dsns],
            namespaces=len(self.library.current),
            collectors=[r.name for r in self.registry.registrations() if r.enabled],
        )

    def reload(self) -> None:
        """Reload the config file and query files.

        Query files that fail keep their previous definitions.

        Raises:
            ConfigError: if the config file fails to load
        """
        self.library.reload()
        if self.settings.config_file is not None:
            self.config_handler.reload(self.settings.config_file)

    async def close(self) -> None:
        instances, self._instances = list(self._instances.values()), {}
        for instance in instances:
            await instance.close()

    # ── Local scrape ─────────────────────────────────────────────────

    async def targets(self, timeout: float | None = None) -> list[tuple[str, bool]]:
        """``(dsn, master)`` pairs for the next local scrape.

        Without discovery every configured DSN is a master. With discovery
        only the first configured DSN is.
        """
        if not self.settings.auto_discover_databases:
            return [(dsn, True) for dsn in dict.fromkeys(self.dsns)]
        discovered = await discover_database_dsns(
            self.dsns,
            include=self.settings.include_database_list,
            exclude=self.settings.exclude_database_list,
            timeout=timeout,
            instance_factory=self.instance_factory,
        )
        first = self.dsns[0] if self.dsns else None
        return [(dsn, dsn == first) for dsn in discovered]

    def _instance(self, dsn: str, master: bool) -> Instance:
        if not self.settings.persistent_connections:
            instance = self.instance_factory(dsn)
            instance.master = master
            return instance
        instance = self._instances.get(dsn)
        if instance is None:
            instance = self.instance_factory(dsn)
            self._instances[dsn] = instance
        instance.master = master
        return instance

    async def scrape_local(self, filters: Iterable[str] | None = None, timeout: float | None = None) -> MetricSink:
        """Scrape every target.

        Raises:
            RequestError: if a filter names an unknown or disabled collector
        """
        collectors = self.registry.build_enabled_set(filters, self.settings.exclude_database_list)
        ctx = ScrapeContext.with_timeout(timeout or self.settings.scrape_timeout)
        sink = MetricSink(self.settings.constant_label_map)

        async with self._scrape_lock:
            started = time.monotonic()
            targets = await self.targets(timeout=ctx.remaining())
            multi = len(targets) > 1
            results = await asyncio.gather(
                *[self._scrape_target(dsn, master, collectors, sink, ctx, multi) for dsn, master in targets]
            )

            healthy = bool(results) and all(result is not None for result in results)
            up_gauge.set(1 if healthy else 0)
            last_scrape_error_gauge.set(0 if healthy else 1)
            scrapes_total_counter.inc()
            last_scrape_duration_gauge.set(time.monotonic() - started)

        return sink

    async def _scrape_target(
        self,
        dsn: str,
        master: bool,
        collectors: dict[str, Collector],
        sink: MetricSink,
        ctx: ScrapeContext,
        multi: bool,
    ) -> ScrapeResult | None:
        try:
            instance = self._instance(dsn, master)
        except ConfigError as exc:
            logger.error("exporter.bad_dsn", dsn=loggable_dsn(dsn), error=exc.message)
            return None

        target_sink = sink.child({"server": instance.server}) if multi else sink
        async with LogContext(target=instance.server):
            try:
                result = await self.orchestrator.scrape(instance, collectors, target_sink, ctx)
            except ScrapeSetupError as exc:
                logger.error("exporter.target_down", dsn=loggable_dsn(dsn), error=exc.message)
                return None

        if self.settings.persistent_connections and result.failed and not result.succeeded:
            # reconnect next time
            await instance.close()
        return result

    # ── Probe ────────────────────────────────────────────────────────

    async def probe_target(
        self,
        target: str,
        *,
        auth_module: str | None = None,
        filters: Iterable[str] | None = None,
        timeout: float | None = None,
    ) -> MetricSink:
        """Scrape an arbitrary target through a fresh connection.

        Raises:
            RequestError: missing target, unknown auth module or bad filter
            ProbeTimeoutError: no free probe slot before the deadline
            ScrapeSetupError: the target could not be set up
        """
        if not target:
            raise RequestError("target is required")

        dsn = target
        if auth_module:
            module = self.config_handler.auth_module(auth_module)
            if module is None:
                raise RequestError(f"auth_module {auth_module} not found")
            if module.type == "userpass" and not (module.userpass.username and module.userpass.password):
                raise RequestError(f"auth_module {auth_module} has no username or password")
            try:
                dsn = module.configure_target(target).connection_string()
            except ConfigError as exc:
                raise RequestError(f"failed to configure target: {exc.message}", cause=exc) from exc

        collectors = self.registry.build_enabled_set(filters, self.settings.exclude_database_list)
        ctx = ScrapeContext.with_timeout(timeout or self.settings.scrape_timeout)
        sink = MetricSink(self.settings.constant_label_map)

        def factory(text: str) -> Instance:
            try:
                return self.instance_factory(text)
            except ConfigError as exc:
                raise RequestError(f"failed to configure target: {exc.message}", cause=exc) from exc

        await probe(dsn, collectors, ctx, self._probe_semaphore, sink=sink, instance_factory=factory)
        return sink

    # ── Rendering ────────────────────────────────────────────────────

    @staticmethod
    def render(sink: MetricSink, *, include_self_metrics: bool = True) -> bytes:
        """Prometheus text exposition of ``sink``, after the exporter's own metrics."""
        registry = PrometheusRegistry(auto_describe=False)
        registry.register(sink)
        output = generate_latest(registry)
        if include_self_metrics:
            output = generate_latest(EXPORTER_REGISTRY) + output
        return output

    def describe(self) -> dict[str, Any]:
        return {
            "targets": [loggable_dsn(dsn) for dsn in self.dsns],
            "collectors": {r.name: r.enabled for r in self.registry.registrations()},
            "namespaces": sorted(self.library.current.definitions),
        }


__all__ = ["Exporter"]
