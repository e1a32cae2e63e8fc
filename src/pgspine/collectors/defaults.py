"""The built-in collectors and their default enable state."""

from __future__ import annotations

from pgspine.collectors.base import CollectorConfig
from pgspine.collectors.database import DatabaseCollector
from pgspine.collectors.external import ExternalCollector, IntegerSource
from pgspine.collectors.namespaces import NamespaceCollector
from pgspine.collectors.postmaster import PostmasterCollector
from pgspine.collectors.registry import CollectorRegistry
from pgspine.collectors.settings import SettingsCollector
from pgspine.collectors.stat_statements import StatStatementsCollector
from pgspine.core.settings import ExporterSettings
from pgspine.mapping.user_queries import QueryLibrary


def create_default_registry(
    settings: ExporterSettings,
    library: QueryLibrary | None = None,
    *,
    capacity_source: IntegerSource | None = None,
    connections_source: IntegerSource | None = None,
) -> CollectorRegistry:
    """Register the built-in collectors and apply the operator overrides.

    Raises:
        InvalidConfigError: if an override names an unknown collector
    """
    if library is None:
        library = QueryLibrary(settings.query_file_paths(), include_builtin=not settings.disable_default_metrics)

    registry = CollectorRegistry()

    def namespaces(config: CollectorConfig) -> NamespaceCollector:
        return NamespaceCollector(config, library, metric_prefix=settings.metric_prefix)

    def stat_statements(config: CollectorConfig) -> StatStatementsCollector:
        return StatStatementsCollector(
            config,
            include_query=settings.stat_statements_include_query,
            query_length=settings.stat_statements_query_length,
        )

    def external(config: CollectorConfig) -> ExternalCollector:
        return ExternalCollector(config, capacity=capacity_source, connections=connections_source)

    registry.register("namespaces", True, namespaces)
    registry.register("settings", not settings.disable_settings_metrics, SettingsCollector)
    registry.register("database", True, DatabaseCollector)
    registry.register("postmaster", False, PostmasterCollector)
    registry.register("stat_statements", False, stat_statements)
    registry.register("external", False, external)

    registry.configure(
        enable=settings.enabled_collector_list,
        disable=settings.disabled_collector_list,
        disable_defaults=settings.disable_default_collectors,
    )
    return registry


__all__ = ["create_default_registry"]
