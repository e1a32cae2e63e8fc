"""
Resolve namespace definitions into metric descriptors for one server version.

Manifesto:
    Column definitions are written once and apply to every server version.
    What a column *means* on a given server is decided here, once per
    version, producing immutable :class:`MetricMap` entries that the query
    path only has to look up.

Architecture:
    ::

        NamespaceDefinition ──┐
                              │ make_desc_map(version, definitions, prefix)
        server version ───────┤
                              ▼
        MetricMapNamespace
            ├── label_columns   LABEL columns supported on this version
            └── column_mappings column → MetricMap
                    ├── DISCARD / LABEL / unsupported → discard
                    ├── COUNTER / GAUGE               → db_to_float
                    ├── MAPPEDMETRIC                  → text lookup, gauge
                    ├── DURATION                      → <col>_milliseconds, gauge
                    └── HISTOGRAM                     → histogram + discarded
                                                        _bucket/_sum/_count

Tags:
    mapping, version-gating, descriptors, histogram, pgspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from packaging.version import Version

from pgspine.core.logging import get_logger
from pgspine.core.sink import ValueType
from pgspine.core.version import VersionRange
from pgspine.mapping.coercion import db_to_float, parse_duration
from pgspine.mapping.usage import ColumnMapping, ColumnUsage, NamespaceDefinition

logger = get_logger(__name__)

Conversion = Callable[[Any], tuple[float, bool]]

HISTOGRAM_SUFFIXES = ("_bucket", "_sum", "_count")


def _discard_conversion(_: Any) -> tuple[float, bool]:
    return math.nan, True


@dataclass(frozen=True)
class MetricMap:
    """How one result column becomes a sample on one server version."""

    discard: bool = False
    is_histogram: bool = False
    value_type: ValueType = ValueType.UNTYPED
    name: str = ""
    description: str = ""
    conversion: Conversion = _discard_conversion


DISCARDED = MetricMap(discard=True)
DISCARDED_HISTOGRAM_SIBLING = MetricMap(discard=True, is_histogram=True)


@dataclass(frozen=True)
class MetricMapNamespace:
    """A namespace resolved for one server version."""

    namespace: str  # name as queried
    metric_namespace: str  # name used as metric prefix
    label_columns: tuple[str, ...]
    column_mappings: dict[str, MetricMap] = field(default_factory=dict)
    master: bool = False
    cache_seconds: int = 0
    run_on_server: VersionRange | None = None


def metric_namespace_name(namespace: str, metric_prefix: str) -> str:
    """Swap the leading ``pg`` of a namespace for the configured prefix."""
    if metric_prefix != "pg" and namespace.startswith("pg"):
        return metric_prefix + namespace[2:]
    return namespace


def _mapped_conversion(mapping: Mapping[str, float]) -> Conversion:
    def convert(value: Any) -> tuple[float, bool]:
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if not isinstance(value, str) or value not in mapping:
            return math.nan, False
        return float(mapping[value]), True

    return convert


def _duration_conversion(column: str) -> Conversion:
    def convert(value: Any) -> tuple[float, bool]:
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if not isinstance(value, str):
            logger.error("mapping.duration_not_string", column=column, value_type=type(value).__name__)
            return math.nan, False
        if value == "-1":
            return math.nan, False
        try:
            return parse_duration(value), True
        except ValueError as exc:
            logger.error("mapping.duration_parse_failed", column=column, value=value, error=str(exc))
            return math.nan, False

    return convert


def _resolve_column(metric_namespace: str, column: str, mapping: ColumnMapping) -> dict[str, MetricMap]:
    """The MetricMap entries contributed by one supported column."""
    name = f"{metric_namespace}_{column}"
    usage = mapping.usage

    if usage in (ColumnUsage.DISCARD, ColumnUsage.LABEL):
        return {column: DISCARDED}

    if usage is ColumnUsage.COUNTER:
        return {column: MetricMap(value_type=ValueType.COUNTER, name=name, description=mapping.description, conversion=db_to_float)}

    if usage is ColumnUsage.GAUGE:
        return {column: MetricMap(value_type=ValueType.GAUGE, name=name, description=mapping.description, conversion=db_to_float)}

    if usage is ColumnUsage.MAPPEDMETRIC:
        return {
            column: MetricMap(
                value_type=ValueType.GAUGE,
                name=name,
                description=mapping.description,
                conversion=_mapped_conversion(dict(mapping.mapping)),
            )
        }

    if usage is ColumnUsage.DURATION:
        return {
            column: MetricMap(
                value_type=ValueType.GAUGE,
                name=f"{name}_milliseconds",
                description=mapping.description,
                conversion=_duration_conversion(column),
            )
        }

    if usage is ColumnUsage.HISTOGRAM:
        resolved = {
            column: MetricMap(
                is_histogram=True,
                value_type=ValueType.HISTOGRAM,
                name=name,
                description=mapping.description,
                conversion=db_to_float,
            )
        }
        for suffix in HISTOGRAM_SUFFIXES:
            resolved[column + suffix] = DISCARDED_HISTOGRAM_SIBLING
        return resolved

    raise ValueError(f"unhandled column usage {usage!r} for column {column!r}")


def make_namespace_map(
    version: Version,
    namespace: str,
    definition: NamespaceDefinition,
    metric_prefix: str = "pg",
) -> MetricMapNamespace:
    """Resolve one namespace for ``version``."""
    metric_namespace = metric_namespace_name(namespace, metric_prefix)
    label_columns = tuple(
        column
        for column, mapping in definition.column_mappings.items()
        if mapping.usage is ColumnUsage.LABEL and mapping.is_supported(version)
    )

    resolved: dict[str, MetricMap] = {}
    for column, mapping in definition.column_mappings.items():
        if not mapping.is_supported(version):
            logger.debug(
                "mapping.column_discarded_for_version",
                namespace=namespace,
                column=column,
                version=str(version),
                supported_versions=mapping.supported_versions.expression if mapping.supported_versions else None,
            )
            resolved[column] = DISCARDED
            if mapping.usage is ColumnUsage.HISTOGRAM:
                for suffix in HISTOGRAM_SUFFIXES:
                    resolved.setdefault(column + suffix, DISCARDED_HISTOGRAM_SIBLING)
            continue

        for key, metric_map in _resolve_column(metric_namespace, column, mapping).items():
            # an explicit mapping of a sibling column wins over the implicit one
            if key != column and key in definition.column_mappings:
                continue
            resolved[key] = metric_map

    return MetricMapNamespace(
        namespace=namespace,
        metric_namespace=metric_namespace,
        label_columns=label_columns,
        column_mappings=resolved,
        master=definition.master,
        cache_seconds=definition.cache_seconds,
        run_on_server=definition.run_on_server,
    )


def make_desc_map(
    version: Version,
    definitions: Mapping[str, NamespaceDefinition],
    metric_prefix: str = "pg",
) -> dict[str, MetricMapNamespace]:
    """Resolve every namespace definition for ``version``."""
    return {
        namespace: make_namespace_map(version, namespace, definition, metric_prefix)
        for namespace, definition in definitions.items()
    }


__all__ = [
    "MetricMap",
    "MetricMapNamespace",
    "make_desc_map",
    "make_namespace_map",
    "metric_namespace_name",
    "HISTOGRAM_SUFFIXES",
]
