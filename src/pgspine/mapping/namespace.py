"""Run one namespace query and turn its rows into samples."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pgspine.core.errors import CollectorError, ColumnParseError
from pgspine.core.instance import DRIVER_ERRORS, SerializedConnection
from pgspine.core.sink import HistogramValue, MetricSample, ValueType
from pgspine.mapping.coercion import db_to_float, db_to_string, db_to_uint
from pgspine.mapping.descriptors import MetricMap, MetricMapNamespace


def namespace_query(namespace: str, query_overrides: Mapping[str, str]) -> str:
    """The SQL for ``namespace``; ``""`` means the metric space is disabled."""
    if namespace in query_overrides:
        return query_overrides[namespace]
    return f"SELECT * FROM {namespace};"


def _parse_error(namespace: str, column: str, message: str) -> ColumnParseError:
    return ColumnParseError(f"{message}: {namespace} {column}").with_context(namespace=namespace, column=column)


def _histogram_sample(
    metric_map: MetricMap,
    namespace: str,
    column: str,
    row: Mapping[str, Any],
    labels: tuple[tuple[str, str], ...],
) -> MetricSample | ColumnParseError:
    bounds = row[column]
    if not isinstance(bounds, (list, tuple)):
        return _parse_error(namespace, column, "Error retrieving buckets")

    if column + "_bucket" not in row:
        return _parse_error(namespace, column + "_bucket", "Missing column")
    counts = row[column + "_bucket"]
    if not isinstance(counts, (list, tuple)):
        return _parse_error(namespace, column + "_bucket", "Error retrieving bucket values")

    buckets: list[tuple[float, int]] = []
    for bound, count in zip(bounds, counts):
        bound_value, bound_ok = db_to_float(bound)
        count_value, count_ok = db_to_uint(count)
        if not bound_ok or not count_ok:
            return _parse_error(namespace, column, "Unexpected error parsing bucket")
        buckets.append((bound_value, count_value))

    if column + "_sum" not in row:
        return _parse_error(namespace, column + "_sum", "Missing column")
    total, ok = db_to_float(row[column + "_sum"])
    if not ok:
        return _parse_error(namespace, column + "_sum", "Unexpected error parsing column")

    if column + "_count" not in row:
        return _parse_error(namespace, column + "_count", "Missing column")
    count, ok = db_to_uint(row[column + "_count"])
    if not ok:
        return _parse_error(namespace, column + "_count", "Unexpected error parsing column")

    return MetricSample(
        name=metric_map.name,
        documentation=metric_map.description,
        value_type=ValueType.HISTOGRAM,
        labels=labels,
        histogram=HistogramValue(tuple(sorted(buckets)), total, count),
    )


def rows_to_samples(
    mapping: MetricMapNamespace,
    rows: Sequence[Mapping[str, Any]],
) -> tuple[list[MetricSample], list[ColumnParseError]]:
    """Convert result rows. Returns the samples and the non-fatal errors."""
    samples: list[MetricSample] = []
    errors: list[ColumnParseError] = []
    unknown_help = f"Unknown metric from {mapping.namespace}"

    for row in rows:
        row = dict(row.items())
        labels = tuple((label, db_to_string(row.get(label))[0]) for label in mapping.label_columns)

        for column, value in row.items():
            metric_map = mapping.column_mappings.get(column)

            if metric_map is None:
                number, ok = db_to_float(value)
                if not ok:
                    errors.append(_parse_error(mapping.namespace, column, "Unparseable column type - discarding"))
                    continue
                samples.append(
                    MetricSample(
                        name=f"{mapping.metric_namespace}_{column}",
                        documentation=unknown_help,
                        value_type=ValueType.UNTYPED,
                        labels=labels,
                        value=number,
                    )
                )
                continue

            if metric_map.discard:
                continue

            if metric_map.is_histogram:
                result = _histogram_sample(metric_map, mapping.namespace, column, row, labels)
                if isinstance(result, ColumnParseError):
                    errors.append(result)
                else:
                    samples.append(result)
                continue

            number, ok = metric_map.conversion(value)
            if not ok:
                errors.append(_parse_error(mapping.namespace, column, "Unexpected error parsing column"))
                continue
            samples.append(
                MetricSample(
                    name=metric_map.name,
                    documentation=metric_map.description,
                    value_type=metric_map.value_type,
                    labels=labels,
                    value=number,
                )
            )

    return samples, errors


async def query_namespace_mapping(
    db: SerializedConnection,
    mapping: MetricMapNamespace,
    query_overrides: Mapping[str, str],
    *,
    timeout: float | None = None,
) -> tuple[list[MetricSample], list[ColumnParseError]]:
    """Query one namespace.

    Raises:
        CollectorError: if the query itself fails
    """
    query = namespace_query(mapping.namespace, query_overrides)
    if not query:
        return [], []

    try:
        rows = await db.fetch(query, timeout=timeout)
    except DRIVER_ERRORS as exc:
        raise CollectorError(f"Error running query on database: {mapping.namespace} {exc}", cause=exc).with_context(
            namespace=mapping.namespace
        ) from exc

    return rows_to_samples(mapping, rows)


__all__ = ["namespace_query", "rows_to_samples", "query_namespace_mapping"]
