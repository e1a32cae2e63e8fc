"""Metric sink: where collectors put the samples they produce.

A :class:`MetricSink` accumulates typed samples for one scrape and is itself a
``prometheus_client`` custom collector, so rendering a scrape is just::

    registry = CollectorRegistry()
    registry.register(sink)
    generate_latest(registry)

Samples with the same metric name are grouped into one metric family. The
sink's constant labels (``server``, operator supplied labels) are appended to
every sample.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum

from prometheus_client.core import (
    GaugeMetricFamily,
    HistogramMetricFamily,
    Metric,
    UnknownMetricFamily,
)
from prometheus_client.utils import floatToGoString


class ValueType(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    UNTYPED = "untyped"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class HistogramValue:
    """Bucket upper bound → cumulative count, plus sum and total count."""

    buckets: tuple[tuple[float, int], ...]
    sum: float
    count: int


@dataclass(frozen=True)
class MetricSample:
    """One sample of one metric, as produced by a collector."""

    name: str
    documentation: str
    value_type: ValueType
    labels: tuple[tuple[str, str], ...] = ()
    value: float = math.nan
    histogram: HistogramValue | None = None


@dataclass
class _Family:
    name: str
    documentation: str
    value_type: ValueType
    label_names: tuple[str, ...]
    samples: list[MetricSample] = field(default_factory=list)


class MetricSink:
    """Accumulates samples for one scrape of one or more targets."""

    def __init__(self, const_labels: Mapping[str, str] | None = None):
        self.const_labels: dict[str, str] = dict(const_labels or {})
        self._families: dict[str, _Family] = {}

    def child(self, const_labels: Mapping[str, str]) -> MetricSink:
        """A view that writes into this sink with extra constant labels."""
        view = MetricSink({**self.const_labels, **const_labels})
        view._families = self._families
        return view

    # ── Writing ──────────────────────────────────────────────────────────

    def emit(
        self,
        name: str,
        documentation: str,
        value: float,
        *,
        value_type: ValueType = ValueType.GAUGE,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Record one counter, gauge or untyped sample."""
        if value_type is ValueType.HISTOGRAM:
            raise ValueError("use emit_histogram() for histogram samples")
        self.add(MetricSample(name, documentation, value_type, tuple((labels or {}).items()), float(value)))

    def emit_histogram(
        self,
        name: str,
        documentation: str,
        buckets: Mapping[float, int],
        sum_value: float,
        count: int,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Record one histogram sample from cumulative bucket counts."""
        histogram = HistogramValue(tuple(sorted(buckets.items())), float(sum_value), int(count))
        self.add(MetricSample(name, documentation, ValueType.HISTOGRAM, tuple((labels or {}).items()), histogram=histogram))

    def add(self, sample: MetricSample) -> None:
        """Record a prepared sample, appending this sink's constant labels."""
        if self.const_labels:
            present = {key for key, _ in sample.labels}
            extra = tuple((k, v) for k, v in self.const_labels.items() if k not in present)
            sample = MetricSample(
                sample.name,
                sample.documentation,
                sample.value_type,
                sample.labels + extra,
                sample.value,
                sample.histogram,
            )

        label_names = tuple(key for key, _ in sample.labels)
        family = self._families.get(sample.name)
        if family is None:
            family = _Family(sample.name, sample.documentation, sample.value_type, label_names)
            self._families[sample.name] = family
        elif family.value_type is not sample.value_type:
            raise ValueError(
                f"metric {sample.name!r} emitted as {sample.value_type.value}, "
                f"previously {family.value_type.value}"
            )
        elif set(family.label_names) != set(label_names):
            raise ValueError(
                f"metric {sample.name!r} emitted with labels {label_names}, previously {family.label_names}"
            )
        family.samples.append(sample)

    def extend(self, samples: Iterable[MetricSample]) -> None:
        for sample in samples:
            self.add(sample)

    # ── Reading ──────────────────────────────────────────────────────────

    def samples(self, name: str | None = None) -> list[MetricSample]:
        """All samples, or those of one metric name."""
        if name is not None:
            family = self._families.get(name)
            return list(family.samples) if family else []
        return [s for family in self._families.values() for s in family.samples]

    def names(self) -> list[str]:
        return list(self._families)

    def __len__(self) -> int:
        return sum(len(family.samples) for family in self._families.values())

    def collect(self) -> Iterator[Metric]:
        """prometheus_client collector protocol."""
        for family in self._families.values():
            yield _to_metric_family(family)


def _to_metric_family(family: _Family) -> Metric:
    label_names = list(family.label_names)
    if family.value_type is ValueType.HISTOGRAM:
        metric: Metric = HistogramMetricFamily(family.name, family.documentation, labels=label_names)
        for sample in family.samples:
            assert sample.histogram is not None
            buckets = [(floatToGoString(bound), count) for bound, count in sample.histogram.buckets if not math.isinf(bound)]
            buckets.append(("+Inf", sample.histogram.count))
            metric.add_metric(_label_values(sample, label_names), buckets, sample.histogram.sum)
        return metric

    if family.value_type is ValueType.COUNTER:
        # samples keep the column name; the text format names the family <base>_total
        base = family.name[: -len("_total")] if family.name.endswith("_total") else family.name
        metric = Metric(base, family.documentation, "counter")
        for sample in family.samples:
            metric.add_sample(family.name, dict(zip(label_names, _label_values(sample, label_names))), sample.value)
        return metric

    if family.value_type is ValueType.GAUGE:
        metric = GaugeMetricFamily(family.name, family.documentation, labels=label_names)
    else:
        metric = UnknownMetricFamily(family.name, family.documentation, labels=label_names)
    for sample in family.samples:
        metric.add_metric(_label_values(sample, label_names), sample.value)
    return metric


def _label_values(sample: MetricSample, label_names: list[str]) -> list[str]:
    values = dict(sample.labels)
    return [values[name] for name in label_names]


__all__ = [
    "MetricSink",
    "MetricSample",
    "HistogramValue",
    "ValueType",
]
