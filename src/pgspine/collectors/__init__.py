"""Collectors: named units that turn queries against one server into samples."""

from pgspine.collectors.base import NAMESPACE, Collector, CollectorConfig, ScrapeContext, metric_name
from pgspine.collectors.defaults import create_default_registry
from pgspine.collectors.registry import CollectorRegistration, CollectorRegistry

__all__ = [
    "NAMESPACE",
    "Collector",
    "CollectorConfig",
    "ScrapeContext",
    "metric_name",
    "CollectorRegistry",
    "CollectorRegistration",
    "create_default_registry",
]
