"""Core primitives shared by every other pgspine subpackage."""

from pgspine.core.errors import (
    CollectorError,
    ConfigError,
    ErrorKind,
    ExporterError,
    NoDataError,
    ScrapeSetupError,
    is_no_data,
)
from pgspine.core.instance import Instance
from pgspine.core.sink import MetricSample, MetricSink, ValueType

__all__ = [
    "CollectorError",
    "ConfigError",
    "ErrorKind",
    "ExporterError",
    "NoDataError",
    "ScrapeSetupError",
    "is_no_data",
    "Instance",
    "MetricSample",
    "MetricSink",
    "ValueType",
]
