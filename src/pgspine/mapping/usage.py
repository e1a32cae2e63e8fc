"""Column usage taxonomy and the definitions that describe a namespace.

A *namespace* is a table or view (``pg_stat_database``) whose rows become
metrics. Each result column is described by a :class:`ColumnMapping` telling
the engine whether it is a label, a metric of some kind, or ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from packaging.version import Version

from pgspine.core.version import VersionRange


class ColumnUsage(str, Enum):
    """How a result column is turned into metrics."""

    DISCARD = "DISCARD"  # ignore the column
    LABEL = "LABEL"  # use the column value as a label on the row's metrics
    COUNTER = "COUNTER"
    GAUGE = "GAUGE"
    MAPPEDMETRIC = "MAPPEDMETRIC"  # text value looked up in a mapping table
    DURATION = "DURATION"  # duration text such as "5s", exported in milliseconds
    HISTOGRAM = "HISTOGRAM"  # bucket bounds, with _bucket/_sum/_count siblings

    @classmethod
    def parse(cls, text: str) -> ColumnUsage:
        """Parse a usage name as written in a query file.

        Raises:
            ValueError: for anything that is not a known usage
        """
        try:
            return cls(text.strip().upper())
        except ValueError:
            raise ValueError(f"wrong ColumnUsage given: {text!r}") from None


@dataclass(frozen=True)
class ColumnMapping:
    """Describes one result column of a namespace."""

    usage: ColumnUsage
    description: str = ""
    mapping: dict[str, float] = field(default_factory=dict)  # MAPPEDMETRIC only
    supported_versions: VersionRange | None = None  # None means every version

    def is_supported(self, version: Version) -> bool:
        return self.supported_versions is None or self.supported_versions(version)


@dataclass(frozen=True)
class NamespaceDefinition:
    """Everything known about a namespace before a server version is known."""

    column_mappings: dict[str, ColumnMapping]  # ordered as defined
    master: bool = False  # only query on the master database
    cache_seconds: int = 0
    run_on_server: VersionRange | None = None


__all__ = ["ColumnUsage", "ColumnMapping", "NamespaceDefinition"]
