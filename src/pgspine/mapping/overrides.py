"""Version-ranged query text per namespace.

A namespace may carry several :class:`QueryOverride` entries, each valid for a
range of server versions. For a given version at most one may match: ranges
inside a namespace must not overlap, which is checked when the overrides are
loaded rather than at scrape time.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from packaging.version import Version

from pgspine.core.errors import ErrorKind, InvalidConfigError
from pgspine.core.logging import get_logger
from pgspine.core.version import VersionRange, ranges_overlap

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueryOverride:
    """Query text used when the server version falls in ``version_range``."""

    version_range: VersionRange | None  # None matches every version
    query: str

    def matches(self, version: Version) -> bool:
        return self.version_range is None or self.version_range(version)


def validate_query_overrides(overrides: Mapping[str, Sequence[QueryOverride]]) -> None:
    """Reject namespaces whose override ranges overlap.

    Raises:
        InvalidConfigError: naming the namespace and the two ranges
    """
    for namespace, entries in overrides.items():
        for index, first in enumerate(entries):
            for second in entries[index + 1:]:
                if ranges_overlap(first.version_range, second.version_range):
                    left = first.version_range.expression if first.version_range else "*"
                    right = second.version_range.expression if second.version_range else "*"
                    raise InvalidConfigError(
                        "query_overrides",
                        namespace,
                        f"overlapping query overrides for {namespace}: {left!r} and {right!r}",
                    ).with_context(namespace=namespace)


def make_query_override_map(
    version: Version,
    overrides: Mapping[str, Sequence[QueryOverride]],
) -> dict[str, str]:
    """Pick the query text each namespace uses on ``version``.

    The first matching override wins. A namespace with no matching override
    maps to ``""``: its metric space is disabled on this server.
    """
    resolved: dict[str, str] = {}
    for namespace, entries in overrides.items():
        for override in entries:
            if override.matches(version):
                resolved[namespace] = override.query
                break
        else:
            logger.warning(
                "No query matched override, disabling metric space",
                namespace=namespace,
                version=str(version),
                kind=ErrorKind.VERSION_MISMATCH.value,
            )
            resolved[namespace] = ""
    return resolved


__all__ = ["QueryOverride", "validate_query_overrides", "make_query_override_map"]
