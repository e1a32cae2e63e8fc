"""Server version parsing and version-range predicates.

Postgres reports versions such as ``PostgreSQL 14.2 (Debian 14.2-1) on ...``
or ``9.6.24``. They are normalised to a three part
:class:`packaging.version.Version` so ranges like ``>=9.2.0 <10.0.0`` can be
matched with :class:`packaging.specifiers.SpecifierSet`.

Range syntax accepted by :class:`VersionRange`:

* comparisons separated by spaces or commas are ANDed: ``>=9.2.0 <10.0.0``
* alternatives separated by ``||`` are ORed: ``<9.2.0 || >=12.0.0``
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

# "PostgreSQL 14.2 (Debian ...)" as returned by SELECT version()
VERSION_STRING_RE = re.compile(r"^\w+ ((\d+)(\.\d+)?(\.\d+)?)")
# "14.2 (Debian ...)" as returned by SHOW server_version
SERVER_VERSION_RE = re.compile(r"^((\d+)(\.\d+)?(\.\d+)?)")

_OPERATOR_RE = re.compile(r"(<=|>=|==|!=|<|>|=)\s*")
_COMPARISON_RE = re.compile(r"(<=|>=|==|!=|<|>)\s*(\d+(?:\.\d+){0,2})")

# Candidate versions far above anything Postgres will ship
_CEILING = Version("100000.0.0")


def normalize_version(text: str) -> Version:
    """Pad ``14`` or ``14.2`` to ``14.2.0`` and parse it."""
    parts = text.split(".")
    while len(parts) < 3:
        parts.append("0")
    return Version(".".join(parts[:3]))


def parse_version_string(text: str, pattern: re.Pattern[str] = VERSION_STRING_RE) -> Version | None:
    """Extract the leading ``major[.minor[.patch]]`` token, or None if absent."""
    match = pattern.match(text.strip())
    if match is None:
        return None
    try:
        return normalize_version(match.group(1))
    except InvalidVersion:
        return None


class VersionRange:
    """A predicate over server versions, built from a range expression."""

    def __init__(self, expression: str):
        self.expression = expression.strip()
        self._alternatives: list[SpecifierSet] = []
        if not self.expression:
            raise ValueError("empty version range")
        for alternative in self.expression.split("||"):
            self._alternatives.append(self._parse_alternative(alternative))

    @staticmethod
    def _parse_alternative(text: str) -> SpecifierSet:
        # glue operators to their operand, then treat whitespace as AND
        compact = _OPERATOR_RE.sub(lambda m: "==" if m.group(1) == "=" else m.group(1), text.strip())
        items = [item for item in re.split(r"[\s,]+", compact) if item]
        if not items:
            raise ValueError(f"empty version range alternative in {text!r}")
        for item in items:
            if not _COMPARISON_RE.fullmatch(item):
                raise ValueError(f"invalid version comparison {item!r}")
        try:
            return SpecifierSet(",".join(items))
        except InvalidSpecifier as exc:
            raise ValueError(f"invalid version range {text!r}: {exc}") from exc

    def __call__(self, version: Version) -> bool:
        return any(version in alternative for alternative in self._alternatives)

    def __contains__(self, version: Version) -> bool:
        return self(version)

    def boundaries(self) -> list[Version]:
        """Every version literal mentioned in the expression."""
        found = []
        for alternative in self._alternatives:
            for spec in alternative:
                found.append(normalize_version(spec.version))
        return found

    def __repr__(self) -> str:
        return f"VersionRange({self.expression!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, VersionRange) and other.expression == self.expression

    def __hash__(self) -> int:
        return hash(self.expression)


def _candidates(ranges: Iterable[VersionRange]) -> list[Version]:
    """Versions that witness any non-empty intersection of the given ranges.

    Bounds are integer triples, so an intersection that is not empty always
    contains either a boundary, the patch release right after one, zero, or
    a version above every boundary.
    """
    points = {Version("0.0.0"), _CEILING}
    for version_range in ranges:
        for bound in version_range.boundaries():
            major, minor, patch = (list(bound.release) + [0, 0, 0])[:3]
            points.add(Version(f"{major}.{minor}.{patch}"))
            points.add(Version(f"{major}.{minor}.{patch + 1}"))
    return sorted(points)


def ranges_overlap(first: VersionRange | None, second: VersionRange | None) -> bool:
    """True when some version satisfies both ranges. ``None`` means "any"."""
    if first is None or second is None:
        return True
    return any(first(v) and second(v) for v in _candidates([first, second]))


__all__ = [
    "VERSION_STRING_RE",
    "SERVER_VERSION_RE",
    "VersionRange",
    "normalize_version",
    "parse_version_string",
    "ranges_overlap",
]
