"""Custom query files and their merge with the built-in definitions.

A query file is YAML whose top-level keys are namespaces::

    pg_postmaster:
      query: "SELECT pg_postmaster_start_time AS start_time_seconds FROM pg_postmaster_start_time()"
      master: true
      cache_seconds: 30
      runonserver: ">=9.6.0"
      metrics:
        - start_time_seconds:
            usage: "GAUGE"
            description: "Time at which postmaster started"

Usage::

    library = QueryLibrary(settings.query_file_paths())
    library.load()                     # strict: QueryFileError stops startup
    library.reload()                   # lenient: bad files keep their old definitions
    query_set = library.current

Manifesto:
    Query files are operator input, so they are decoded into typed models and
    every problem in a file is reported at once instead of failing on the
    first bad entry. At startup a bad file is fatal; at reload it is
    reported through ``pg_exporter_user_queries_load_error`` and the last
    good definitions stay in force.

Tags:
    mapping, yaml, custom-queries, pydantic, reload, pgspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from pgspine.core.errors import QueryFileError
from pgspine.core.logging import get_logger
from pgspine.core.version import VersionRange
from pgspine.mapping.builtin import builtin_metric_maps, builtin_query_overrides
from pgspine.mapping.overrides import QueryOverride, validate_query_overrides
from pgspine.mapping.usage import ColumnMapping, ColumnUsage, NamespaceDefinition
from pgspine.observability.metrics import user_queries_load_error_gauge

logger = get_logger(__name__)


# =============================================================================
# FILE SCHEMA
# =============================================================================


def _parse_range(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    VersionRange(value)
    return value.strip()


class ColumnSpec(BaseModel):
    """One column entry under ``metrics``."""

    model_config = ConfigDict(extra="forbid")

    usage: ColumnUsage = Field(..., description="How the column becomes metrics")
    description: str = Field(default="", description="Help text of the metric")
    metric_mapping: dict[str, float] = Field(default_factory=dict, description="MAPPEDMETRIC value table")
    pg_version: str | None = Field(default=None, description="Server versions the column exists on")

    @field_validator("usage", mode="before")
    @classmethod
    def _parse_usage(cls, value: Any) -> ColumnUsage:
        if isinstance(value, ColumnUsage):
            return value
        if not isinstance(value, str):
            raise ValueError(f"wrong ColumnUsage given: {value!r}")
        return ColumnUsage.parse(value)

    @field_validator("pg_version")
    @classmethod
    def _check_version(cls, value: str | None) -> str | None:
        return _parse_range(value)

    def to_column_mapping(self) -> ColumnMapping:
        return ColumnMapping(
            usage=self.usage,
            description=self.description,
            mapping=dict(self.metric_mapping),
            supported_versions=VersionRange(self.pg_version) if self.pg_version else None,
        )


class UserQuerySpec(BaseModel):
    """One namespace of a query file."""

    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., description="SQL producing the namespace rows")
    metrics: list[dict[str, ColumnSpec]] = Field(default_factory=list, description="Ordered column definitions")
    master: bool = Field(default=False, description="Only run against the master database")
    cache_seconds: int = Field(default=0, ge=0, description="Reuse results for this many seconds")
    runonserver: str | None = Field(default=None, description="Server versions the query runs on")

    @field_validator("metrics")
    @classmethod
    def _single_key_entries(cls, value: list[dict[str, ColumnSpec]]) -> list[dict[str, ColumnSpec]]:
        for index, entry in enumerate(value):
            if len(entry) != 1:
                raise ValueError(f"metrics[{index}] must map exactly one column name, got {len(entry)}")
        return value

    @field_validator("runonserver")
    @classmethod
    def _check_runonserver(cls, value: str | None) -> str | None:
        return _parse_range(value)

    def to_definition(self) -> NamespaceDefinition:
        columns: dict[str, ColumnMapping] = {}
        for entry in self.metrics:
            for name, spec in entry.items():
                columns[name] = spec.to_column_mapping()
        return NamespaceDefinition(
            column_mappings=columns,
            master=self.master,
            cache_seconds=self.cache_seconds,
            run_on_server=VersionRange(self.runonserver) if self.runonserver else None,
        )


# =============================================================================
# QUERY SETS
# =============================================================================


@dataclass
class QuerySet:
    """Namespace definitions plus the query overrides that go with them."""

    definitions: dict[str, NamespaceDefinition] = field(default_factory=dict)
    overrides: dict[str, list[QueryOverride]] = field(default_factory=dict)

    @classmethod
    def builtin(cls) -> QuerySet:
        return cls(builtin_metric_maps(), builtin_query_overrides())

    def copy(self) -> QuerySet:
        return QuerySet(dict(self.definitions), {k: list(v) for k, v in self.overrides.items()})

    def merge(self, other: QuerySet, *, source: str = "") -> QuerySet:
        """A new set where ``other`` wins over this one, namespace by namespace."""
        merged = self.copy()
        for namespace, definition in other.definitions.items():
            if namespace in merged.definitions:
                logger.debug("Overriding metric from user YAML file", metric=namespace, source=source)
            else:
                logger.debug("Adding new metric from user YAML file", metric=namespace, source=source)
            merged.definitions[namespace] = definition

        for namespace, overrides in other.overrides.items():
            if namespace in merged.overrides:
                logger.debug("Overriding query override from user YAML file", query_override=namespace, source=source)
            else:
                logger.debug("Adding new query override from user YAML file", query_override=namespace, source=source)
            merged.overrides[namespace] = list(overrides)
        return merged

    def validate(self) -> None:
        validate_query_overrides(self.overrides)

    def __len__(self) -> int:
        return len(self.definitions)


def _format_issue(namespace: str, error: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    prefix = f"{namespace}.{location}" if location else namespace
    return f"{prefix}: {error.get('msg', 'invalid value')}"


def parse_user_queries(content: str | bytes, *, path: str | None = None) -> QuerySet:
    """Decode one query file.

    Raises:
        QueryFileError: listing every malformed namespace and column
    """
    label = path or "<query file>"
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise QueryFileError(f"error parsing {label}: {exc}", path=path, issues=[str(exc)]) from exc

    if data is None:
        return QuerySet()
    if not isinstance(data, dict):
        raise QueryFileError(
            f"error parsing {label}: top level must map namespaces to queries",
            path=path,
            issues=[f"expected a mapping, got {type(data).__name__}"],
        )

    query_set = QuerySet()
    issues: list[str] = []
    for namespace, raw in data.items():
        namespace = str(namespace)
        try:
            spec = UserQuerySpec.model_validate(raw)
        except PydanticValidationError as exc:
            issues.extend(_format_issue(namespace, error) for error in exc.errors())
            continue
        logger.debug(
            "New user metric namespace from YAML metric",
            metric=namespace,
            cache_seconds=spec.cache_seconds,
        )
        query_set.definitions[namespace] = spec.to_definition()
        # user queries apply to every server version
        query_set.overrides[namespace] = [QueryOverride(None, spec.query)]

    if issues:
        raise QueryFileError(f"invalid query file {label}: {len(issues)} issue(s)", path=path, issues=issues)
    return query_set


# =============================================================================
# FILE LIBRARY
# =============================================================================


def _read_query_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise QueryFileError(f"error reading {path}: {exc}", path=str(path), issues=[str(exc)]) from exc


class QueryLibrary:
    """The active query set, built from the built-ins and every query file.

    Files are merged in the order given, later files winning.
    """

    def __init__(self, paths: Iterable[Path] = (), *, include_builtin: bool = True):
        self.paths = list(paths)
        self.include_builtin = include_builtin
        self._lock = threading.Lock()
        self._per_file: dict[Path, QuerySet] = {}
        self._current = self._combine()

    @property
    def current(self) -> QuerySet:
        with self._lock:
            return self._current

    def _combine(self) -> QuerySet:
        combined = QuerySet.builtin() if self.include_builtin else QuerySet()
        for path in self.paths:
            if path in self._per_file:
                combined = combined.merge(self._per_file[path], source=str(path))
        combined.validate()
        return combined

    def load(self) -> QuerySet:
        """Load every file, failing on the first bad one.

        Raises:
            QueryFileError: if a file cannot be read or parsed
            InvalidConfigError: if the merged overrides overlap
        """
        per_file: dict[Path, QuerySet] = {}
        for path in self.paths:
            content = _read_query_file(path)
            per_file[path] = parse_user_queries(content, path=str(path))
            user_queries_load_error_gauge.labels(str(path), _hashsum(content)).set(0)
            logger.info("queries.loaded", path=str(path), namespaces=len(per_file[path]))

        with self._lock:
            self._per_file = per_file
            self._current = self._combine()
            return self._current

    def reload(self) -> QuerySet:
        """Reload every file. A file that fails keeps its previous definitions."""
        per_file = dict(self._per_file)
        for path in self.paths:
            try:
                content = _read_query_file(path)
            except QueryFileError as exc:
                user_queries_load_error_gauge.labels(str(path), "").set(1)
                logger.error("queries.reload_failed", path=str(path), error=exc.message)
                continue

            hashsum = _hashsum(content)
            try:
                per_file[path] = parse_user_queries(content, path=str(path))
            except QueryFileError as exc:
                user_queries_load_error_gauge.labels(str(path), hashsum).set(1)
                logger.error("queries.reload_failed", path=str(path), hashsum=hashsum, issues=exc.issues)
                continue
            user_queries_load_error_gauge.labels(str(path), hashsum).set(0)
            logger.info("queries.reloaded", path=str(path), hashsum=hashsum, namespaces=len(per_file[path]))

        with self._lock:
            self._per_file = per_file
            self._current = self._combine()
            return self._current


def _hashsum(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


__all__ = [
    "ColumnSpec",
    "UserQuerySpec",
    "QuerySet",
    "QueryLibrary",
    "parse_user_queries",
]
