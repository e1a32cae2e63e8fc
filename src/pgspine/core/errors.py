"""
Structured error types for the exporter.

Every failure the exporter can hit while scraping Postgres falls into a small,
closed set of kinds. The kind, not the exception's identity, decides how the
orchestrator reports it: a collector that legitimately has nothing to say
(``NO_DATA``) is logged at debug level, a collector that broke (``COLLECTOR``)
is logged at error level, and a target that could not be set up (``SETUP``)
fails the whole request for that target.

Manifesto:
    - **Closed taxonomy:** ErrorKind is an enum, so "no data" survives
      serialization and comparison across process boundaries
    - **Rich context:** errors carry the collector, namespace, server and
      masked DSN they relate to
    - **Error chaining:** the driver exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       ExporterError                             │
        │               (kind, context, cause)                            │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  ConfigError        ScrapeSetupError     CollectorError         │
        │  (CONFIG)           (SETUP)              (COLLECTOR)            │
        │     │                   │                    │                  │
        │  MissingConfigError  VersionDetection    NoDataError            │
        │  InvalidConfigError  Error               (NO_DATA)              │
        │  QueryFileError                                                 │
        │                                                                 │
        │  ColumnParseError   DiscoveryError       ProbeTimeoutError      │
        │  (PARSE)            (DISCOVERY)          (PROBE_TIMEOUT)        │
        │                                                                 │
        │  RequestError (REQUEST)                                         │
        │     ├── UnknownCollectorError                                   │
        │     └── DisabledCollectorError                                  │
        └─────────────────────────────────────────────────────────────────┘

Tags:
    error-handling, exception-hierarchy, no-data, scrape, pgspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """
    Closed set of failure kinds.

    Attributes:
        CONFIG: Unparsable settings, query file or config file. Fatal at startup.
        SETUP: Connection or version detection failed. Fails one target scrape.
        COLLECTOR: A collector's update raised. Isolated to that collector.
        NO_DATA: A collector had nothing to report. Not an operational failure.
        PARSE: A single column or row could not be converted. Non-fatal.
        VERSION_MISMATCH: No query override matched the server version.
        DISCOVERY: One DSN could not be expanded into per-database DSNs.
        PROBE_TIMEOUT: The probe semaphore was not acquired before the deadline.
        REQUEST: Malformed HTTP request (missing target, bad filter, ...).
    """

    CONFIG = "CONFIG"
    SETUP = "SETUP"
    COLLECTOR = "COLLECTOR"
    NO_DATA = "NO_DATA"
    PARSE = "PARSE"
    VERSION_MISMATCH = "VERSION_MISMATCH"
    DISCOVERY = "DISCOVERY"
    PROBE_TIMEOUT = "PROBE_TIMEOUT"
    REQUEST = "REQUEST"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging."""

    collector: str | None = None
    namespace: str | None = None
    server: str | None = None
    dsn: str | None = None  # always the masked form
    path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["collector", "namespace", "server", "dsn", "path"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ExporterError(Exception):
    """
    Base exception for all exporter errors.

    Subclasses set ``default_kind``; callers may override it per instance.

    Usage:
        raise CollectorError("pg_database query failed", cause=exc).with_context(
            collector="database", server="db1:5432"
        )
    """

    default_kind: ErrorKind = ErrorKind.COLLECTOR

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ExporterError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "kind": self.kind.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value})"


# =============================================================================
# CONFIGURATION ERRORS (fatal at startup)
# =============================================================================


class ConfigError(ExporterError):
    """Configuration error. The exporter refuses to start."""

    default_kind = ErrorKind.CONFIG


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid value for {key}: {value!r}")


class QueryFileError(ConfigError):
    """
    A custom query file could not be parsed.

    ``issues`` holds one human readable entry per malformed namespace or
    column so an operator can fix the whole file in one pass.
    """

    def __init__(self, message: str, *, path: str | None = None, issues: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.issues = issues or []
        if path is not None:
            self.context.path = path

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.issues:
            result["issues"] = list(self.issues)
        return result


# =============================================================================
# SCRAPE ERRORS
# =============================================================================


class ScrapeSetupError(ExporterError):
    """Cannot open the connection or detect the server version."""

    default_kind = ErrorKind.SETUP


class VersionDetectionError(ScrapeSetupError):
    """Neither ``SELECT version()`` nor ``SHOW server_version`` parsed."""


class CollectorError(ExporterError):
    """A collector failed. Isolated to that collector."""

    default_kind = ErrorKind.COLLECTOR


class NoDataError(CollectorError):
    """The collector found nothing to report, but nothing is broken."""

    default_kind = ErrorKind.NO_DATA

    def __init__(self, message: str = "collector returned no data", **kwargs: Any):
        super().__init__(message, **kwargs)


class ColumnParseError(ExporterError):
    """One column of one row could not be converted. Non-fatal."""

    default_kind = ErrorKind.PARSE


class DiscoveryError(ExporterError):
    """A DSN could not be expanded into per-database DSNs."""

    default_kind = ErrorKind.DISCOVERY


class ProbeTimeoutError(ExporterError):
    """The probe concurrency slot was not acquired before the deadline."""

    default_kind = ErrorKind.PROBE_TIMEOUT


# =============================================================================
# REQUEST ERRORS
# =============================================================================


class RequestError(ExporterError):
    """The inbound scrape/probe request is malformed."""

    default_kind = ErrorKind.REQUEST


class UnknownCollectorError(RequestError):
    """A ``collect[]`` filter names a collector that is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"missing collector: {name}")


class DisabledCollectorError(RequestError):
    """A ``collect[]`` filter names a collector that is disabled."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"disabled collector: {name}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_no_data(error: BaseException) -> bool:
    """Check whether an error is the no-data sentinel kind."""
    return isinstance(error, ExporterError) and error.kind is ErrorKind.NO_DATA


def error_kind(error: BaseException, default: ErrorKind = ErrorKind.COLLECTOR) -> ErrorKind:
    """Get the kind of an error, mapping foreign exceptions to ``default``."""
    if isinstance(error, ExporterError):
        return error.kind
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.COLLECTOR
    return default


__all__ = [
    "ErrorKind",
    "ErrorContext",
    "ExporterError",
    # Config
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "QueryFileError",
    # Scrape
    "ScrapeSetupError",
    "VersionDetectionError",
    "CollectorError",
    "NoDataError",
    "ColumnParseError",
    "DiscoveryError",
    "ProbeTimeoutError",
    # Request
    "RequestError",
    "UnknownCollectorError",
    "DisabledCollectorError",
    # Utilities
    "is_no_data",
    "error_kind",
]
