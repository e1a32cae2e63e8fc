"""
One scrape target: a single database connection plus the detected version.

Manifesto:
    Postgres statistics views are cheap to read but sensitive to connection
    storms. An Instance therefore owns exactly one backend connection, and
    every query issued by concurrently running collectors goes through one
    ``asyncio.Lock`` so they never run at the same time on that connection.

Architecture:
    ::

        Instance(dsn)              constructed: DSN validated, no connection
            │ setup()
            ▼
        asyncpg.connect()  ──►  SELECT version();
            │                     └─ unparsable → SHOW server_version;
            ▼
        get_db() ─► SerializedConnection ──► fetch / fetchrow / fetchval
            │            (asyncio.Lock held per query)
            ▼
        close()                    idempotent; borrowed connections stay open

Tags:
    postgres, asyncpg, connection, version-detection, pgspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from typing import Any

import asyncpg
from packaging.version import Version

from pgspine.core.dsn import DSN, parse_dsn
from pgspine.core.errors import ScrapeSetupError, VersionDetectionError
from pgspine.core.logging import get_logger
from pgspine.core.version import SERVER_VERSION_RE, VERSION_STRING_RE, parse_version_string

logger = get_logger(__name__)

# Failures raised by the driver or the network while talking to a server
DRIVER_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


class SerializedConnection:
    """Query facade over one connection that admits one query at a time."""

    def __init__(self, connection: Any, lock: asyncio.Lock):
        self._connection = connection
        self._lock = lock

    async def fetch(self, query: str, *args: Any, timeout: float | None = None) -> list[Any]:
        async with self._lock:
            return await self._connection.fetch(query, *args, timeout=timeout)

    async def fetchrow(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        async with self._lock:
            return await self._connection.fetchrow(query, *args, timeout=timeout)

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        async with self._lock:
            return await self._connection.fetchval(query, *args, timeout=timeout)


class Instance:
    """A scrape target. Owned by the orchestrator that created it."""

    def __init__(self, dsn: str, *, master: bool = False):
        self.dsn_text = dsn
        self.dsn: DSN = parse_dsn(dsn)
        self.master = master
        self.version: Version | None = None
        self.version_string = ""
        self._connection: Any = None
        self._db: SerializedConnection | None = None
        self._lock = asyncio.Lock()
        self._close_connection = True

    @classmethod
    def with_connection(cls, dsn: str, connection: Any, *, master: bool = False) -> Instance:
        """Wrap an already open connection. ``close()`` will not close it."""
        instance = cls(dsn, master=master)
        instance._connection = connection
        instance._close_connection = False
        return instance

    @property
    def server(self) -> str:
        """``host:port`` label for this target."""
        return self.dsn.fingerprint()

    @property
    def is_setup(self) -> bool:
        return self._db is not None and self.version is not None

    def copy(self) -> Instance:
        """A fresh, unconnected Instance for the same target."""
        return type(self)(self.dsn_text, master=self.master)

    async def _connect(self, timeout: float | None) -> Any:
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return await asyncpg.connect(self.dsn.connection_string(), **kwargs)

    async def setup(self, timeout: float | None = None) -> None:
        """Open the connection and detect the server version.

        Raises:
            ScrapeSetupError: if the connection cannot be opened
            VersionDetectionError: if no version could be parsed
        """
        if self._connection is None:
            try:
                self._connection = await self._connect(timeout)
            except DRIVER_ERRORS as exc:
                raise ScrapeSetupError(
                    f"error opening connection to database: {exc}", cause=exc
                ).with_context(dsn=str(self.dsn), server=self.server) from exc

        self._db = SerializedConnection(self._connection, self._lock)
        try:
            self.version, self.version_string = await self._query_version(timeout)
        except ScrapeSetupError:
            await self.close()
            raise
        logger.debug("instance.setup", server=self.server, version=str(self.version))

    async def _query_version(self, timeout: float | None) -> tuple[Version, str]:
        db = self.get_db()
        try:
            text = await db.fetchval("SELECT version();", timeout=timeout)
            version = parse_version_string(str(text or ""), VERSION_STRING_RE)
            if version is None:
                logger.debug("instance.version_fallback", server=self.server, version_string=text)
                text = await db.fetchval("SHOW server_version;", timeout=timeout)
                version = parse_version_string(str(text or ""), SERVER_VERSION_RE)
        except DRIVER_ERRORS as exc:
            raise ScrapeSetupError(
                f"error querying version: {exc}", cause=exc
            ).with_context(dsn=str(self.dsn), server=self.server) from exc

        if version is None:
            raise VersionDetectionError(
                f"could not parse server version from {text!r}"
            ).with_context(dsn=str(self.dsn), server=self.server)
        return version, str(text)

    def get_db(self) -> SerializedConnection:
        """The shared, serialized query handle."""
        if self._db is None:
            raise ScrapeSetupError("instance is not set up").with_context(server=self.server)
        return self._db

    async def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        connection, self._connection = self._connection, None
        self._db = None
        if connection is None or not self._close_connection:
            return
        try:
            await connection.close()
        except DRIVER_ERRORS as exc:
            logger.warning("instance.close_failed", server=self.server, error=str(exc))

    def __repr__(self) -> str:
        return f"Instance({str(self.dsn)!r}, master={self.master}, version={self.version})"


__all__ = ["Instance", "SerializedConnection", "DRIVER_ERRORS"]
