"""Expand base DSNs into one DSN per database on the server."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from urllib.parse import quote, urlsplit, urlunsplit

from pgspine.core.dsn import is_key_value_dsn, is_uri_dsn, loggable_dsn
from pgspine.core.errors import ConfigError, DiscoveryError, ScrapeSetupError
from pgspine.core.instance import DRIVER_ERRORS, Instance
from pgspine.core.logging import get_logger

logger = get_logger(__name__)

DATABASES_QUERY = (
    "SELECT datname FROM pg_database "
    "WHERE datallowconn = true AND datistemplate = false AND datname != current_database();"
)


def dsn_for_database(dsn: str, database: str) -> str:
    """Point ``dsn`` at ``database``, keeping everything else verbatim.

    Raises:
        DiscoveryError: if ``dsn`` is in neither DSN syntax
    """
    if is_uri_dsn(dsn):
        try:
            parts = urlsplit(dsn)
        except ValueError as exc:
            raise DiscoveryError(f"Unable to parse DSN as URI: {exc}").with_context(dsn=loggable_dsn(dsn)) from exc
        return urlunsplit(parts._replace(path="/" + quote(database, safe="")))
    if is_key_value_dsn(dsn):
        # a later dbname overrides an earlier one
        return f"{dsn} dbname={database}"
    raise DiscoveryError("Unable to parse DSN as either URI or connstring").with_context(dsn=loggable_dsn(dsn))


def _wanted(database: str, include: list[str], exclude: list[str]) -> bool:
    if database in exclude:
        return False
    return not include or database in include


async def discover_database_dsns(
    dsns: Iterable[str],
    *,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
    timeout: float | None = None,
    instance_factory: Callable[[str], Instance] = Instance,
) -> list[str]:
    """Every base DSN plus one DSN per discoverable database.

    A DSN that cannot be parsed, connected to or listed is logged and
    skipped. The result has no duplicates and keeps first-seen order.
    """
    include_list = list(include)
    exclude_list = list(exclude)
    found: dict[str, None] = {}

    for dsn in dsns:
        if not (is_uri_dsn(dsn) or is_key_value_dsn(dsn)):
            logger.error("discovery.unparsable_dsn", dsn=loggable_dsn(dsn))
            continue

        try:
            instance = instance_factory(dsn)
            await instance.setup(timeout=timeout)
        except (ConfigError, ScrapeSetupError) as exc:
            logger.error("discovery.connect_failed", dsn=loggable_dsn(dsn), error=str(exc))
            continue

        try:
            rows = await instance.get_db().fetch(DATABASES_QUERY, timeout=timeout)
        except DRIVER_ERRORS as exc:
            logger.error("discovery.query_failed", dsn=loggable_dsn(dsn), error=str(exc))
            continue
        finally:
            await instance.close()
        found.setdefault(dsn, None)

        for row in rows:
            database = row["datname"]
            if not _wanted(database, include_list, exclude_list):
                continue
            try:
                found.setdefault(dsn_for_database(dsn, database), None)
            except DiscoveryError as exc:
                logger.error("discovery.synthesis_failed", dsn=loggable_dsn(dsn), database=database, error=exc.message)

    logger.debug("discovery.complete", dsns=len(found))
    return list(found)


__all__ = ["discover_database_dsns", "dsn_for_database", "DATABASES_QUERY"]
