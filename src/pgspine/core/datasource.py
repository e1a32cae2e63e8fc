"""Resolve data source names from the environment.

Precedence, highest first:

1. ``DATA_SOURCE_NAME`` (comma separated) is returned as-is.
2. Otherwise a DSN is assembled from parts:

   * user: ``DATA_SOURCE_USER_FILE`` contents, else ``DATA_SOURCE_USER``
   * password: ``DATA_SOURCE_PASS_FILE`` contents, else ``DATA_SOURCE_PASS``
   * uri: ``DATA_SOURCE_URI_FILE`` contents, else ``DATA_SOURCE_URI``

   giving ``postgresql://<user>:<password>@<uri>``. An empty uri yields no
   data sources at all.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from urllib.parse import quote

from pgspine.core.errors import InvalidConfigError

DATA_SOURCE_NAME = "DATA_SOURCE_NAME"
DATA_SOURCE_USER = "DATA_SOURCE_USER"
DATA_SOURCE_USER_FILE = "DATA_SOURCE_USER_FILE"
DATA_SOURCE_PASS = "DATA_SOURCE_PASS"
DATA_SOURCE_PASS_FILE = "DATA_SOURCE_PASS_FILE"
DATA_SOURCE_URI = "DATA_SOURCE_URI"
DATA_SOURCE_URI_FILE = "DATA_SOURCE_URI_FILE"

# RFC 3986 sub-delims allowed unescaped in userinfo
_USERINFO_SAFE = "$&+,;="


def _read_secret(path: str, key: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise InvalidConfigError(key, path, f"failed loading data source from {key}: {exc}") from exc


def _from_file_or_env(environ: Mapping[str, str], file_key: str, plain_key: str) -> str:
    file_path = environ.get(file_key, "")
    if file_path:
        return _read_secret(file_path, file_key)
    return environ.get(plain_key, "")


def get_data_sources(environ: Mapping[str, str] | None = None) -> list[str]:
    """Return the configured DSNs in precedence order.

    Raises:
        InvalidConfigError: if a ``*_FILE`` variable points to an unreadable file
    """
    env = os.environ if environ is None else environ

    combined = env.get(DATA_SOURCE_NAME, "")
    if combined:
        return combined.split(",")

    user = _from_file_or_env(env, DATA_SOURCE_USER_FILE, DATA_SOURCE_USER)
    password = _from_file_or_env(env, DATA_SOURCE_PASS_FILE, DATA_SOURCE_PASS)
    uri = _from_file_or_env(env, DATA_SOURCE_URI_FILE, DATA_SOURCE_URI)
    if not uri:
        return []

    userinfo = quote(user, safe=_USERINFO_SAFE) + ":" + quote(password, safe=_USERINFO_SAFE)
    return [f"postgresql://{userinfo}@{uri}"]


__all__ = ["get_data_sources"]
