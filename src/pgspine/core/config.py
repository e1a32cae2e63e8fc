"""Exporter config file: authentication modules for ``/probe``.

The file is YAML with one top-level key::

    auth_modules:
      prod:
        type: userpass
        userpass:
          username: monitor
          password: s3cret
        options:
          sslmode: require

Unknown keys are rejected. The file can be reloaded at runtime; reload outcome
is exported through the ``postgres_exporter_config_last_reload_*`` gauges.
"""

from __future__ import annotations

import threading
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from pgspine.core.dsn import DSN, parse_dsn
from pgspine.core.errors import ConfigError, InvalidConfigError
from pgspine.core.logging import get_logger
from pgspine.observability.metrics import config_reload_success_gauge, config_reload_timestamp_gauge

logger = get_logger(__name__)


class UserPass(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = ""
    password: str = ""


class AuthModule(BaseModel):
    """Credentials and connection options applied to a probe target."""

    model_config = ConfigDict(extra="forbid")

    type: str
    userpass: UserPass = Field(default_factory=UserPass)
    options: dict[str, str] = Field(default_factory=dict)

    def configure_target(self, target: str) -> DSN:
        """Parse ``target`` and apply this module's credentials and options."""
        dsn = parse_dsn(target)
        if self.type == "userpass":
            dsn = dsn.with_credentials(self.userpass.username, self.userpass.password)
        if self.options:
            dsn = dsn.with_options(self.options)
        return dsn


class ExporterConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    auth_modules: dict[str, AuthModule] = Field(default_factory=dict)


def load_config(path: Path) -> ExporterConfig:
    """Read and validate an exporter config file.

    Raises:
        ConfigError: if the file cannot be read or does not validate
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"error opening config file {str(path)!r}: {exc}", cause=exc) from exc

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise InvalidConfigError("config_file", str(path), f"error parsing config file {str(path)!r}: {exc}") from exc

    try:
        return ExporterConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise InvalidConfigError("config_file", str(path), f"error parsing config file {str(path)!r}: {exc}") from exc


class ConfigHandler:
    """Holds the current exporter config and swaps it atomically on reload."""

    def __init__(self, config: ExporterConfig | None = None):
        self._lock = threading.RLock()
        self._config = config or ExporterConfig()

    @property
    def config(self) -> ExporterConfig:
        with self._lock:
            return self._config

    def reload(self, path: Path) -> ExporterConfig:
        """Load ``path`` and replace the current config on success.

        The previous config stays active when loading fails.
        """
        try:
            config = load_config(path)
        except ConfigError:
            config_reload_success_gauge.set(0)
            logger.error("config.reload_failed", path=str(path))
            raise

        with self._lock:
            self._config = config
        config_reload_success_gauge.set(1)
        config_reload_timestamp_gauge.set_to_current_time()
        logger.info("config.reloaded", path=str(path), auth_modules=len(config.auth_modules))
        return config

    def auth_module(self, name: str) -> AuthModule | None:
        return self.config.auth_modules.get(name)


__all__ = [
    "AuthModule",
    "UserPass",
    "ExporterConfig",
    "ConfigHandler",
    "load_config",
]
