"""``pg_settings``: runtime configuration exported as gauges.

Numeric settings are normalised to base units: every time unit becomes
seconds and every size unit becomes bytes, and the unit is appended to the
metric name (``pg_settings_shared_buffers_bytes``). ``-1`` is kept as is
because Postgres uses it to mean "disabled".
"""

from __future__ import annotations

from dataclasses import dataclass

from pgspine.collectors.base import CollectorConfig, ScrapeContext, metric_name
from pgspine.core.errors import CollectorError, ColumnParseError
from pgspine.core.instance import DRIVER_ERRORS, Instance
from pgspine.core.sink import MetricSink, ValueType

SUBSYSTEM = "settings"

SETTINGS_QUERY = (
    "SELECT name, setting, COALESCE(unit, ''), short_desc, vartype "
    "FROM pg_settings WHERE vartype IN ('bool', 'integer', 'real');"
)

# unit → (base unit, multiplier)
UNIT_FACTORS: dict[str, tuple[str, float]] = {
    "ms": ("seconds", 1 / 1000),
    "s": ("seconds", 1),
    "min": ("seconds", 60),
    "h": ("seconds", 60 * 60),
    "d": ("seconds", 60 * 60 * 24),
    "B": ("bytes", 1),
    "kB": ("bytes", 2**10),
    "MB": ("bytes", 2**20),
    "GB": ("bytes", 2**30),
    "TB": ("bytes", 2**40),
    "8kB": ("bytes", 2**13),
    "16kB": ("bytes", 2**14),
    "32kB": ("bytes", 2**15),
    "16MB": ("bytes", 2**24),
    "32MB": ("bytes", 2**25),
    "64MB": ("bytes", 2**26),
}


@dataclass(frozen=True)
class PgSetting:
    """One row of ``pg_settings``."""

    name: str
    setting: str
    unit: str
    short_desc: str
    vartype: str

    def normalise_unit(self) -> tuple[float, str]:
        """Value in base units and the base unit name ("" if unitless).

        Raises:
            ColumnParseError: for an unparsable value or unknown unit
        """
        try:
            value = float(self.setting)
        except ValueError as exc:
            raise ColumnParseError(
                f"Error converting setting {self.name!r} value {self.setting!r} to float: {exc}"
            ) from exc

        if not self.unit:
            return value, ""
        if self.unit not in UNIT_FACTORS:
            raise ColumnParseError(f"Unknown unit for runtime variable: {self.unit!r}")

        base_unit, factor = UNIT_FACTORS[self.unit]
        if value == -1:
            return value, base_unit
        return value * factor, base_unit

    def to_sample(self) -> tuple[str, str, float]:
        """``(metric name, help, value)``.

        Raises:
            ColumnParseError: for an unsupported vartype or bad value
        """
        name = self.name.replace(".", "_")
        help_text = self.short_desc
        if self.vartype == "bool":
            return metric_name(SUBSYSTEM, name), help_text, 1.0 if self.setting == "on" else 0.0
        if self.vartype in ("integer", "real"):
            value, unit = self.normalise_unit()
            if unit:
                name = f"{name}_{unit}"
                help_text = f"{help_text} [Units converted to {unit}.]"
            return metric_name(SUBSYSTEM, name), help_text, value
        raise ColumnParseError(f"Unsupported vartype {self.vartype!r}")


class SettingsCollector:
    """Exports numeric and boolean server settings."""

    def __init__(self, config: CollectorConfig):
        self.logger = config.logger

    async def update(self, ctx: ScrapeContext, instance: Instance, sink: MetricSink) -> None:
        db = instance.get_db()
        try:
            rows = await db.fetch(SETTINGS_QUERY, timeout=ctx.remaining())
        except DRIVER_ERRORS as exc:
            raise CollectorError(f"Error running query on database {instance.server!r}: {exc}", cause=exc) from exc

        for row in rows:
            setting = PgSetting(*(str(value) if value is not None else "" for value in row.values()))
            try:
                name, help_text, value = setting.to_sample()
            except ColumnParseError as exc:
                self.logger.warning("settings.skipped", setting=setting.name, error=exc.message)
                continue
            sink.emit(name, help_text, value, value_type=ValueType.GAUGE)


__all__ = ["SettingsCollector", "PgSetting", "SETTINGS_QUERY", "UNIT_FACTORS"]
