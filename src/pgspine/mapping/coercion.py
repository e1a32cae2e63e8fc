"""Conversion of driver values into metric values and label text.

Every converter returns ``(value, ok)``. ``ok`` is False when the input
cannot be represented; callers record a non-fatal parse error and skip the
column rather than failing the row.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any


def _timestamp(value: datetime) -> int:
    """Whole Unix seconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return math.floor(value.timestamp())



def _text(value: bytes | str) -> str:
    return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value


def db_to_float(value: Any) -> tuple[float, bool]:
    """Convert a column value to a float sample value.

    NULL becomes NaN and is accepted.
    """
    if value is None:
        return math.nan, True
    if isinstance(value, bool):
        return (1.0 if value else 0.0), True
    if isinstance(value, (int, float)):
        return float(value), True
    if isinstance(value, Decimal):
        return float(value), True
    if isinstance(value, datetime):
        return float(_timestamp(value)), True
    if isinstance(value, (bytes, str)):
        try:
            return float(_text(value)), True
        except ValueError:
            return math.nan, False
    return math.nan, False


def db_to_uint(value: Any) -> tuple[int, bool]:
    """Convert a column value to a non-negative integer (histogram counts)."""
    if value is None:
        return 0, True
    if isinstance(value, bool):
        return (1 if value else 0), True
    if isinstance(value, int):
        return (value, True) if value >= 0 else (0, False)
    if isinstance(value, (float, Decimal)):
        if isinstance(value, float) and not math.isfinite(value):
            return 0, False
        if isinstance(value, Decimal) and not value.is_finite():
            return 0, False
        number = int(value)
        return (number, True) if number >= 0 else (0, False)
    if isinstance(value, datetime):
        return _timestamp(value), True
    if isinstance(value, (bytes, str)):
        text = _text(value)
        if not text.isdigit():
            return 0, False
        return int(text), True
    return 0, False


def _format_float(value: float) -> str:
    if math.isfinite(value) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return repr(value)


def db_to_string(value: Any) -> tuple[str, bool]:
    """Render a column value as label text."""
    if value is None:
        return "", True
    if isinstance(value, bool):
        return ("true" if value else "false"), True
    if isinstance(value, int):
        return str(value), True
    if isinstance(value, float):
        return _format_float(value), True
    if isinstance(value, Decimal):
        return str(value), True
    if isinstance(value, datetime):
        return str(_timestamp(value)), True
    if isinstance(value, (date, time)):
        return value.isoformat(), True
    if isinstance(value, (bytes, str)):
        return _text(value), True
    return "", False


# ── Durations ────────────────────────────────────────────────────────────

_NANOSECONDS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,  # U+00B5 micro sign
    "μs": 1_000,  # U+03BC greek mu
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_DURATION_PART_RE = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration like ``"1h2m3.5s"`` or ``"1500ms"`` into milliseconds.

    Sub-millisecond remainders are truncated toward zero.

    Raises:
        ValueError: if the text is not a duration
    """
    original = text
    sign = 1
    if text and text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {original!r}")

    total = Decimal(0)
    position = 0
    while position < len(text):
        match = _DURATION_PART_RE.match(text, position)
        if match is None:
            raise ValueError(f"invalid duration {original!r}")
        try:
            total += Decimal(match.group(1)) * _NANOSECONDS[match.group(2)]
        except InvalidOperation as exc:
            raise ValueError(f"invalid duration {original!r}") from exc
        position = match.end()

    milliseconds = int(total) // 1_000_000
    return float(sign * milliseconds)


__all__ = ["db_to_float", "db_to_uint", "db_to_string", "parse_duration"]
