"""Tests for server version parsing and version ranges."""

from __future__ import annotations

import pytest
from packaging.version import Version

from pgspine.core.version import (
    SERVER_VERSION_RE,
    VersionRange,
    normalize_version,
    parse_version_string,
    ranges_overlap,
)


# ── Parsing ──────────────────────────────────────────────────────────────


class TestParseVersion:
    """Version strings from SELECT version() and SHOW server_version."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("PostgreSQL 14.2 on x86_64-pc-linux-gnu", "14.2.0"),
            ("PostgreSQL 9.6.24 on x86_64", "9.6.24"),
            ("PostgreSQL 10 (Debian 10-1)", "10.0.0"),
            ("EnterpriseDB 11.3.1", "11.3.1"),
        ],
    )
    def test_select_version(self, text, expected):
        assert parse_version_string(text) == Version(expected)

    def test_unparsable_returns_none(self):
        assert parse_version_string("CockroachDB CCL v22.1") is None

    def test_server_version_fallback_pattern(self):
        assert parse_version_string("13.4 (Ubuntu 13.4-1)", SERVER_VERSION_RE) == Version("13.4.0")

    def test_normalize_pads(self):
        assert normalize_version("12") == Version("12.0.0")
        assert normalize_version("12.1") == Version("12.1.0")


# ── Ranges ───────────────────────────────────────────────────────────────


class TestVersionRange:
    def test_and(self):
        r = VersionRange(">=9.2.0 <10.0.0")
        assert r(Version("9.6.0"))
        assert not r(Version("10.0.0"))
        assert not r(Version("9.1.9"))

    def test_comma_is_and(self):
        assert VersionRange(">=9.2.0, <10.0.0")(Version("9.2.0"))

    def test_or(self):
        r = VersionRange("<9.2.0 || >=12.0.0")
        assert r(Version("9.1.0"))
        assert r(Version("14.2.0"))
        assert not r(Version("10.0.0"))

    def test_space_after_operator(self):
        assert Version("10.1.0") in VersionRange(">= 10.0.0")

    def test_invalid(self):
        with pytest.raises(ValueError):
            VersionRange("")
        with pytest.raises(ValueError):
            VersionRange("around 10")

    def test_equality_by_expression(self):
        assert VersionRange(">=10.0.0") == VersionRange(" >=10.0.0 ")


class TestRangesOverlap:
    def test_disjoint(self):
        assert not ranges_overlap(VersionRange("<10.0.0"), VersionRange(">=10.0.0"))

    def test_adjacent_exclusive_bounds(self):
        assert not ranges_overlap(VersionRange(">=9.2.0 <10.0.0"), VersionRange(">=10.0.0"))

    def test_overlapping(self):
        assert ranges_overlap(VersionRange(">=9.0.0"), VersionRange("<9.5.0"))

    def test_none_overlaps_everything(self):
        assert ranges_overlap(None, VersionRange(">=10.0.0"))
        assert ranges_overlap(None, None)
