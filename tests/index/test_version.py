"""Tests for semantic versions and version requirements."""

from __future__ import annotations

import pytest

from regindex.errors import InvalidVersion
from regindex.index.version import (
    Version,
    VersionReq,
    is_valid_version,
    normalize_requirement,
    parse_requirement,
    parse_version,
)


class TestParseVersion:
    """Tests for parse_version function."""

    def test_full_version(self) -> None:
        """Parses prerelease and build metadata."""
        v = parse_version("1.2.3-alpha.1+build.5")

        assert (v.major, v.minor, v.patch) == (1, 2, 3)
        assert v.pre == ("alpha", "1")
        assert v.build == ("build", "5")
        assert v.is_prerelease
        assert str(v) == "1.2.3-alpha.1+build.5"

    @pytest.mark.parametrize(
        "text",
        ["1.0", "01.0.0", "1.0.0-01", "v1.0.0", "1.0.0-", "1.0.0+", "", "1.0.0.0", " 1.0.0"],
    )
    def test_rejects_non_strict(self, text: str) -> None:
        """Anything that is not strict SemVer 2.0.0 is rejected."""
        with pytest.raises(InvalidVersion, match="Invalid version string"):
            parse_version(text)
        assert not is_valid_version(text)

    def test_invalid_version_is_value_error(self) -> None:
        """InvalidVersion can be caught as ValueError."""
        with pytest.raises(ValueError):
            parse_version("nope")

    def test_equality_includes_build(self) -> None:
        """Build metadata distinguishes versions."""
        assert parse_version("1.0.0+a") != parse_version("1.0.0+b")
        assert parse_version("1.0.0+a") == parse_version("1.0.0+a")

    def test_precedence(self) -> None:
        """Versions sort by SemVer precedence."""
        ordered = [
            "1.0.0-alpha",
            "1.0.0-alpha.1",
            "1.0.0-alpha.beta",
            "1.0.0-beta",
            "1.0.0-beta.2",
            "1.0.0-beta.11",
            "1.0.0-rc.1",
            "1.0.0",
            "1.0.1",
            "1.1.0",
            "2.0.0",
        ]
        versions = [parse_version(v) for v in ordered]

        assert sorted(reversed(versions)) == versions

    def test_hashable(self) -> None:
        """Versions can be used as dict keys."""
        seen = {parse_version("1.0.0"): 1}
        assert Version(1, 0, 0) in seen


class TestParseRequirement:
    """Tests for parse_requirement and normalize_requirement."""

    @pytest.mark.parametrize(
        ("text", "normalized"),
        [
            ("1.0", "^1.0"),
            ("0.1", "^0.1"),
            ("^1.2.3", "^1.2.3"),
            ("~1.2", "~1.2"),
            (">= 1.0 ,<2", ">=1.0, <2"),
            ("=0.4.1", "=0.4.1"),
            ("1.*", "1.*"),
            ("1.2.x", "1.2.*"),
            ("*", "*"),
            ("1.0.0-beta.1", "^1.0.0-beta.1"),
        ],
    )
    def test_normalization(self, text: str, normalized: str) -> None:
        """Requirements are written back in canonical form."""
        assert normalize_requirement(text) == normalized

    @pytest.mark.parametrize(
        "text",
        ["", "  ", "1.0,", ">=x", "01.0", "1.*.2", ">1.*", "*, 1.0", "abc", "1.0-beta"],
    )
    def test_rejects_invalid(self, text: str) -> None:
        """Malformed requirements raise InvalidVersion."""
        with pytest.raises(InvalidVersion, match="Invalid version requirement"):
            parse_requirement(text)

    def test_star_is_empty(self) -> None:
        """`*` has no comparators."""
        assert parse_requirement("*") == VersionReq()


class TestMatches:
    """Tests for VersionReq.matches."""

    @pytest.mark.parametrize(
        ("req", "version", "expected"),
        [
            ("^1.2", "1.4.0", True),
            ("^1.2", "2.0.0", False),
            ("^1.2", "1.1.9", False),
            ("^0.1", "0.1.9", True),
            ("^0.1", "0.2.0", False),
            ("^0.0.3", "0.0.3", True),
            ("^0.0.3", "0.0.4", False),
            ("~1.2", "1.2.9", True),
            ("~1.2", "1.3.0", False),
            ("~1.2.3", "1.2.2", False),
            (">=1.0, <2", "1.9.9", True),
            (">=1.0, <2", "2.0.0", False),
            ("=0.4.1", "0.4.1", True),
            ("=0.4.1", "0.4.2", False),
            ("1.*", "1.9.0", True),
            ("1.*", "2.0.0", False),
            ("*", "3.1.4", True),
            ("<1.0.0", "0.9.9", True),
            ("<=1.0.0", "1.0.0", True),
            (">1.0.0", "1.0.0", False),
        ],
    )
    def test_release_matching(self, req: str, version: str, expected: bool) -> None:
        """Operators follow Cargo semantics."""
        assert parse_requirement(req).matches(parse_version(version)) is expected

    def test_prerelease_needs_opt_in(self) -> None:
        """A prerelease only matches when a comparator names its version with a prerelease."""
        pre = parse_version("1.2.0-beta.2")

        assert not parse_requirement("^1.0").matches(pre)
        assert not parse_requirement("*").matches(pre)
        assert parse_requirement("^1.2.0-beta.1").matches(pre)
        assert not parse_requirement("^1.2.0-beta.3").matches(pre)

    def test_exact(self) -> None:
        """VersionReq.exact matches only that version (ignoring build)."""
        req = VersionReq.exact(parse_version("1.0.0"))

        assert req.matches(parse_version("1.0.0"))
        assert req.matches(parse_version("1.0.0+meta"))
        assert not req.matches(parse_version("1.0.1"))
        assert str(req) == "=1.0.0"
