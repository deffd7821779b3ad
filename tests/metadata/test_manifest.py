"""Tests for manifest parsing and archive reading."""

from __future__ import annotations

import pytest

from regindex.errors import InvalidManifest
from regindex.index.record import DependencyKind
from regindex.metadata.manifest import (
    DEFAULT_EDITION,
    parse_manifest,
    read_archive_manifest,
)
from tests.fixtures.crates import make_crate, make_manifest_toml, make_tar_gz

FULL_MANIFEST = """
[package]
name = "foo"
version = "0.1.0"
edition = "2021"
links = "z"

[dependencies]
bar = "1.0"
baz = { version = "0.3", optional = true, features = ["std"], default-features = false }
renamed = { package = "real-name", version = "2", registry-index = "https://other.example/index" }

[dev-dependencies]
tester = { path = "../tester" }

[build_dependencies]
cc = "1"

[target.'cfg(windows)'.dependencies]
winapi = "0.3"

[features]
default = ["baz"]
extra = []
"""


class TestParseManifest:
    """Tests for parse_manifest function."""

    def test_full_manifest(self) -> None:
        """Every dependency table and feature is read."""
        manifest = parse_manifest(FULL_MANIFEST)

        assert manifest.name == "foo"
        assert manifest.version == "0.1.0"
        assert manifest.edition == "2021"
        assert manifest.links == "z"
        assert manifest.features == {"default": ["baz"], "extra": []}
        assert [(d.name, d.kind) for d in manifest.dependencies] == [
            ("bar", DependencyKind.NORMAL),
            ("baz", DependencyKind.NORMAL),
            ("renamed", DependencyKind.NORMAL),
            ("tester", DependencyKind.DEV),
            ("cc", DependencyKind.BUILD),
            ("winapi", DependencyKind.NORMAL),
        ]

    def test_dependency_details(self) -> None:
        """Table dependencies carry their options."""
        deps = {d.name: d for d in parse_manifest(FULL_MANIFEST).dependencies}

        assert deps["bar"].req == "1.0"
        assert deps["baz"].optional is True
        assert deps["baz"].default_features is False
        assert deps["baz"].features == ["std"]
        assert deps["renamed"].package == "real-name"
        assert deps["renamed"].registry_index == "https://other.example/index"
        assert deps["tester"].req is None
        assert deps["tester"].path == "../tester"
        assert deps["winapi"].target == "cfg(windows)"
        assert deps["bar"].target is None

    def test_accepts_dict(self) -> None:
        """An already-decoded table is accepted."""
        manifest = parse_manifest({"package": {"name": "foo", "version": "1.0.0"}})

        assert manifest.edition == DEFAULT_EDITION
        assert manifest.dependencies == []

    def test_invalid_toml(self) -> None:
        """TOML syntax errors are reported."""
        with pytest.raises(InvalidManifest, match="Failed to parse Cargo.toml"):
            parse_manifest("[package\nname=")

    def test_missing_package(self) -> None:
        """A manifest without [package] is rejected."""
        with pytest.raises(InvalidManifest, match=r"no \[package\] table"):
            parse_manifest("[dependencies]\n")

    def test_invalid_name(self) -> None:
        """Bad package names are rejected."""
        with pytest.raises(InvalidManifest, match="Invalid character `.`") as exc_info:
            parse_manifest(make_manifest_toml("foo.bar"))
        assert exc_info.value.field == "name"

    def test_invalid_version(self) -> None:
        """Non-semver versions are rejected."""
        with pytest.raises(InvalidManifest, match="invalid version `1.0`"):
            parse_manifest(make_manifest_toml("foo", "1.0"))

    @pytest.mark.parametrize("edition", ["2015", "2018", "2021", "2024"])
    def test_known_editions(self, edition: str) -> None:
        """All released editions are accepted."""
        text = f'[package]\nname = "foo"\nversion = "0.1.0"\nedition = "{edition}"\n'
        assert parse_manifest(text).edition == edition

    def test_unknown_edition(self) -> None:
        """Unknown editions are rejected."""
        text = '[package]\nname = "foo"\nversion = "0.1.0"\nedition = "2019"\n'
        with pytest.raises(InvalidManifest, match="unsupported edition `2019`"):
            parse_manifest(text)

    @pytest.mark.parametrize("value", ['["2021"]', "2021", '{ year = "2021" }'])
    def test_edition_wrong_type(self, value: str) -> None:
        """A non-string edition is an invalid manifest, not a crash."""
        text = f'[package]\nname = "foo"\nversion = "0.1.0"\nedition = {value}\n'
        with pytest.raises(InvalidManifest, match="package.edition") as exc_info:
            parse_manifest(text)
        assert exc_info.value.field == "package.edition"

    def test_bad_dependency_value(self) -> None:
        """Dependencies must be strings or tables."""
        text = make_manifest_toml(extra="[dependencies]\nbar = 1\n")
        with pytest.raises(InvalidManifest, match="expected a version string or a table"):
            parse_manifest(text)

    def test_bad_feature_list(self) -> None:
        """Feature values must be lists of strings."""
        text = make_manifest_toml(extra='[features]\ndefault = "bar"\n')
        with pytest.raises(InvalidManifest, match="features.default"):
            parse_manifest(text)


class TestReadArchiveManifest:
    """Tests for read_archive_manifest function."""

    def test_reads_manifest(self) -> None:
        """The manifest inside <name>-<version>/ is parsed."""
        manifest = read_archive_manifest(make_crate("foo", "0.1.0", dependencies={"bar": "1.0"}))

        assert manifest.name == "foo"
        assert [d.name for d in manifest.dependencies] == ["bar"]

    def test_not_gzip(self) -> None:
        """Arbitrary bytes are rejected."""
        with pytest.raises(InvalidManifest, match="Failed to read package archive"):
            read_archive_manifest(b"definitely not a tarball")

    def test_truncated(self) -> None:
        """A truncated archive is rejected."""
        archive = make_crate("foo", "0.1.0")
        with pytest.raises(InvalidManifest):
            read_archive_manifest(archive[: len(archive) // 2])

    @pytest.mark.parametrize(
        "entry",
        ["/etc/passwd", "foo-0.1.0/../../evil", "../foo-0.1.0/Cargo.toml"],
    )
    def test_path_traversal(self, entry: str) -> None:
        """Absolute paths and `..` components are rejected."""
        archive = make_tar_gz(
            {
                "foo-0.1.0/Cargo.toml": make_manifest_toml().encode(),
                entry: b"x",
            }
        )
        with pytest.raises(InvalidManifest, match="escapes the package directory"):
            read_archive_manifest(archive)

    def test_multiple_roots(self) -> None:
        """All entries must share one top-level directory."""
        archive = make_tar_gz(
            {
                "foo-0.1.0/Cargo.toml": make_manifest_toml().encode(),
                "other/file": b"x",
            }
        )
        with pytest.raises(InvalidManifest, match="exactly one top-level directory"):
            read_archive_manifest(archive)

    def test_missing_manifest(self) -> None:
        """The root directory must hold Cargo.toml."""
        archive = make_tar_gz({"foo-0.1.0/src/lib.rs": b""})
        with pytest.raises(InvalidManifest, match="has no `foo-0.1.0/Cargo.toml`"):
            read_archive_manifest(archive)

    def test_directory_mismatch(self) -> None:
        """The directory must be named after the manifest's name and version."""
        archive = make_tar_gz({"foo-0.2.0/Cargo.toml": make_manifest_toml("foo", "0.1.0").encode()})
        with pytest.raises(InvalidManifest, match="does not match package `foo:0.1.0`"):
            read_archive_manifest(archive)

    def test_non_utf8_manifest(self) -> None:
        """A manifest that is not UTF-8 is rejected."""
        archive = make_tar_gz({"foo-0.1.0/Cargo.toml": b"\xff\xfe\x00"})
        with pytest.raises(InvalidManifest, match="not valid UTF-8"):
            read_archive_manifest(archive)
