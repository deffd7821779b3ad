"""Tests for index configuration and runtime options."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from regindex.errors import InvalidConfig, MissingConfig
from regindex.index.config import (
    LOCK_POLICY_ENV_VAR,
    IndexConfig,
    IndexOptions,
    IndexRoot,
    dl_template_problem,
    load_config,
    render_dl,
    save_config,
)
from regindex.index.lock import LockPolicy
from tests.fixtures.crates import CKSUM_A, make_record

if TYPE_CHECKING:
    from pathlib import Path


class TestIndexConfig:
    """Tests for IndexConfig serialization."""

    def test_minimal(self) -> None:
        """Only dl is written when nothing else is set."""
        assert IndexConfig(dl="https://x/{crate}").to_json() == b'{"dl":"https://x/{crate}"}'

    def test_full(self) -> None:
        """Optional keys use their hyphenated names."""
        config = IndexConfig(
            dl="https://x/{crate}",
            api="https://x",
            auth_required=True,
            allowed_registries=["https://github.com/rust-lang/crates.io-index"],
        )

        assert list(config.to_dict()) == ["dl", "api", "auth-required", "allowed-registries"]

    def test_reads_aliases(self) -> None:
        """Hyphenated keys are read from JSON data."""
        config = IndexConfig.model_validate({"dl": "https://x", "auth-required": True})
        assert config.auth_required is True


class TestDlTemplate:
    """Tests for dl template checking and rendering."""

    @pytest.mark.parametrize(
        "dl",
        [
            "https://x/{crate}/{version}/download",
            "https://x/{prefix}/{lowerprefix}/{crate}-{version}.crate?sum={sha256-checksum}",
            "https://x/api/v1/crates",
        ],
    )
    def test_valid(self, dl: str) -> None:
        """Recognized tokens and token-free templates are valid."""
        assert dl_template_problem(dl) is None

    def test_unknown_token(self) -> None:
        """Unrecognized placeholders are reported."""
        assert "Unrecognized placeholder {name}" in (dl_template_problem("https://x/{name}") or "")

    def test_stray_brace(self) -> None:
        """Unbalanced braces are reported."""
        assert "Unbalanced" in (dl_template_problem("https://x/{crate") or "")

    def test_render_tokens(self) -> None:
        """Every token is substituted."""
        config = IndexConfig(
            dl="https://x/{prefix}/{lowerprefix}/{crate}/{version}/{sha256-checksum}"
        )
        record = make_record("Serde", "1.0.0")

        assert render_dl(config, record) == f"https://x/Se/rd/se/rd/Serde/1.0.0/{CKSUM_A}"

    def test_render_appends_default_suffix(self) -> None:
        """A template without tokens gets /{crate}/{version}/download."""
        config = IndexConfig(dl="https://x/api/v1/crates/")
        record = make_record("foo", "0.1.0")

        assert render_dl(config, record) == "https://x/api/v1/crates/foo/0.1.0/download"


class TestLoadSaveConfig:
    """Tests for load_config and save_config."""

    def test_roundtrip(self, tmp_path: Path) -> None:
        """save then load yields the same config, written as one line."""
        config = IndexConfig(dl="https://x/{crate}", api="https://x")
        save_config(tmp_path, config)

        assert load_config(tmp_path) == config
        assert (tmp_path / "config.json").read_bytes() == config.to_json() + b"\n"

    def test_missing(self, tmp_path: Path) -> None:
        """Absent config raises MissingConfig."""
        with pytest.raises(MissingConfig, match="No config.json"):
            load_config(tmp_path)

    def test_malformed(self, tmp_path: Path) -> None:
        """Unparseable config raises MissingConfig."""
        (tmp_path / "config.json").write_text("{not json")

        with pytest.raises(MissingConfig, match="Failed to parse"):
            load_config(tmp_path)

    def test_missing_dl(self, tmp_path: Path) -> None:
        """A config without dl is malformed."""
        (tmp_path / "config.json").write_text('{"api":"https://x"}')

        with pytest.raises(MissingConfig):
            load_config(tmp_path)

    def test_bad_token(self, tmp_path: Path) -> None:
        """An unknown token raises InvalidConfig, a MissingConfig subclass."""
        (tmp_path / "config.json").write_text('{"dl":"https://x/{nope}"}')

        with pytest.raises(InvalidConfig) as exc_info:
            load_config(tmp_path)
        assert isinstance(exc_info.value, MissingConfig)
        assert exc_info.value.field == "dl"

    def test_save_rejects_bad_token(self, tmp_path: Path) -> None:
        """save_config refuses to write an invalid template."""
        with pytest.raises(InvalidConfig):
            save_config(tmp_path, IndexConfig(dl="https://x/{nope}"))
        assert not (tmp_path / "config.json").exists()

    def test_pretty_printed_config_is_readable(self, tmp_path: Path) -> None:
        """Multi-line JSON written by other tools is accepted."""
        (tmp_path / "config.json").write_text(
            '{\n  "dl": "https://x/{crate}",\n  "api": "https://x"\n}'
        )

        assert load_config(tmp_path).api == "https://x"


class TestIndexOptions:
    """Tests for IndexOptions and IndexRoot."""

    def test_default_is_wait(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without env var the policy is WAIT."""
        monkeypatch.delenv(LOCK_POLICY_ENV_VAR, raising=False)
        assert IndexOptions().lock_policy is LockPolicy.WAIT

    def test_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The env var sets the default policy."""
        monkeypatch.setenv(LOCK_POLICY_ENV_VAR, "fail_fast")
        assert IndexOptions().lock_policy is LockPolicy.FAIL_FAST

    def test_explicit_overrides_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An explicit policy wins over the env var."""
        monkeypatch.setenv(LOCK_POLICY_ENV_VAR, "fail_fast")
        assert IndexOptions(lock_policy="wait").lock_policy is LockPolicy.WAIT

    def test_invalid_policy(self) -> None:
        """Unknown policies are rejected."""
        with pytest.raises(ValueError, match="lock_policy must be one of"):
            IndexOptions(lock_policy="sometimes")

    def test_index_root_of(self, tmp_path: Path) -> None:
        """IndexRoot.of wraps paths and passes handles through."""
        root = IndexRoot.of(str(tmp_path), IndexOptions(lock_policy=LockPolicy.FAIL_FAST))

        assert root.path == tmp_path
        assert root.lock_policy is LockPolicy.FAIL_FAST
        assert root.config_path == tmp_path / "config.json"
        assert IndexRoot.of(root) is root
