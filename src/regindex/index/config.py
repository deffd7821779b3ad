"""Index configuration: config.json at the index root, plus runtime options.

config.json is one line of canonical JSON:
    {"dl":"https://example.com/api/v1/crates/{crate}/{version}/download","api":"https://example.com"}

Recognized `dl` tokens: {crate}, {version}, {prefix}, {lowerprefix},
{sha256-checksum}. A template without any token gets
`/{crate}/{version}/download` appended when rendered, as clients do.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from regindex.errors import InvalidConfig, MissingConfig
from regindex.index.files import CONFIG_FILE_NAME, atomic_write_bytes
from regindex.index.layout import lower_prefix_for, prefix_for
from regindex.index.lock import LockPolicy

if TYPE_CHECKING:
    from regindex.index.record import PackageRecord

DL_TOKENS: frozenset[str] = frozenset(
    {"{crate}", "{version}", "{prefix}", "{lowerprefix}", "{sha256-checksum}"}
)
_TOKEN_PATTERN = re.compile(r"\{[^{}]*\}")
DEFAULT_DL_SUFFIX = "/{crate}/{version}/download"

LOCK_POLICY_ENV_VAR = "REGINDEX_LOCK_POLICY"


class IndexConfig(BaseModel):
    """Contents of config.json.

    Attributes:
        dl: Download URL template.
        api: Web API base URL, if the registry has one.
        auth_required: Whether clients must authenticate for every request.
        allowed_registries: Index URLs dependencies may come from (None = any).
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    dl: str = Field(..., min_length=1)
    api: str | None = None
    auth_required: bool = Field(default=False, alias="auth-required")
    allowed_registries: list[str] | None = Field(default=None, alias="allowed-registries")

    def to_dict(self) -> dict[str, Any]:
        """Convert to an ordered dictionary; defaults are omitted."""
        data: dict[str, Any] = {"dl": self.dl}
        if self.api is not None:
            data["api"] = self.api
        if self.auth_required:
            data["auth-required"] = True
        if self.allowed_registries is not None:
            data["allowed-registries"] = list(self.allowed_registries)
        return data

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_dict())


def dl_template_problem(dl: str) -> str | None:
    """Check a download URL template.

    Returns:
        Error message, or None if every placeholder is a recognized token.
    """
    unknown = [t for t in _TOKEN_PATTERN.findall(dl) if t not in DL_TOKENS]
    if unknown:
        return (
            f"Unrecognized placeholder {unknown[0]} in dl template `{dl}`; "
            f"allowed: {', '.join(sorted(DL_TOKENS))}"
        )
    remainder = _TOKEN_PATTERN.sub("", dl)
    if "{" in remainder or "}" in remainder:
        return f"Unbalanced brace in dl template `{dl}`"
    return None


def render_dl(config: IndexConfig, record: PackageRecord) -> str:
    """Render the download URL of one package version."""
    name = record.name
    template = config.dl
    if not any(token in template for token in DL_TOKENS):
        template = template.rstrip("/") + DEFAULT_DL_SUFFIX
    return (
        template.replace("{crate}", name)
        .replace("{version}", record.vers)
        .replace("{prefix}", prefix_for(name))
        .replace("{lowerprefix}", lower_prefix_for(name))
        .replace("{sha256-checksum}", record.cksum)
    )


def load_config(root: Path | str) -> IndexConfig:
    """Load config.json from an index root.

    Raises:
        MissingConfig: If the file is absent, unreadable or malformed.
        InvalidConfig: If the `dl` template uses an unrecognized token.
    """
    path = Path(root) / CONFIG_FILE_NAME
    try:
        raw = path.read_bytes()
    except FileNotFoundError as e:
        msg = f"No {CONFIG_FILE_NAME} found in index root `{root}`"
        raise MissingConfig(msg) from e
    except OSError as e:
        msg = f"Failed to read `{path}`: {e}"
        raise MissingConfig(msg) from e

    try:
        config = IndexConfig.model_validate(orjson.loads(raw))
    except (orjson.JSONDecodeError, ValidationError) as e:
        msg = f"Failed to parse `{path}`: {e}"
        raise MissingConfig(msg) from e

    problem = dl_template_problem(config.dl)
    if problem:
        raise InvalidConfig(f"{path}: {problem}", field="dl")
    return config


def save_config(root: Path | str, config: IndexConfig) -> None:
    """Write config.json as one canonical JSON line, replacing any existing file.

    Raises:
        InvalidConfig: If the `dl` template uses an unrecognized token.
        IoFailure: If the file cannot be written.
    """
    problem = dl_template_problem(config.dl)
    if problem:
        raise InvalidConfig(problem, field="dl")
    atomic_write_bytes(Path(root) / CONFIG_FILE_NAME, config.to_json() + b"\n")


@dataclass
class IndexOptions:
    """Runtime options for operations on one index.

    Attributes:
        lock_policy: Behavior when another writer holds the same package.
            Defaults to $REGINDEX_LOCK_POLICY, else "wait".
    """

    lock_policy: LockPolicy | str | None = None

    def __post_init__(self) -> None:
        if self.lock_policy is None:
            self.lock_policy = os.environ.get(LOCK_POLICY_ENV_VAR, LockPolicy.WAIT.value)
        if not isinstance(self.lock_policy, LockPolicy):
            try:
                self.lock_policy = LockPolicy(self.lock_policy)
            except ValueError:
                allowed = ", ".join(p.value for p in LockPolicy)
                raise ValueError(
                    f"lock_policy must be one of {allowed}, got {self.lock_policy!r}"
                ) from None


@dataclass(frozen=True)
class IndexRoot:
    """Handle to one index: its root directory and the options to use on it."""

    path: Path
    options: IndexOptions = field(default_factory=IndexOptions)

    @classmethod
    def of(cls, root: IndexRoot | Path | str, options: IndexOptions | None = None) -> IndexRoot:
        """Wrap a path (or pass through a handle, optionally overriding options)."""
        if isinstance(root, IndexRoot):
            if options is None:
                return root
            return cls(path=root.path, options=options)
        return cls(path=Path(root), options=options or IndexOptions())

    @property
    def config_path(self) -> Path:
        return self.path / CONFIG_FILE_NAME

    @property
    def lock_policy(self) -> LockPolicy:
        return LockPolicy(self.options.lock_policy)
