"""Semantic version and version requirement parsing.

Versions follow SemVer 2.0.0 strictly:
    MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD]

Requirements are comma-separated comparators:
    ^1.2.3    ~1.2    >=1.0, <2.0    =0.4.1    1.*    *

A comparator without an operator is a caret comparator, and is written
back with an explicit `^` when a requirement is normalized.

Example:
    parse_requirement("1.0").matches(parse_version("1.4.2"))  # True
    str(parse_requirement(">= 1.0 ,<2"))                      # ">=1.0, <2"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering

from regindex.errors import InvalidVersion

_NUM = r"0|[1-9]\d*"
_PRE_IDENT = r"0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*"
_BUILD_IDENT = r"[0-9a-zA-Z-]+"

# Strict SemVer 2.0.0 (no leading zeros, no "v" prefix, no missing parts)
VERSION_PATTERN = re.compile(
    r"^"
    rf"(?P<major>{_NUM})\.(?P<minor>{_NUM})\.(?P<patch>{_NUM})"
    rf"(?:-(?P<pre>(?:{_PRE_IDENT})(?:\.(?:{_PRE_IDENT}))*))?"
    rf"(?:\+(?P<build>{_BUILD_IDENT}(?:\.{_BUILD_IDENT})*))?"
    r"$"
)

COMPARATOR_PATTERN = re.compile(
    r"^"
    r"(?P<op>>=|<=|>|<|=|~|\^)?\s*"
    r"(?P<major>\d+|[*xX])"
    r"(?:\.(?P<minor>\d+|[*xX]))?"
    r"(?:\.(?P<patch>\d+|[*xX]))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"$"
)

_WILDCARDS = frozenset({"*", "x", "X"})


def _pre_key(pre: tuple[str, ...]) -> tuple:
    """Precedence key for prerelease identifiers.

    A release (no prerelease) sorts after every prerelease of the same
    MAJOR.MINOR.PATCH; numeric identifiers sort before alphanumeric ones.
    """
    if not pre:
        return (1,)
    return (0, tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre))


@total_ordering
@dataclass(frozen=True)
class Version:
    """Parsed semantic version.

    Equality includes build metadata, so `1.0.0+a` and `1.0.0+b` are
    distinct index entries. Ordering follows SemVer precedence with build
    metadata as a final tiebreaker.
    """

    major: int
    minor: int
    patch: int
    pre: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        if self.build:
            text += "+" + ".".join(self.build)
        return text

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def _sort_key(self) -> tuple:
        return (self.major, self.minor, self.patch, _pre_key(self.pre), self.build)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.pre)


def parse_version(text: str) -> Version:
    """Parse a strict semantic version string.

    Raises:
        InvalidVersion: If the string is not SemVer 2.0.0.
    """
    match = VERSION_PATTERN.match(text)
    if match is None:
        msg = f"Invalid version string: {text!r}. Expected MAJOR.MINOR.PATCH[-PRE][+BUILD]"
        raise InvalidVersion(msg, version=text, field="vers")
    pre = match.group("pre")
    build = match.group("build")
    return Version(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        pre=tuple(pre.split(".")) if pre else (),
        build=tuple(build.split(".")) if build else (),
    )


def is_valid_version(text: str) -> bool:
    return VERSION_PATTERN.match(text) is not None


class Op(str, Enum):
    """Comparator operator."""

    EXACT = "="
    GREATER = ">"
    GREATER_EQ = ">="
    LESS = "<"
    LESS_EQ = "<="
    TILDE = "~"
    CARET = "^"
    WILDCARD = "*"


@dataclass(frozen=True)
class Comparator:
    """One comparator of a version requirement.

    `minor`/`patch` are None when omitted (`^1`, `~1.2`) or wildcarded.
    """

    op: Op
    major: int
    minor: int | None = None
    patch: int | None = None
    pre: tuple[str, ...] = ()

    def __str__(self) -> str:
        if self.op is Op.WILDCARD:
            if self.minor is None:
                return f"{self.major}.*"
            return f"{self.major}.{self.minor}.*"
        text = f"{self.op.value}{self.major}"
        if self.minor is not None:
            text += f".{self.minor}"
        if self.patch is not None:
            text += f".{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        return text

    def matches(self, version: Version) -> bool:
        if self.op is Op.EXACT:
            return self._matches_exact(version)
        if self.op is Op.GREATER:
            return self._matches_greater(version)
        if self.op is Op.GREATER_EQ:
            return self._matches_exact(version) or self._matches_greater(version)
        if self.op is Op.LESS:
            return self._matches_less(version)
        if self.op is Op.LESS_EQ:
            return self._matches_exact(version) or self._matches_less(version)
        if self.op is Op.TILDE:
            return self._matches_tilde(version)
        if self.op is Op.CARET:
            return self._matches_caret(version)
        return self._matches_wildcard(version)

    def _matches_exact(self, v: Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return False
        return v.pre == self.pre

    def _matches_greater(self, v: Version) -> bool:
        if v.major != self.major:
            return v.major > self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor > self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.pre) > _pre_key(self.pre)

    def _matches_less(self, v: Version) -> bool:
        if v.major != self.major:
            return v.major < self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor < self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch < self.patch
        return _pre_key(v.pre) < _pre_key(self.pre)

    def _matches_tilde(self, v: Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.pre) >= _pre_key(self.pre)

    def _matches_caret(self, v: Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is None:
            return True
        if self.patch is None:
            if self.major > 0:
                return v.minor >= self.minor
            return v.minor == self.minor
        if self.major > 0:
            if v.minor != self.minor:
                return v.minor > self.minor
            if v.patch != self.patch:
                return v.patch > self.patch
        elif self.minor > 0:
            if v.minor != self.minor:
                return False
            if v.patch != self.patch:
                return v.patch > self.patch
        elif v.minor != self.minor or v.patch != self.patch:
            return False
        return _pre_key(v.pre) >= _pre_key(self.pre)

    def _matches_wildcard(self, v: Version) -> bool:
        if v.major != self.major:
            return False
        return self.minor is None or v.minor == self.minor


@dataclass(frozen=True)
class VersionReq:
    """A parsed version requirement; no comparators means `*`."""

    comparators: tuple[Comparator, ...] = ()

    def __str__(self) -> str:
        if not self.comparators:
            return "*"
        return ", ".join(str(c) for c in self.comparators)

    @classmethod
    def exact(cls, version: Version) -> VersionReq:
        return cls(
            comparators=(
                Comparator(Op.EXACT, version.major, version.minor, version.patch, version.pre),
            )
        )

    def matches(self, version: Version) -> bool:
        """Check whether a version satisfies every comparator.

        Prerelease versions only match when some comparator names the same
        MAJOR.MINOR.PATCH with a prerelease of its own.
        """
        if not all(c.matches(version) for c in self.comparators):
            return False
        if not version.pre:
            return True
        return any(
            c.pre
            and c.major == version.major
            and c.minor == version.minor
            and c.patch == version.patch
            for c in self.comparators
        )


def _parse_number(part: str, text: str) -> int:
    if len(part) > 1 and part.startswith("0"):
        msg = f"Invalid version requirement {text!r}: leading zero in {part!r}"
        raise InvalidVersion(msg, field="req")
    return int(part)


def _parse_comparator(piece: str, text: str) -> Comparator | None:
    """Parse one comparator. Returns None for a bare `*`."""
    match = COMPARATOR_PATTERN.match(piece)
    if match is None:
        msg = f"Invalid version requirement {text!r}: cannot parse {piece!r}"
        raise InvalidVersion(msg, field="req")

    op_text = match.group("op")
    parts = [match.group("major"), match.group("minor"), match.group("patch")]
    pre = match.group("pre")

    wildcard_at = next((i for i, p in enumerate(parts) if p in _WILDCARDS), None)
    if wildcard_at is not None:
        if any(p is not None and p not in _WILDCARDS for p in parts[wildcard_at:]):
            msg = f"Invalid version requirement {text!r}: number after wildcard in {piece!r}"
            raise InvalidVersion(msg, field="req")
        if op_text not in (None, "="):
            msg = f"Invalid version requirement {text!r}: wildcard after operator in {piece!r}"
            raise InvalidVersion(msg, field="req")
        if pre:
            msg = f"Invalid version requirement {text!r}: prerelease on wildcard in {piece!r}"
            raise InvalidVersion(msg, field="req")
        if wildcard_at == 0:
            return None
        return Comparator(
            op=Op.WILDCARD,
            major=_parse_number(parts[0], text),
            minor=_parse_number(parts[1], text) if wildcard_at == 2 else None,
        )

    if pre and parts[2] is None:
        msg = f"Invalid version requirement {text!r}: prerelease needs a patch number in {piece!r}"
        raise InvalidVersion(msg, field="req")
    pre_parts = tuple(pre.split(".")) if pre else ()
    for ident in pre_parts:
        if ident.isdigit() and len(ident) > 1 and ident.startswith("0"):
            msg = f"Invalid version requirement {text!r}: leading zero in prerelease {ident!r}"
            raise InvalidVersion(msg, field="req")

    return Comparator(
        op=Op(op_text) if op_text else Op.CARET,
        major=_parse_number(parts[0], text),
        minor=_parse_number(parts[1], text) if parts[1] is not None else None,
        patch=_parse_number(parts[2], text) if parts[2] is not None else None,
        pre=pre_parts,
    )


def parse_requirement(text: str) -> VersionReq:
    """Parse a version requirement string.

    Args:
        text: Requirement such as "^1.0", ">=1.2, <2" or "*".

    Returns:
        Parsed VersionReq. `str()` of it is the normalized form stored in
        the index.

    Raises:
        InvalidVersion: If the requirement does not follow the grammar.
    """
    if not text or not text.strip():
        raise InvalidVersion("Invalid version requirement: empty string", field="req")

    comparators: list[Comparator] = []
    pieces = [p.strip() for p in text.split(",")]
    for piece in pieces:
        if not piece:
            msg = f"Invalid version requirement {text!r}: empty comparator"
            raise InvalidVersion(msg, field="req")
        comparator = _parse_comparator(piece, text)
        if comparator is None:
            if len(pieces) > 1:
                msg = f"Invalid version requirement {text!r}: `*` must be the only comparator"
                raise InvalidVersion(msg, field="req")
            return VersionReq()
        comparators.append(comparator)
    return VersionReq(comparators=tuple(comparators))


def normalize_requirement(text: str) -> str:
    """Return the canonical spelling of a requirement (`1.0` -> `^1.0`)."""
    return str(parse_requirement(text))
