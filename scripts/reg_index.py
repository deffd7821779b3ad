#!/usr/bin/env python3
"""Command-line front end for a registry index.

Subcommands map one-to-one onto regindex.commands. Records are printed
to stdout as JSON lines; logs go to stderr.

Exit codes:
    0   success
    1   validate found violations
    2   usage error (argparse)
    3+  one code per error kind, see EXIT_CODES

Usage:
    python -m scripts.reg_index init --index ./index --dl 'https://example.com/{crate}/{version}'
    python -m scripts.reg_index add --index ./index --index-url https://example.com/index foo-0.1.0.crate
    python -m scripts.reg_index list --index ./index foo --version-req '^0.1'
    python -m scripts.reg_index yank --index ./index foo 0.1.0
    python -m scripts.reg_index validate --index ./index --archives './crates/{crate}'
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from regindex import commands
from regindex.errors import (
    AlreadyExists,
    ChecksumMismatch,
    DuplicateVersion,
    InvalidConfig,
    InvalidManifest,
    InvalidVersion,
    IoFailure,
    Locked,
    MalformedRecord,
    MissingConfig,
    RegistryIndexError,
    VersionNotFound,
    YankStateError,
)
from regindex.index.config import IndexOptions, IndexRoot
from regindex.index.lock import LockPolicy
from regindex.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from regindex.index.record import PackageRecord

logger = get_logger("reg_index")

EXIT_VIOLATIONS = 1

# Most specific class first; the first match wins
EXIT_CODES: tuple[tuple[type[RegistryIndexError], int], ...] = (
    (InvalidManifest, 3),
    (DuplicateVersion, 4),
    (VersionNotFound, 5),
    (MalformedRecord, 6),
    (InvalidConfig, 8),
    (MissingConfig, 7),
    (AlreadyExists, 9),
    (Locked, 10),
    (IoFailure, 11),
    (ChecksumMismatch, 12),
    (YankStateError, 13),
    (InvalidVersion, 14),
)
EXIT_OTHER = 15


def exit_code_for(error: RegistryIndexError) -> int:
    for cls, code in EXIT_CODES:
        if isinstance(error, cls):
            return code
    return EXIT_OTHER


def _print_record(record: PackageRecord) -> None:
    print(record.to_json().decode())


def _root(args: argparse.Namespace) -> IndexRoot:
    return IndexRoot.of(args.index, IndexOptions(lock_policy=args.lock_policy))


def cmd_init(args: argparse.Namespace) -> int:
    commands.init(
        args.index,
        args.dl,
        args.api,
        auth_required=args.auth_required,
        allowed_registries=args.allowed_registry,
    )
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    record = commands.add(
        _root(args),
        args.archive,
        args.index_url,
        replace=args.replace,
        upload=args.upload,
        expected_cksum=args.cksum,
    )
    _print_record(record)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    if args.name is None:
        records = commands.list_all(_root(args), args.version_req)
    else:
        records = commands.list_versions(_root(args), args.name, args.version_req)
    for record in records:
        _print_record(record)
    return 0


def cmd_metadata(args: argparse.Namespace) -> int:
    _print_record(commands.metadata(args.archive, args.index_url))
    return 0


def cmd_yank(args: argparse.Namespace) -> int:
    commands.yank(_root(args), args.name, args.version)
    return 0


def cmd_unyank(args: argparse.Namespace) -> int:
    commands.unyank(_root(args), args.name, args.version)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    violations = commands.validate(_root(args), args.archives)
    for violation in violations:
        print(violation)
    if violations:
        print(f"FAILED: {len(violations)} violation(s)", file=sys.stderr)
        return EXIT_VIOLATIONS
    print("PASSED: index is valid", file=sys.stderr)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reg-index",
        description="Manage a package registry index.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Write logs as JSON lines instead of plain text",
    )
    parser.add_argument(
        "--lock-policy",
        choices=[p.value for p in LockPolicy],
        default=None,
        help="When a package is locked (default: $REGINDEX_LOCK_POLICY or wait)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def with_index(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--index", type=Path, required=True, help="Index root directory")
        return p

    p = with_index(sub.add_parser("init", help="Create a new index"))
    p.add_argument("--dl", required=True, help="Download URL template")
    p.add_argument("--api", default=None, help="Web API base URL")
    p.add_argument("--auth-required", action="store_true", help="Clients must authenticate")
    p.add_argument(
        "--allowed-registry",
        action="append",
        default=None,
        help="Index URL dependencies may come from (repeatable)",
    )
    p.set_defaults(func=cmd_init)

    p = with_index(sub.add_parser("add", help="Add a .crate archive to the index"))
    p.add_argument("archive", type=Path, help="Path to the .crate archive")
    p.add_argument("--index-url", required=True, help="Public URL of this index")
    p.add_argument(
        "--replace",
        "--force",
        action="store_true",
        help="Replace an existing entry for the same version",
    )
    p.add_argument("--upload", default=None, help="Directory template to copy the archive into")
    p.add_argument("--cksum", default=None, help="Expected SHA-256 of the archive")
    p.set_defaults(func=cmd_add)

    p = with_index(sub.add_parser("list", help="List index entries"))
    p.add_argument("name", nargs="?", default=None, help="Package name (default: all packages)")
    p.add_argument("--version-req", default=None, help="Only versions matching this requirement")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("metadata", help="Print the record an archive would get")
    p.add_argument("archive", type=Path, help="Path to the .crate archive")
    p.add_argument("--index-url", default=None, help="Public URL of the target index")
    p.set_defaults(func=cmd_metadata)

    for name, func, help_text in (
        ("yank", cmd_yank, "Mark a version as yanked"),
        ("unyank", cmd_unyank, "Clear the yanked flag of a version"),
    ):
        p = with_index(sub.add_parser(name, help=help_text))
        p.add_argument("name", help="Package name")
        p.add_argument("version", help="Package version")
        p.set_defaults(func=func)

    p = with_index(sub.add_parser("validate", help="Check the whole index"))
    p.add_argument(
        "--archives",
        default=None,
        help="Directory template holding .crate files to verify checksums against",
    )
    p.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_format=args.json_logs,
    )

    try:
        return int(args.func(args))
    except RegistryIndexError as e:
        logger.debug("Command failed", extra={"command": args.command}, exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return exit_code_for(e)


if __name__ == "__main__":
    sys.exit(main())
