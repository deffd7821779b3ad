"""Package archive and record fixtures."""

from tests.fixtures.crates.crate_builder import (
    CKSUM_A,
    CKSUM_B,
    INDEX_URL,
    make_crate,
    make_manifest_toml,
    make_record,
    make_tar_gz,
)

__all__ = [
    "CKSUM_A",
    "CKSUM_B",
    "INDEX_URL",
    "make_crate",
    "make_manifest_toml",
    "make_record",
    "make_tar_gz",
]
