# src/cache/layout.py — v1
"""Cache directory structure definition.

Defines the path conventions of the persisted cache:

    <cache_dir>/crates/<name>/<version>/
        source/                    immutable source tree
        entry.json                 CacheEntry
        metadata.json, docs.json, dependencies.json, search_index.db
        target/                    build directory for the generators
        members/<storage-name>/    per-member artifacts for workspaces
    <cache_dir>/crates/<name>/<version>.lock
    <cache_dir>/.staging/
"""

from __future__ import annotations

from pathlib import Path

CRATES_DIR = "crates"
STAGING_DIR = ".staging"
SOURCE_DIR = "source"
TARGET_DIR = "target"
MEMBERS_DIR = "members"

ENTRY_FILE = "entry.json"
METADATA_FILE = "metadata.json"
DOCS_FILE = "docs.json"
DEPENDENCIES_FILE = "dependencies.json"
SEARCH_INDEX_FILE = "search_index.db"
LOCK_SUFFIX = ".lock"


def crates_root(cache_dir: Path) -> Path:
    return cache_dir / CRATES_DIR


def crate_dir(cache_dir: Path, name: str) -> Path:
    """Return the directory holding every cached version of a crate."""
    return crates_root(cache_dir) / name


def entry_dir(cache_dir: Path, name: str, version: str) -> Path:
    return crate_dir(cache_dir, name) / version


def source_dir(cache_dir: Path, name: str, version: str) -> Path:
    return entry_dir(cache_dir, name, version) / SOURCE_DIR


def target_dir(cache_dir: Path, name: str, version: str) -> Path:
    """Cargo target directory, kept outside the immutable source tree."""
    return entry_dir(cache_dir, name, version) / TARGET_DIR


def entry_file(cache_dir: Path, name: str, version: str) -> Path:
    return entry_dir(cache_dir, name, version) / ENTRY_FILE


def lock_file(cache_dir: Path, name: str, version: str) -> Path:
    """Lock file lives beside the entry so eviction can remove the entry tree."""
    return crate_dir(cache_dir, name) / f"{version}{LOCK_SUFFIX}"


def staging_root(cache_dir: Path) -> Path:
    return cache_dir / STAGING_DIR


def unit_dir(
    cache_dir: Path, name: str, version: str, member_storage: str | None = None
) -> Path:
    """Directory holding the artifacts of one documented unit.

    A plain package stores them at the entry root; a workspace member
    stores them under members/<storage-name>/.
    """
    root = entry_dir(cache_dir, name, version)
    if member_storage is None:
        return root
    return root / MEMBERS_DIR / member_storage


def metadata_file(unit: Path) -> Path:
    return unit / METADATA_FILE


def docs_file(unit: Path) -> Path:
    return unit / DOCS_FILE


def dependencies_file(unit: Path) -> Path:
    return unit / DEPENDENCIES_FILE


def search_index_file(unit: Path) -> Path:
    return unit / SEARCH_INDEX_FILE
