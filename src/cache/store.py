# src/cache/store.py — v1
"""Filesystem cache store: entries, artifacts, reservations and eviction.

Everything a reader can observe is published atomically: source trees by
renaming a fully built sibling directory into place, JSON artifacts by
``os.replace`` of a temp file. Readers never see partial state.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

from pydantic import ValidationError

from cratevault.cache import layout
from cratevault.cache.fingerprint import digest_bytes, directory_size
from cratevault.cache.locking import ScopedLock
from cratevault.cache.models import (
    CacheEntry,
    CacheKey,
    CacheMetadata,
    EntrySummary,
    MemberId,
)
from cratevault.docs.models import DependencyArtifact, DocArtifact
from cratevault.errors import IoError, NotFound

logger = logging.getLogger(__name__)

ArtifactT = TypeVar("ArtifactT", DocArtifact, DependencyArtifact)

_ARTIFACT_FILES: dict[type, str] = {
    DocArtifact: layout.DOCS_FILE,
    DependencyArtifact: layout.DEPENDENCIES_FILE,
}


class CacheStore:
    """Owns the on-disk cache rooted at an explicit directory."""

    def __init__(
        self,
        cache_dir: Path | str,
        lock_timeout_s: float = 60.0,
        lock_poll_interval_s: float = 0.1,
    ) -> None:
        self._root = Path(cache_dir).expanduser()
        self._lock_timeout = lock_timeout_s
        self._lock_poll = lock_poll_interval_s
        layout.crates_root(self._root).mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    # === Reservation ===

    def reserve(self, key: CacheKey) -> ScopedLock:
        """Exclusive reservation of key; use as (async) context manager."""
        return ScopedLock(
            layout.lock_file(self._root, key.name, key.version),
            label=key.slug,
            timeout=self._lock_timeout,
            poll_interval=self._lock_poll,
        )

    # === Paths ===

    def entry_dir(self, key: CacheKey) -> Path:
        return layout.entry_dir(self._root, key.name, key.version)

    def source_root(self, key: CacheKey) -> Path:
        return layout.source_dir(self._root, key.name, key.version)

    def target_dir(self, key: CacheKey) -> Path:
        return layout.target_dir(self._root, key.name, key.version)

    def member_source(self, key: CacheKey, member: MemberId | None) -> Path:
        """Manifest directory of a member inside the committed source tree."""
        root = self.source_root(key)
        if member is None or member.is_root:
            return root
        return root / member.relative_path

    def unit_dir(self, key: CacheKey, member: MemberId | None) -> Path:
        storage = member.storage_name if member is not None else None
        return layout.unit_dir(self._root, key.name, key.version, storage)

    def search_index_path(self, key: CacheKey, member: MemberId | None) -> Path:
        return layout.search_index_file(self.unit_dir(key, member))

    # === Entries ===

    def has_entry(self, key: CacheKey) -> bool:
        return layout.entry_file(self._root, key.name, key.version).is_file()

    def create_staging(self, prefix: str) -> Path:
        """Create an empty staging directory on the cache volume."""
        staging = layout.staging_root(self._root)
        try:
            staging.mkdir(parents=True, exist_ok=True)
            return Path(
                tempfile.mkdtemp(prefix=f"{prefix}-", dir=staging)
            )
        except OSError as e:
            raise IoError(f"Cannot create staging directory: {e}") from e

    def commit_source(
        self,
        key: CacheKey,
        staging_dir: Path,
        content_hash: str = "",
        size_bytes: int | None = None,
    ) -> CacheEntry:
        """Publish a staged source tree as the entry for key.

        The new entry (source/ plus entry.json) is assembled in a sibling
        directory and renamed into place. An existing entry is swapped out
        and deleted afterwards. The staging directory is consumed.
        """
        final_dir = self.entry_dir(key)
        building = final_dir.with_name(f".{key.version}.commit-{uuid.uuid4().hex[:8]}")
        now = datetime.now(timezone.utc)
        try:
            created_at = now
            if self.has_entry(key):
                created_at = self.read_entry(key).created_at
            if size_bytes is None:
                size_bytes = directory_size(staging_dir)

            building.mkdir(parents=True)
            shutil.move(str(staging_dir), str(building / layout.SOURCE_DIR))
            entry = CacheEntry(
                key=key,
                source_root=str(self.source_root(key)),
                created_at=created_at,
                refreshed_at=now,
                size_bytes=size_bytes,
                content_hash=content_hash,
            )
            _atomic_write_text(building / layout.ENTRY_FILE, entry.model_dump_json(indent=2))

            if final_dir.exists():
                retired = final_dir.with_name(
                    f".{key.version}.retired-{uuid.uuid4().hex[:8]}"
                )
                os.replace(final_dir, retired)
                os.replace(building, final_dir)
                shutil.rmtree(retired, ignore_errors=True)
            else:
                os.replace(building, final_dir)
        except (OSError, IoError) as e:
            shutil.rmtree(building, ignore_errors=True)
            shutil.rmtree(staging_dir, ignore_errors=True)
            if isinstance(e, IoError):
                raise
            raise IoError(f"Failed to commit {key}: {e}", detail={"key": key.slug}) from e

        logger.info("Committed %s (%d bytes) from %s", key, size_bytes, key.origin.describe())
        return entry

    def discard_staging(self, staging_dir: Path) -> None:
        shutil.rmtree(staging_dir, ignore_errors=True)

    def read_entry(self, key: CacheKey) -> CacheEntry:
        path = layout.entry_file(self._root, key.name, key.version)
        if not path.is_file():
            raise NotFound(f"{key} is not cached", detail={"key": key.slug})
        entry = CacheEntry.model_validate_json(_read_text(path))
        return entry.model_copy(update={"source_root": str(self.source_root(key))})

    def update_entry(self, entry: CacheEntry) -> None:
        """Rewrite entry.json, e.g. after workspace resolution."""
        path = layout.entry_file(self._root, entry.key.name, entry.key.version)
        if not path.parent.is_dir():
            raise NotFound(f"{entry.key} is not cached", detail={"key": entry.key.slug})
        _atomic_write_text(path, entry.model_dump_json(indent=2))

    # === Metadata and artifacts ===

    def read_metadata(self, key: CacheKey, member: MemberId | None) -> CacheMetadata | None:
        """Unit metadata, or None when the unit was never materialized."""
        path = layout.metadata_file(self.unit_dir(key, member))
        if not path.is_file():
            return None
        try:
            return CacheMetadata.model_validate_json(_read_text(path))
        except ValidationError as e:
            logger.warning("Ignoring unreadable metadata %s: %s", path, e)
            return None

    def write_metadata(
        self, key: CacheKey, member: MemberId | None, metadata: CacheMetadata
    ) -> None:
        path = layout.metadata_file(self.unit_dir(key, member))
        _atomic_write_text(path, metadata.model_dump_json(indent=2))

    def has_artifact(
        self, key: CacheKey, member: MemberId | None, artifact_type: type[ArtifactT]
    ) -> bool:
        return (self.unit_dir(key, member) / _ARTIFACT_FILES[artifact_type]).is_file()

    def write_artifact(
        self, key: CacheKey, member: MemberId | None, artifact: DocArtifact | DependencyArtifact
    ) -> str:
        """Atomically write an artifact; returns the SHA-256 of the written bytes.

        Writing documentation invalidates the unit's search index.
        """
        unit = self.unit_dir(key, member)
        payload = artifact.model_dump_json().encode("utf-8")
        digest = digest_bytes(payload)
        _atomic_write_bytes(unit / _ARTIFACT_FILES[type(artifact)], payload)
        if isinstance(artifact, DocArtifact):
            self.invalidate_index(key, member)
        logger.debug("Wrote %s for %s (%d bytes)", type(artifact).__name__, key, len(payload))
        return digest

    def read_artifact(
        self, key: CacheKey, member: MemberId | None, artifact_type: type[ArtifactT]
    ) -> ArtifactT:
        path = self.unit_dir(key, member) / _ARTIFACT_FILES[artifact_type]
        if not path.is_file():
            what = "documentation" if artifact_type is DocArtifact else "dependencies"
            raise NotFound(
                f"No {what} artifact for {key}" + (f" member {member.name}" if member else ""),
                detail={"key": key.slug, "path": str(path)},
            )
        return artifact_type.model_validate_json(_read_text(path))

    def invalidate_index(self, key: CacheKey, member: MemberId | None) -> None:
        path = self.search_index_path(key, member)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise IoError(f"Cannot remove stale search index {path}: {e}") from e

    # === Listing and eviction ===

    def list_versions(self, name: str) -> list[str]:
        crate_dir = layout.crate_dir(self._root, name)
        if not crate_dir.is_dir():
            return []
        versions = [
            child.name
            for child in crate_dir.iterdir()
            if child.is_dir()
            and not child.name.startswith(".")
            and (child / layout.ENTRY_FILE).is_file()
        ]
        return sorted(versions, key=version_sort_key)

    def list_entries(self) -> list[EntrySummary]:
        summaries: list[EntrySummary] = []
        crates = layout.crates_root(self._root)
        for crate_dir in sorted(p for p in crates.iterdir() if p.is_dir()):
            for version in self.list_versions(crate_dir.name):
                entry_path = layout.entry_file(self._root, crate_dir.name, version)
                try:
                    entry = CacheEntry.model_validate_json(_read_text(entry_path))
                except (IoError, ValidationError) as e:
                    logger.warning("Skipping unreadable entry %s: %s", entry_path, e)
                    continue
                summaries.append(
                    EntrySummary(
                        name=entry.key.name,
                        version=entry.key.version,
                        origin=entry.key.origin.describe(),
                        is_workspace=entry.is_workspace,
                        members=[m.name for m in entry.members],
                        size_bytes=entry.size_bytes,
                        refreshed_at=entry.refreshed_at,
                    )
                )
        return summaries

    def evict(self, key: CacheKey) -> None:
        """Remove an entry with all its artifacts and indices."""
        final_dir = self.entry_dir(key)
        if not final_dir.is_dir():
            raise NotFound(f"{key} is not cached", detail={"key": key.slug})
        retired = final_dir.with_name(f".{key.version}.evicted-{uuid.uuid4().hex[:8]}")
        try:
            os.replace(final_dir, retired)
            shutil.rmtree(retired)
        except OSError as e:
            raise IoError(f"Failed to evict {key}: {e}", detail={"key": key.slug}) from e

        logger.info("Evicted %s", key)


def version_sort_key(version: str) -> tuple:
    """Order versions semantically; non-numeric labels sort after numbers."""
    core, _, pre = version.partition("-")
    parts: list[tuple[int, int | str]] = []
    for piece in core.split("+")[0].split("."):
        parts.append((0, int(piece)) if piece.isdigit() else (1, piece))
    # A pre-release sorts before its release.
    return (tuple(parts), 0 if pre else 1, pre)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise IoError(f"Cannot read {path}: {e}") from e


def _atomic_write_text(path: Path, text: str) -> None:
    _atomic_write_bytes(path, text.encode("utf-8"))


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise IoError(f"Cannot write {path}: {e}") from e
