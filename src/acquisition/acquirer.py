# src/acquisition/acquirer.py — v1
"""Source acquisition: bring a package version from its origin into staging.

The acquirer only ever writes into a staging directory; publishing the
tree is the cache store's job. Failures remove the staging directory and
surface as NotFound, NetworkError or InvalidSource. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from pathlib import Path

from pydantic import BaseModel

from cratevault.acquisition.archive import extract_crate_archive
from cratevault.cache.fingerprint import compute_content_hash, directory_size, is_skipped
from cratevault.cache.models import (
    CacheKey,
    LocalPathOrigin,
    Origin,
    RegistryOrigin,
    RepositoryOrigin,
)
from cratevault.cache.store import CacheStore
from cratevault.collaborators.base import RegistryClient, RepositoryClient
from cratevault.errors import InvalidSource, NotFound
from cratevault.workspace.manifest import MANIFEST_NAME, read_manifest

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"[^0-9A-Za-z.]+")


class StagedSource(BaseModel):
    """Source tree ready to be committed under key."""

    key: CacheKey
    path: Path
    content_hash: str
    size_bytes: int


class SourceAcquirer:
    """Fetches package sources from the registry, a repository or a local path."""

    def __init__(
        self,
        store: CacheStore,
        registry: RegistryClient,
        repository: RepositoryClient,
    ) -> None:
        self._store = store
        self._registry = registry
        self._repository = repository

    async def acquire(self, name: str, version: str | None, origin: Origin) -> StagedSource:
        """Stage name (at version, when given) from origin.

        Raises:
            NotFound: Package, version, reference or path does not exist.
            NetworkError: Transport failure (retryable).
            InvalidSource: Content is not a valid package.
        """
        if isinstance(origin, RegistryOrigin):
            return await self._from_registry(name, version)
        if isinstance(origin, RepositoryOrigin):
            return await self._from_repository(name, version, origin)
        return await asyncio.to_thread(self._from_local, name, version, origin)

    async def resolve_registry_version(self, name: str) -> str:
        return await self._registry.latest_version(name)

    def local_key(self, name: str, version: str | None, origin: LocalPathOrigin) -> tuple[CacheKey, str]:
        """Key and content hash of a local tree, without copying it."""
        root = _local_root(origin)
        label = version or _version_label(root, fallback="0.0.0-local")
        key = CacheKey(name=name, version=label, origin=origin)
        return key, compute_content_hash(root)

    # === Registry ===

    async def _from_registry(self, name: str, version: str | None) -> StagedSource:
        if version is None:
            version = await self._registry.latest_version(name)
            logger.info("Resolved %s to latest version %s", name, version)
        key = CacheKey(name=name, version=version, origin=RegistryOrigin())
        data = await self._registry.download(key.name, key.version)
        staging = self._store.create_staging(key.name)
        try:
            await asyncio.to_thread(extract_crate_archive, data, staging, f"{key}.crate")
            return await asyncio.to_thread(_staged, key, staging)
        except BaseException:
            self._store.discard_staging(staging)
            raise

    # === Repository ===

    async def _from_repository(
        self, name: str, version: str | None, origin: RepositoryOrigin
    ) -> StagedSource:
        checkout = self._store.create_staging(f"{name}-checkout")
        try:
            await asyncio.to_thread(self._repository.fetch, origin, checkout)
            root = checkout / origin.subpath if origin.subpath else checkout
            if not (root / MANIFEST_NAME).is_file():
                where = f"{origin.subpath}/" if origin.subpath else "the repository root"
                raise InvalidSource(f"No {MANIFEST_NAME} in {where} of {origin.locator}")
            fallback = f"0.0.0-{_slug(origin.ref or 'HEAD')}"
            label = version or _version_label(root, fallback=fallback)
            key = CacheKey(name=name, version=label, origin=origin)
            return await asyncio.to_thread(self._copy_tree, key, root)
        finally:
            self._store.discard_staging(checkout)

    # === Local ===

    def _from_local(self, name: str, version: str | None, origin: LocalPathOrigin) -> StagedSource:
        root = _local_root(origin)
        label = version or _version_label(root, fallback="0.0.0-local")
        key = CacheKey(name=name, version=label, origin=origin)
        return self._copy_tree(key, root)

    def _copy_tree(self, key: CacheKey, root: Path) -> StagedSource:
        staging = self._store.create_staging(key.name)
        try:
            shutil.copytree(
                root,
                staging,
                ignore=_ignore_excluded,
                dirs_exist_ok=True,
            )
            return _staged(key, staging)
        except BaseException:
            self._store.discard_staging(staging)
            raise


def _staged(key: CacheKey, staging: Path) -> StagedSource:
    staged = StagedSource(
        key=key,
        path=staging,
        content_hash=compute_content_hash(staging),
        size_bytes=directory_size(staging),
    )
    logger.info("Staged %s (%d bytes)", key, staged.size_bytes)
    return staged


def _local_root(origin: LocalPathOrigin) -> Path:
    root = Path(origin.path).expanduser()
    if not root.exists():
        raise NotFound(f"Local path {root} does not exist", detail={"path": str(root)})
    if root.is_file() and root.name == MANIFEST_NAME:
        root = root.parent
    if not (root / MANIFEST_NAME).is_file():
        raise InvalidSource(f"No {MANIFEST_NAME} in {root}", detail={"path": str(root)})
    return root


def _version_label(root: Path, fallback: str) -> str:
    manifest = read_manifest(root)
    return manifest.effective_version or fallback


def _slug(ref: str) -> str:
    return _LABEL_RE.sub("-", ref).strip("-.") or "HEAD"


def _ignore_excluded(directory: str, names: list[str]) -> set[str]:
    base = Path(directory)
    return {n for n in names if is_skipped(base, n)}
