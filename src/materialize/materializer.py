# src/materialize/materializer.py — v1
"""Artifact generation for committed entries.

For each member the documentation step and the dependency step run
independently: one failing does not prevent the other, and a failing
member does not prevent the remaining members. The outcome is reported
per member instead of raised.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel

from cratevault.cache.models import CacheEntry, CacheMetadata, MemberId
from cratevault.cache.store import CacheStore
from cratevault.collaborators.base import DependencyResolver, DocGenerator
from cratevault.docs.models import DependencyArtifact, DocArtifact
from cratevault.docs.rustdoc import normalize_rustdoc
from cratevault.errors import CrateVaultError, ErrorInfo, InvalidSource, ResolutionFailed
from cratevault.logging.context import set_member_context
from cratevault.materialize.dependencies import flatten_dependencies

logger = logging.getLogger(__name__)

# Raised by the normalizers on payloads of an unexpected shape.
_PAYLOAD_ERRORS = (KeyError, IndexError, TypeError, ValueError, AttributeError)


class MemberStatus(BaseModel):
    """Materialization outcome for one member."""

    member: str
    path: str
    status: Literal["ok", "partial", "failed"]
    regenerated: bool = True
    item_count: int | None = None
    docs_error: ErrorInfo | None = None
    dependencies_error: ErrorInfo | None = None


class Materializer:
    """Runs the documentation and dependency collaborators per member."""

    def __init__(
        self,
        store: CacheStore,
        doc_generator: DocGenerator,
        dependency_resolver: DependencyResolver,
        max_items: int | None = None,
    ) -> None:
        self._store = store
        self._docs = doc_generator
        self._deps = dependency_resolver
        self._max_items = max_items

    def is_current(self, entry: CacheEntry, member: MemberId) -> bool:
        """True when both artifacts exist for the entry's current content."""
        unit = entry.unit_member(member)
        meta = self._store.read_metadata(entry.key, unit)
        return (
            meta is not None
            and meta.content_hash == entry.content_hash
            and self._store.has_artifact(entry.key, unit, DocArtifact)
            and self._store.has_artifact(entry.key, unit, DependencyArtifact)
        )

    def materialize(
        self, entry: CacheEntry, members: Sequence[MemberId], force: bool = False
    ) -> list[MemberStatus]:
        """Materialize members in order. Blocking; run in a worker thread."""
        statuses: list[MemberStatus] = []
        for member in members:
            set_member_context(member.name if entry.is_workspace else None)
            try:
                statuses.append(self.materialize_member(entry, member, force=force))
            finally:
                set_member_context(None)
        return statuses

    def materialize_member(
        self, entry: CacheEntry, member: MemberId, force: bool = False
    ) -> MemberStatus:
        key = entry.key
        unit = entry.unit_member(member)
        if not force and self.is_current(entry, member):
            logger.debug("Artifacts for %s %s are current", key, member.name)
            return MemberStatus(
                member=member.name,
                path=member.relative_path,
                status="ok",
                regenerated=False,
            )

        manifest_dir = self._store.member_source(key, member)
        package = member.name if entry.is_workspace else None
        previous = self._store.read_metadata(key, unit)

        docs_error: ErrorInfo | None = None
        docs_digest = previous.docs_digest if previous else None
        item_count: int | None = None
        try:
            raw = self._docs.generate(manifest_dir, package, self._store.target_dir(key))
            try:
                artifact = normalize_rustdoc(raw, member.name, max_items=self._max_items)
            except _PAYLOAD_ERRORS as e:
                raise InvalidSource(
                    f"Unreadable rustdoc output for {member.name}: {e!r}",
                    detail={"member": member.name},
                ) from e
            docs_digest = self._store.write_artifact(key, unit, artifact)
            item_count = len(artifact.items)
            logger.info("Documented %s %s: %d items", key, member.name, item_count)
        except CrateVaultError as e:
            docs_error = e.with_stage("materialize").to_info()
            logger.warning("Documentation failed for %s %s: %s", key, member.name, e.message)

        deps_error: ErrorInfo | None = None
        try:
            metadata = self._deps.resolve(manifest_dir)
            try:
                dependencies = flatten_dependencies(metadata, manifest_dir)
            except _PAYLOAD_ERRORS as e:
                raise ResolutionFailed(
                    f"Unreadable cargo metadata for {member.name}: {e!r}",
                    detail={"member": member.name},
                ) from e
            self._store.write_artifact(key, unit, dependencies)
        except CrateVaultError as e:
            deps_error = e.with_stage("materialize").to_info()
            logger.warning("Dependency resolution failed for %s %s: %s", key, member.name, e.message)

        now = datetime.now(timezone.utc)
        self._store.write_metadata(
            key,
            unit,
            CacheMetadata(
                name=key.name,
                version=key.version,
                origin=key.origin,
                member=member.name if entry.is_workspace else None,
                fetched_at=entry.refreshed_at,
                source_size_bytes=entry.size_bytes,
                content_hash=entry.content_hash,
                toolchain=self._docs.toolchain,
                doc_generated=docs_error is None,
                docs_digest=docs_digest,
                dependencies_generated=deps_error is None,
                generated_at=now,
                docs_error=docs_error,
                dependencies_error=deps_error,
            ),
        )

        failures = (docs_error is not None) + (deps_error is not None)
        return MemberStatus(
            member=member.name,
            path=member.relative_path,
            status=("ok", "partial", "failed")[failures],
            item_count=item_count,
            docs_error=docs_error,
            dependencies_error=deps_error,
        )
